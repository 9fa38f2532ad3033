"""Route bundles for the control API."""
from . import pool, scripts, sessions, system

ROUTERS = [
    sessions.router,
    pool.router,
    scripts.router,
    system.router,
]
