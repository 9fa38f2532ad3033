"""Shared FastAPI dependencies for the control API routers."""
from mockserver.engine.mock_server import mock_server
from mockserver.scripts.store import script_store


def get_mock_server():
    return mock_server


def get_script_store():
    return script_store
