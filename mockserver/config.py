"""
Mock server configuration management
"""
from pathlib import Path
from typing import List, Optional
from pydantic_settings import BaseSettings


def parse_port_spec(spec: str) -> List[int]:
    """
    Expand a port specification into a list of port numbers.

    Accepts a single port ("5000"), an inclusive range ("5000-5009"), or a
    comma separated mix of both ("5000-5003,6000"). Port 0 may be repeated
    to request several OS-assigned ports.

    Raises:
        ValueError: If the spec is empty or contains an invalid port
    """
    ports: List[int] = []
    for part in spec.split(","):
        part = part.strip()
        if not part:
            continue
        if "-" in part:
            first, _, last = part.partition("-")
            start, end = int(first), int(last)
            if start > end:
                raise ValueError(f"Descending port range: {part}")
            ports.extend(range(start, end + 1))
        else:
            ports.append(int(part))

    if not ports:
        raise ValueError("Port specification is empty")
    for port in ports:
        if not 0 <= port <= 65535:
            raise ValueError(f"Port out of range: {port}")
    return ports


def parse_address_list(spec: str) -> List[str]:
    """Split a comma separated address list, dropping blanks."""
    addresses = [part.strip() for part in spec.split(",") if part.strip()]
    if not addresses:
        raise ValueError("Address list is empty")
    return addresses


class Settings(BaseSettings):
    """Mock server settings"""

    # Control API settings
    api_host: str = "127.0.0.1"
    api_port: int = 8000

    # Listener pool
    addresses: str = "127.0.0.1"
    ports: str = "5000-5009"
    listen_backlog: int = 16
    bind_poll_interval_ms: int = 10

    # Sessions
    default_timeout_ms: Optional[int] = None  # None waits forever
    max_finished_sessions: int = 100  # finished sessions kept for inspection

    # Paths
    project_root: Path = Path(__file__).parent.parent
    script_dir: Path = Path("tests") / "mocks"
    script_suffix: str = ".mock"
    log_dir: Path = project_root / "logs"

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console
    log_to_file: bool = True

    class Config:
        env_prefix = "MOCKSERVER_"
        env_file = ".env"

    @property
    def address_list(self) -> List[str]:
        return parse_address_list(self.addresses)

    @property
    def port_list(self) -> List[int]:
        return parse_port_spec(self.ports)


settings = Settings()
