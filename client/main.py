"""
Mock server control client

Small async client for the mock server control API, for test suites that
run the mock server in a separate process (or a different language):

1. Starts a session from a named script, inline text or raw messages
2. Hands back the port the client under test should connect to
3. Waits for the session result and reports mismatches

Also usable from the command line:

    python -m client.main start --script trivial_pop3 --timeout-ms 2000
    python -m client.main result <session-id>
    python -m client.main check path/to/script.mock
"""
import argparse
import asyncio
import base64
import json
import sys
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

import httpx
import structlog

from mockserver.engine import script_parser
from mockserver.engine.script_parser import ScriptError
from mockserver.exceptions import MockServerError
from mockserver.logging import setup_logging
from mockserver.models import Direction, PoolStatus, SessionInfo

logger = structlog.get_logger()


class ClientRequestError(MockServerError):
    """The control API rejected a request."""

    def __init__(self, status_code: int, detail: Any):
        super().__init__(f"Request failed ({status_code}): {detail}", {"status_code": status_code})
        self.status_code = status_code
        self.detail = detail


class MockServerClient:
    """
    Async client for the mock server control API

    Example usage:
        async with MockServerClient("http://localhost:8000") as client:
            session = await client.start_session(script="trivial_pop3", timeout_ms=1000)
            ...  # connect the client under test to session.port
            result = await client.wait_for_session(session.id)
            assert result.outcome == SessionOutcome.NORMAL
    """

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.client = client or httpx.AsyncClient(base_url=self.base_url, timeout=timeout)

    async def __aenter__(self) -> "MockServerClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        await self.client.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        response = await self.client.request(method, path, **kwargs)
        if response.is_error:
            try:
                detail = response.json().get("detail")
            except ValueError:
                detail = response.text
            logger.warning("control_api_error", method=method, path=path, status=response.status_code)
            raise ClientRequestError(response.status_code, detail)
        return response.json()

    async def start_session(
        self,
        script: Optional[str] = None,
        text: Optional[str] = None,
        messages: Optional[Iterable[Tuple[Direction, bytes]]] = None,
        address: str = "127.0.0.1",
        timeout_ms: Optional[int] = None,
    ) -> SessionInfo:
        """Start a session from exactly one of script name, script text or messages."""
        body: Dict[str, Any] = {"address": address, "timeout_ms": timeout_ms}
        if script is not None:
            body["script"] = script
        if text is not None:
            body["text"] = text
        if messages is not None:
            body["messages"] = [
                {
                    "direction": Direction(direction).value,
                    "payload_b64": base64.b64encode(payload).decode("ascii"),
                }
                for direction, payload in messages
            ]

        data = await self._request("POST", "/api/sessions", json=body)
        session = SessionInfo(**data)
        logger.debug("session_started_remotely", session_id=session.id, port=session.port)
        return session

    async def get_session(self, session_id: str) -> SessionInfo:
        return SessionInfo(**await self._request("GET", f"/api/sessions/{session_id}"))

    async def list_sessions(self) -> List[SessionInfo]:
        return [SessionInfo(**item) for item in await self._request("GET", "/api/sessions")]

    async def wait_for_session(self, session_id: str, timeout_ms: Optional[int] = None) -> SessionInfo:
        params = {"timeout_ms": timeout_ms} if timeout_ms is not None else None
        data = await self._request("GET", f"/api/sessions/{session_id}/result", params=params)
        return SessionInfo(**data)

    async def stop_session(self, session_id: str) -> SessionInfo:
        return SessionInfo(**await self._request("DELETE", f"/api/sessions/{session_id}"))

    async def pool_status(self) -> PoolStatus:
        return PoolStatus(**await self._request("GET", "/api/pool"))

    async def list_scripts(self) -> List[str]:
        return (await self._request("GET", "/api/scripts"))["scripts"]

    async def upload_script(self, name: str, text: str) -> Dict[str, Any]:
        return await self._request("PUT", f"/api/scripts/{name}", json={"text": text})


def check_script(path: Path) -> List[ScriptError]:
    """Parse a local script file and return every malformed line."""
    return script_parser.errors(script_parser.parse(path.read_bytes()))


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


async def _run_command(args: argparse.Namespace) -> int:
    if args.command == "check":
        problems = check_script(Path(args.path))
        for problem in problems:
            print(f"{args.path}:{problem.line}: {problem.kind.value}")
        return 1 if problems else 0

    async with MockServerClient(args.server_url) as client:
        try:
            if args.command == "start":
                text = Path(args.text_file).read_text(encoding="utf-8") if args.text_file else None
                session = await client.start_session(
                    script=args.script,
                    text=text,
                    address=args.address,
                    timeout_ms=args.timeout_ms,
                )
                _print_json(session.model_dump(mode="json"))
            elif args.command == "status":
                _print_json((await client.get_session(args.session_id)).model_dump(mode="json"))
            elif args.command == "result":
                session = await client.wait_for_session(args.session_id, args.timeout_ms)
                _print_json(session.model_dump(mode="json"))
                return 0 if session.error is None else 1
            elif args.command == "stop":
                _print_json((await client.stop_session(args.session_id)).model_dump(mode="json"))
            elif args.command == "pool":
                _print_json((await client.pool_status()).model_dump(mode="json"))
            elif args.command == "scripts":
                _print_json(await client.list_scripts())
            elif args.command == "upload":
                text = Path(args.path).read_text(encoding="utf-8")
                _print_json(await client.upload_script(args.name, text))
        except ClientRequestError as exc:
            logger.error("command_failed", command=args.command, status=exc.status_code)
            print(exc.message, file=sys.stderr)
            return 1
        except httpx.HTTPError as exc:
            logger.error("control_api_unreachable", server_url=args.server_url, error=str(exc))
            print(f"Cannot reach {args.server_url}: {exc}", file=sys.stderr)
            return 1
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Mock server control client")
    parser.add_argument(
        "--server-url",
        default="http://localhost:8000",
        help="URL of the mock server control API",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    start = commands.add_parser("start", help="Start a mock session")
    source = start.add_mutually_exclusive_group(required=True)
    source.add_argument("--script", help="Name of a script in the server's script directory")
    source.add_argument("--text-file", help="Local script file to send inline")
    start.add_argument("--address", default="127.0.0.1", help="Address the client will connect to")
    start.add_argument("--timeout-ms", type=int, help="Accept and receive timeout")

    for name, help_text in (
        ("status", "Show a session"),
        ("stop", "Cancel a session"),
    ):
        command = commands.add_parser(name, help=help_text)
        command.add_argument("session_id")

    result = commands.add_parser("result", help="Wait for a session to finish")
    result.add_argument("session_id")
    result.add_argument("--timeout-ms", type=int, help="Give up after this long")

    commands.add_parser("pool", help="Show listener pool status")
    commands.add_parser("scripts", help="List scripts on the server")

    upload = commands.add_parser("upload", help="Store a script on the server")
    upload.add_argument("name")
    upload.add_argument("path")

    check = commands.add_parser("check", help="Report every malformed line of a local script")
    check.add_argument("path")

    return parser


async def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point"""
    args = build_parser().parse_args(argv)
    return await _run_command(args)


if __name__ == "__main__":
    setup_logging("client", to_file=False)
    sys.exit(asyncio.run(main()))
