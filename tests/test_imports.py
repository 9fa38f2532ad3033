"""
Test that all modules can be imported correctly
Run this after installing dependencies to validate the setup
"""
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))


def test_core_imports():
    """Test mock server module imports"""
    print("Testing mock server imports...")
    from mockserver.config import settings
    from mockserver.models import SessionInfo, PoolStatus, ScriptParseResponse
    from mockserver.engine.script_parser import ScriptParser
    from mockserver.engine.listener_pool import ListenerPool
    from mockserver.engine.message_feed import MessageFeed
    from mockserver.engine.mock_server import mock_server
    from mockserver.scripts.store import script_store
    print("✓ Mock server imports successful")


def test_api_imports():
    """Test control API imports"""
    print("Testing API imports...")
    from mockserver.api.server import app
    from mockserver.api.routes import ROUTERS

    paths = {route.path for route in app.routes}
    assert "/api/sessions" in paths
    assert "/api/pool" in paths
    assert len(ROUTERS) == 4
    print("✓ API imports successful")


def test_client_imports():
    """Test client imports"""
    print("Testing client imports...")
    from client.main import MockServerClient
    print("✓ Client imports successful")


def test_bundled_scripts():
    """Test that the bundled mock scripts parse cleanly"""
    print("Testing bundled scripts...")
    from mockserver.engine import script_parser
    from mockserver.scripts.store import ScriptStore

    store = ScriptStore(project_root / "tests" / "mocks")
    names = store.list_scripts()
    print(f"  Found {len(names)} scripts: {names}")

    for name in names:
        entries = store.load(name)
        assert script_parser.errors(entries) == [], f"{name} has malformed lines"
        print(f"  ✓ {name}: {len(entries)} messages")
    print("✓ Bundled scripts successful")


if __name__ == "__main__":
    print("\n" + "=" * 60)
    print("Scripted TCP Mock Server - Import and Integration Tests")
    print("=" * 60 + "\n")

    try:
        test_core_imports()
        print()

        test_api_imports()
        print()

        test_client_imports()
        print()

        test_bundled_scripts()
        print()

        print("=" * 60)
        print("✓ ALL TESTS PASSED")
        print("=" * 60)
        print("\nNext steps:")
        print("  1. Start the control API: python -m mockserver.api.server")
        print("  2. Start a session: python -m client.main start --script trivial_pop3")

    except ImportError as e:
        print(f"\n✗ Import Error: {e}")
        print("\nPlease install dependencies first:")
        print("  pip install -e '.[test]'")
        sys.exit(1)
    except Exception as e:
        print(f"\n✗ Test Failed: {e}")
        import traceback

        traceback.print_exc()
        sys.exit(1)
