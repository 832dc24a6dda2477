"""
Run Server — start the Godot tool server on stdio.

This is the script a controller launches. It:
1. Loads configuration (.env + environment + flags)
2. Builds the locator, executor and supervisor
3. Starts the live bridge listener (unless disabled)
4. Registers every tool and serves JSON-RPC on stdin/stdout

Usage:
    # Serve tools on stdio
    python run_server.py

    # Use a specific Godot binary and fail fast if it is unusable
    python run_server.py --godot-path /opt/godot/godot --strict

    # Print the tool catalog and exit
    python run_server.py --list

    # No live bridge, debug logging on stderr
    python run_server.py --no-bridge --verbose
"""

from __future__ import annotations

import argparse
import atexit
import logging
import signal
import sys

from dotenv import load_dotenv

from godot_tools.bridge_host import BridgeHost
from godot_tools.config import GodotConfig
from godot_tools.executor import OperationExecutor
from godot_tools.handlers import register_godot_tools
from godot_tools.locator import GodotLocator
from godot_tools.server import StdioToolServer
from godot_tools.supervisor import ProcessSupervisor

logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s", stream=sys.stderr)
logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Serve Godot engine tools over stdio JSON-RPC.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python run_server.py --list
  python run_server.py --godot-path /usr/local/bin/godot --strict
  GODOT_BRIDGE_PORT=7000 python run_server.py
        """,
    )
    parser.add_argument("--godot-path", type=str, default=None, help="Path to the Godot executable")
    parser.add_argument("--strict", action="store_true", help="Fail instead of guessing a Godot path")
    parser.add_argument("--operations-script", type=str, default=None, help="Path to godot_operations.gd")
    parser.add_argument("--bridge-port", type=int, default=None, help="Port for the live bridge listener")
    parser.add_argument("--no-bridge", action="store_true", help="Do not start the live bridge listener")
    parser.add_argument("--list", action="store_true", help="List available tools and exit")
    parser.add_argument("--verbose", "-v", action="store_true", help="Show debug output")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    load_dotenv()

    config = GodotConfig.from_env(
        godot_path=args.godot_path,
        operations_script_path=args.operations_script,
        bridge_port=args.bridge_port,
        strict_path_validation=True if args.strict else None,
    )
    if args.verbose or config.debug_mode:
        logging.getLogger().setLevel(logging.DEBUG)
    logger.debug(f"Operations script path: {config.operations_script_path}")

    # ── Core objects ─────────────────────────────────────
    locator = GodotLocator(config)
    executor = OperationExecutor(locator, config)
    supervisor = ProcessSupervisor(locator)
    bridge_host = None if args.no_bridge else BridgeHost(port=config.bridge_port)

    server = StdioToolServer()
    tools = register_godot_tools(server, executor, supervisor, bridge_host)

    if args.list:
        print(f"\nAvailable tools ({len(tools)}):\n")
        for handler in server.handlers:
            print(f"  {handler.name:<24} {handler.description}")
        return 0

    # ── Shutdown hooks ───────────────────────────────────
    def cleanup():
        logger.debug("Cleaning up resources")
        supervisor.shutdown()
        if bridge_host is not None:
            bridge_host.stop()

    atexit.register(cleanup)

    def shutdown(sig, frame):
        cleanup()
        sys.exit(0)
    signal.signal(signal.SIGINT, shutdown)

    if bridge_host is not None:
        try:
            bridge_host.start()
        except OSError as e:
            logger.error(f"Live bridge unavailable on port {config.bridge_port}: {e}")

    server.run()
    return 0


if __name__ == "__main__":
    sys.exit(main())
