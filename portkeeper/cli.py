#!/usr/bin/env python3
"""
Portkeeper CLI
"""
import argparse
import logging
import signal
import sys

import httpx

from portkeeper.config import settings
from portkeeper.firewall import FirewallAdapter
from portkeeper.preflight import PreflightError, check_dependencies

logger = logging.getLogger(__name__)


def configure_logging(level: str):
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


def _preflight() -> bool:
    try:
        check_dependencies(settings)
    except PreflightError as e:
        print(f"ERROR: {e}")
        return False
    return True


def cmd_run(args):
    """Run the polling loop in the foreground"""
    from portkeeper.main import build_controller
    from portkeeper.status_display import TerminalStatusReporter

    if not _preflight():
        sys.exit(1)

    reporters = []
    if settings.status_display and not args.no_display:
        reporters.append(TerminalStatusReporter(settings.gateway))

    controller = build_controller(reporters=reporters)

    def handle_signal(signum, frame):
        logger.info(f"Received signal {signum}, stopping...")
        controller.stop()

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    print("Starting port forwarding manager...")
    print(f"Logging to: {settings.activity_log_path}")
    controller.run()


def cmd_serve(args):
    """Run the polling loop with the status API"""
    import uvicorn

    if not _preflight():
        sys.exit(1)

    host = args.host or settings.api_host
    port = args.port or settings.api_port
    try:
        uvicorn.run("portkeeper.main:app", host=host, port=port, log_level=settings.log_level.lower())
    except Exception as e:
        logger.error(f"Failed to start server: {e}", exc_info=True)
        raise


def cmd_status(args):
    """Show status of a running agent"""
    url = args.url or f"http://{settings.api_host}:{settings.api_port}"
    print("Portkeeper Status:")
    print("-" * 50)
    try:
        response = httpx.get(f"{url}/api/status", timeout=2)
    except httpx.RequestError as e:
        print(f"API: Not accessible ({e})")
        sys.exit(1)

    if response.status_code != 200:
        print(f"API: Not responding (HTTP {response.status_code})")
        sys.exit(1)

    data = response.json()
    print(f"Status:    {data.get('status')}")
    print(f"Interface: {data.get('interface') or '-'}")
    print(f"Port:      {data.get('current_port') or '-'}")
    print(f"Firewall:  {data.get('firewall_status')}")
    if data.get("last_error"):
        print(f"Error:     {data['last_error']}")


def cmd_check(args):
    """Check external tools and firewall state"""
    if not _preflight():
        sys.exit(1)
    print(f"✓ {settings.natpmpc_binary} found")

    if FirewallAdapter(settings).is_firewall_active():
        print("✓ firewalld detected and running")
        print(f"  Using zone: {settings.firewall_zone}")
    else:
        print("⚠️  firewalld is not running - firewall ports will not be managed")
        print("  Port forwarding will still work, but you'll need to manually open ports")


def main():
    parser = argparse.ArgumentParser(description="Portkeeper CLI")
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    run_parser = subparsers.add_parser("run", help="Run the port forwarding loop")
    run_parser.add_argument("--no-display", action="store_true", help="Disable the status screen")

    serve_parser = subparsers.add_parser("serve", help="Run the loop with the status API")
    serve_parser.add_argument("--host", help="API bind address")
    serve_parser.add_argument("--port", type=int, help="API port")

    status_parser = subparsers.add_parser("status", help="Show status of a running agent")
    status_parser.add_argument("--url", help="Agent base URL")

    subparsers.add_parser("check", help="Check dependencies and firewall")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    configure_logging(settings.log_level)

    if args.command == "run":
        cmd_run(args)
    elif args.command == "serve":
        cmd_serve(args)
    elif args.command == "status":
        cmd_status(args)
    elif args.command == "check":
        cmd_check(args)


if __name__ == "__main__":
    main()
