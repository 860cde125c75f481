"""
CLI entry point for SignalGate.

Usage:
    python main.py api [--host 0.0.0.0] [--port 3000]
    python main.py config
    python main.py check --origin https://app.example.com --token s3cret
"""

import argparse
import json
import sys
import time

from signalgate.config import get_settings
from signalgate.exceptions import ConfigurationError
from signalgate.logging_setup import configure_logging


def cmd_api(args):
    """Start the REST API server."""
    import uvicorn

    from signalgate.api import create_app

    settings = get_settings()
    host = args.host or settings.api.host
    port = args.port or settings.api.port
    try:
        app = create_app(settings)
    except ConfigurationError as exc:
        print(f"Error: {exc}")
        sys.exit(1)

    print(f"Starting SignalGate on {host}:{port}")
    uvicorn.run(app, host=host, port=port, log_level=settings.logging.level.lower())


def cmd_config(args):
    """Print the effective settings (secret masked)."""
    print(json.dumps(get_settings().as_dict(), indent=2))


def cmd_check(args):
    """Evaluate one synthetic request through a fresh gate."""
    from signalgate.gate import AdmissionGate, RequestDescriptor

    settings = get_settings()
    try:
        gate = AdmissionGate(settings.gate)
    except ConfigurationError as exc:
        print(f"Error: {exc}")
        sys.exit(1)

    descriptor = RequestDescriptor(
        origin=args.origin,
        referer=args.referer,
        user_agent=args.user_agent,
        trusted_header=args.token,
        client_key=args.client,
        now=time.monotonic(),
    )
    decision = gate.evaluate(descriptor)
    print(json.dumps(
        {
            "admitted": decision.admitted,
            "status": decision.status_code,
            "reason": decision.reason.value if decision.reason else None,
        },
        indent=2,
    ))
    sys.exit(0 if decision.admitted else 2)


def main():
    parser = argparse.ArgumentParser(
        description="SignalGate - key/login service with a gated signal proxy"
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # api
    p_api = subparsers.add_parser("api", help="Start REST API server")
    p_api.add_argument("--host", default=None)
    p_api.add_argument("--port", type=int, default=None)

    # config
    subparsers.add_parser("config", help="Show effective settings")

    # check
    p_check = subparsers.add_parser("check", help="Run one request through the gate")
    p_check.add_argument("--origin", default=None)
    p_check.add_argument("--referer", default=None)
    p_check.add_argument("--user-agent", default="Mozilla/5.0")
    p_check.add_argument("--token", default=None, help="Trusted header value")
    p_check.add_argument("--client", default="127.0.0.1", help="Client key")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    configure_logging(get_settings().logging)

    commands = {
        "api": cmd_api,
        "config": cmd_config,
        "check": cmd_check,
    }
    commands[args.command](args)


if __name__ == "__main__":
    main()
