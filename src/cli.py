#!/usr/bin/env python3
"""
Fee Splitter Command Line Interface.

Provides commands for running and managing the fee splitter:
    - serve: Start the API server
    - check: Verify installation and configuration
    - info: Display system information
    - state: Show (and optionally migrate) the persisted state

Usage:
    feesplit serve [--host HOST] [--port PORT] [--debug] [--production]
    feesplit check
    feesplit info
    feesplit state [--migrate]
    feesplit --version
"""

import argparse
import json
import os
import sys

# Ensure src is in path when running from source
if os.path.exists(os.path.join(os.path.dirname(__file__), "fee_splitter.py")):
    sys.path.insert(0, os.path.dirname(__file__))

from migrations import CONTRACT_NAME, CONTRACT_VERSION  # noqa: E402


def cmd_serve(args):
    """Start the fee splitter API server."""
    from dotenv import load_dotenv

    load_dotenv()

    host = args.host or os.getenv("HOST", "0.0.0.0")
    port = args.port or int(os.getenv("PORT", 5000))
    debug = args.debug or os.getenv("FLASK_DEBUG", "").lower() == "true"

    print(f"Starting Fee Splitter API server on {host}:{port}")

    if args.production:
        try:
            import gunicorn.app.base

            class StandaloneApplication(gunicorn.app.base.BaseApplication):
                """Gunicorn WSGI application wrapper for production deployment."""

                def __init__(self, app, options=None):
                    self.options = options or {}
                    self.application = app
                    super().__init__()

                def load_config(self):
                    for key, value in self.options.items():
                        if key in self.cfg.settings and value is not None:
                            self.cfg.set(key.lower(), value)

                def load(self):
                    return self.application

            from api import create_app

            # State lives in one process; more workers would each hold a copy
            options = {
                "bind": f"{host}:{port}",
                "workers": args.workers or int(os.getenv("WORKERS", 1)),
                "threads": 4,
                "worker_class": "gthread",
                "timeout": 120,
                "accesslog": "-",
                "errorlog": "-",
            }
            StandaloneApplication(create_app(), options).run()

        except ImportError as e:
            if "gunicorn" in str(e):
                print("Error: gunicorn not installed. Install with: pip install feesplit[production]")
            else:
                print(f"Error: {e}")
            sys.exit(1)
    else:
        from api import create_app

        create_app().run(host=host, port=port, debug=debug)


def cmd_check(args):
    """Check installation and configuration."""
    print("Fee Splitter Installation Check")
    print("=" * 40)

    checks = []

    try:
        import fee_splitter  # noqa: F401

        checks.append(("Core splitter", "OK"))
    except ImportError as e:
        checks.append(("Core splitter", f"FAIL: {e}"))

    try:
        import api  # noqa: F401

        checks.append(("Flask API", "OK"))
    except ImportError as e:
        checks.append(("Flask API", f"FAIL: {e}"))

    try:
        from storage import StorageError, get_storage_backend

        try:
            storage = get_storage_backend()
            status = "OK" if storage.is_available() else "WARN (not available)"
            checks.append((f"Storage ({storage.__class__.__name__})", status))
        except StorageError as e:
            checks.append(("Storage", f"FAIL: {e}"))
    except ImportError as e:
        checks.append(("Storage", f"FAIL: {e}"))

    genesis_file = os.getenv("FEESPLIT_GENESIS_FILE")
    if genesis_file:
        if os.path.exists(genesis_file):
            checks.append(("Genesis file", "OK"))
        else:
            checks.append(("Genesis file", f"FAIL: {genesis_file} not found"))
    else:
        checks.append(("Genesis file", "SKIP (FEESPLIT_GENESIS_FILE not set)"))

    if os.getenv("FEESPLIT_REQUIRE_AUTH", "true").lower() == "true" and not os.getenv("FEESPLIT_API_KEY"):
        checks.append(("API key", "FAIL: FEESPLIT_API_KEY not set while auth is required"))
    else:
        checks.append(("API key", "OK"))

    try:
        import gunicorn  # noqa: F401

        checks.append(("Gunicorn (production)", "OK"))
    except ImportError:
        checks.append(("Gunicorn (production)", "SKIP (gunicorn not installed)"))

    print()
    all_ok = True
    for name, status in checks:
        icon = "✓" if status == "OK" else ("○" if "SKIP" in status or "WARN" in status else "✗")
        print(f"  {icon} {name}: {status}")
        if "FAIL" in status:
            all_ok = False

    print()
    if all_ok:
        print("All checks passed!")
        return 0
    print("Some checks failed. See above for details.")
    return 1


def cmd_info(args):
    """Display system information."""
    import platform

    print("Fee Splitter System Information")
    print("=" * 40)
    print(f"Contract: {CONTRACT_NAME} {CONTRACT_VERSION}")
    print(f"Python: {platform.python_version()}")
    print(f"Platform: {platform.platform()}")

    print()
    print("Configuration:")
    print(f"  STORAGE_BACKEND: {os.getenv('STORAGE_BACKEND', 'json (default)')}")
    print(f"  STATE_DATA_FILE: {os.getenv('STATE_DATA_FILE', 'splitter_state.json (default)')}")
    print(f"  FEESPLIT_GENESIS_FILE: {os.getenv('FEESPLIT_GENESIS_FILE', 'not set')}")
    print(f"  FEESPLIT_API_KEY: {'configured' if os.getenv('FEESPLIT_API_KEY') else 'not set'}")
    print(f"  LOG_LEVEL: {os.getenv('LOG_LEVEL', 'INFO (default)')}")
    print(f"  LOG_FORMAT: {os.getenv('LOG_FORMAT', 'console (default)')}")

    print()
    print("Storage:")
    from storage import StorageError, get_storage_backend

    try:
        for key, value in get_storage_backend().get_info().items():
            print(f"  {key}: {value}")
    except StorageError as e:
        print(f"  Error: {e}")

    return 0


def cmd_state(args):
    """Print the persisted state summary; with --migrate, upgrade it in place."""
    from fee_split_errors import MigrationError
    from fee_splitter import FeeSplitter
    from storage import StorageError, get_storage_backend

    try:
        storage = get_storage_backend()
        document = storage.load_state()
    except StorageError as e:
        print(f"Error: {e}")
        return 1

    if not document or not document.get("splitter"):
        print("No splitter state found.")
        return 1

    try:
        if args.migrate:
            splitter, result = FeeSplitter.migrate(document["splitter"])
            document["splitter"] = splitter.to_dict()
            storage.save_state(document)
            print(json.dumps(result.to_dict(), indent=2))
            return 0
        splitter = FeeSplitter.load(document["splitter"])
    except (MigrationError, StorageError) as e:
        print(f"Error: {e}")
        return 1

    print(json.dumps({
        "block_height": document.get("chain", {}).get("height"),
        "contract_version": splitter.query_contract_version(),
        "ownership": splitter.query_ownership(),
        "allocations": [entry.to_dict() for entry in splitter.registry],
        "flush_whitelist": splitter.query_flush_whitelist(),
    }, indent=2))
    return 0


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="feesplit",
        description="Fee Splitter - weighted fee distribution service",
    )
    parser.add_argument("--version", "-v", action="version",
                        version=f"%(prog)s {CONTRACT_VERSION}")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    serve_parser = subparsers.add_parser("serve", help="Start the API server")
    serve_parser.add_argument("--host", help="Host to bind to (default: 0.0.0.0)")
    serve_parser.add_argument("--port", type=int, help="Port to bind to (default: 5000)")
    serve_parser.add_argument("--debug", action="store_true", help="Enable debug mode")
    serve_parser.add_argument(
        "--production", action="store_true", help="Use gunicorn for production"
    )
    serve_parser.add_argument("--workers", type=int, help="Number of workers (production mode)")

    subparsers.add_parser("check", help="Check installation and configuration")
    subparsers.add_parser("info", help="Display system information")

    state_parser = subparsers.add_parser("state", help="Show persisted splitter state")
    state_parser.add_argument("--migrate", action="store_true",
                              help="Upgrade state written by an earlier release")

    args = parser.parse_args()

    if args.command == "serve":
        cmd_serve(args)
    elif args.command == "check":
        sys.exit(cmd_check(args))
    elif args.command == "info":
        sys.exit(cmd_info(args))
    elif args.command == "state":
        sys.exit(cmd_state(args))
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
