#!/usr/bin/env python3
"""
gatehouse - session and external-login service.
"""

import argparse
import logging
import sys

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s", stream=sys.stderr
)

#
# NOTE: Keep gatehouse imports lazy (inside main) so `--migrate` doesn't load FastAPI.
#


def purge_expired_sessions() -> int:
    """Delete expired session rows. Optional housekeeping; validation never relies on it."""
    from gatehouse.auth.context import build_auth_context

    ctx = build_auth_context()
    n = ctx.sessions.purge_expired()
    print(f"Purged {n} expired session(s).")
    return n


def main():
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Session and external-login service",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Apply pending database migrations
  python main.py --migrate

  # Show which migrations would run
  python main.py --migrate --dry-run

  # Serve the HTTP API
  python main.py --serve --port 8080

  # Remove expired sessions (safe to run from cron)
  python main.py --purge-expired-sessions
        """,
    )
    parser.add_argument("--serve", action="store_true", help="Run the HTTP server")
    parser.add_argument("--host", default="0.0.0.0", help="Server bind host (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, default=8080, help="Server listen port (default: 8080)")
    parser.add_argument("--migrate", action="store_true", help="Apply pending Postgres migrations and exit")
    parser.add_argument("--dry-run", action="store_true", help="With --migrate: list pending versions only")
    parser.add_argument(
        "--purge-expired-sessions", action="store_true", help="Delete expired session rows and exit"
    )

    args = parser.parse_args()

    if args.migrate:
        from gatehouse.db.migrate import main as migrate_main

        raise SystemExit(migrate_main(["--dry-run"] if args.dry_run else []))

    if args.purge_expired_sessions:
        purge_expired_sessions()
        return

    if args.serve:
        from gatehouse.api.server import run

        run(host=args.host, port=args.port)
        return

    parser.print_help()


if __name__ == "__main__":
    main()
