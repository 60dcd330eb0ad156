#!/usr/bin/env python3
"""
Whispers - share secrets anonymously.

Command-line entry point for serving the web app and preparing the database.
"""

import argparse
import logging
import sys

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s", stream=sys.stderr
)

logger = logging.getLogger(__name__)


def init_db() -> int:
    """Create the users table. Returns a process exit code."""
    from whispers.config import build_postgres_dsn, load_app_config
    from whispers.errors import StoreError
    from whispers.storage.postgres_store import PostgresUserStore

    dsn = build_postgres_dsn(load_app_config())
    if not dsn:
        logger.error("Postgres is not configured (set POSTGRES_DSN or POSTGRES_HOST/DB/USER/PASSWORD)")
        return 1
    try:
        PostgresUserStore(dsn).ensure_schema()
    except StoreError as e:
        logger.error("%s", str(e))
        return 1
    logger.info("Database schema is ready")
    return 0


def main():
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Share secrets anonymously",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Serve on $PORT (default 3000)
  python main.py --serve

  # Serve on a specific interface/port
  python main.py --serve --host 127.0.0.1 --port 8000

  # Create the Postgres schema and exit
  python main.py --init-db
        """,
    )
    parser.add_argument("--serve", action="store_true", help="Run the web server")
    parser.add_argument("--init-db", action="store_true", help="Create the users table in Postgres and exit")
    parser.add_argument("--host", default="0.0.0.0", help="Server bind host (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, default=None, help="Server listen port (default: $PORT or 3000)")

    args = parser.parse_args()

    try:
        if args.init_db:
            sys.exit(init_db())

        if args.serve:
            from whispers.api.web import run

            run(host=args.host, port=args.port)
            return

        parser.print_help()
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        raise


if __name__ == "__main__":
    main()
