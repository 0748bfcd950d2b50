"""CalDAV server command-line tool."""

import argparse
import logging

from py_taskcal.config import ServerConfig

logger = logging.getLogger("py_taskcal.cmd")


def build_parser(defaults: ServerConfig) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Single-user CalDAV server backed by an in-memory store",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Serve alice's "personal" calendar on port 8080
  py-taskcal-server --user alice

  # Serve under a prefix with request tracing
  py-taskcal-server --prefix /dav --debug

Endpoints:
  - Discovery:  http://localhost:PORT/.well-known/caldav
  - Calendar:   http://localhost:PORT/PREFIX/USER/CALENDAR/
  - Resources:  http://localhost:PORT/PREFIX/USER/CALENDAR/UID.ics
  - Import:     POST http://localhost:PORT/PREFIX/USER/CALENDAR/?strategy=SKIP

Every option can also be set through a TASKCAL_* environment variable.
        """,
    )
    parser.add_argument("--addr", default=defaults.host, help=f"listening address (default: {defaults.host})")
    parser.add_argument("--port", type=int, default=defaults.port, help=f"listening port (default: {defaults.port})")
    parser.add_argument("--prefix", default=defaults.prefix, help="URL prefix of the CalDAV tree")
    parser.add_argument("--user", default=defaults.username, help="username of the calendar owner")
    parser.add_argument("--email", default=defaults.email, help="email of the calendar owner")
    parser.add_argument("--calendar", default=defaults.calendar_slug, help="calendar slug")
    parser.add_argument("--timezone", default=defaults.timezone, help="calendar timezone (IANA name)")
    parser.add_argument(
        "--debug",
        action="store_true",
        default=defaults.debug,
        help="enable debug logging (logs request/response bodies)",
    )
    return parser


def main() -> None:
    """Main entry point for the CalDAV server."""
    defaults = ServerConfig()
    args = build_parser(defaults).parse_args()

    config = ServerConfig(
        host=args.addr,
        port=args.port,
        prefix=args.prefix,
        username=args.user,
        email=args.email,
        calendar_slug=args.calendar,
        calendar_name=defaults.calendar_name,
        timezone=args.timezone,
        debug=args.debug,
    )

    from py_taskcal.debug import setup_debug_logging, setup_logging

    if config.debug:
        setup_debug_logging()
    else:
        setup_logging()

    from py_taskcal.server import create_memory_app

    app = create_memory_app(config)

    import uvicorn

    logger.info("CalDAV server listening on %s:%d", config.host, config.port)
    logger.info("Calendar: http://%s:%d%s/%s/%s/", config.host, config.port, config.prefix, config.username, config.calendar_slug)

    uvicorn.run(app, host=config.host, port=config.port, log_level="debug" if config.debug else "info")


if __name__ == "__main__":
    main()
