"""
SalesDesk entry point.

This file handles startup concerns (arg-parsing, logging) and launches the appropriate interface
(the chat API alone, or the API plus the terminal chat client).
"""

import argparse
import logging
import sys

from salesdesk.api.app import run_api
from salesdesk.config import settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _init_logging(level: str) -> None:
    numeric = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=numeric,
        format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
        stream=sys.stdout,
    )
    # One line per store query / model call is too chatty at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------
def main(argv: list[str] | None = None) -> None:
    """
    Main entry point for the SalesDesk application.

    Parses the command line, initializes logging and starts the API, optionally together with the
    terminal chat client.
    """
    if argv is None:
        argv = sys.argv[1:]

    parser = argparse.ArgumentParser(description="Run the SalesDesk chat assistant")
    parser.add_argument(
        "--mode",
        choices=["api", "cli"],
        type=str.lower,
        default="api",
        help="Serve the chat API, or the API plus an interactive terminal client (default: api)",
    )
    parser.add_argument(
        "--log-level",
        choices=["debug", "info", "warning", "error", "critical"],
        type=str.lower,
        default=settings.LOG_LEVEL,
        help="Logging level (default from env: %(default)s)",
    )
    args = parser.parse_args(argv)

    # Override log level setting with command-line argument
    settings.LOG_LEVEL = args.log_level

    _init_logging(settings.LOG_LEVEL)

    logger.info("Starting SalesDesk [%s mode]", args.mode)
    logger.debug("Planner=%s model=%s max_steps=%d", settings.PLANNER, settings.OPENAI_MODEL, settings.MAX_STEPS)

    if args.mode == "api":
        run_api(host="0.0.0.0", port=settings.API_PORT, reload=settings.DEBUG)
        return

    # Lazy import to avoid threading / client imports in API mode
    import threading  # pylint: disable=import-outside-toplevel

    from salesdesk.client.cli import run_cli  # pylint: disable=import-outside-toplevel

    # Start API server in a separate thread
    api_thread = threading.Thread(
        target=run_api,
        kwargs={
            "host": "0.0.0.0",
            "port": settings.API_PORT,
            "reload": False,  # Reload doesn't work well with threading
            "log_level": "warning",
        },
        daemon=True,
    )
    api_thread.start()

    # Run CLI in main thread
    run_cli()


if __name__ == "__main__":
    main()
