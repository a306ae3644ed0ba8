"""Entrypoint for the Trustate pairing and verification service."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

if __package__ in (None, ""):
    sys.path.insert(0, str(Path(__file__).resolve().parents[1]))  # pragma: no cover

from trustate import __version__
from trustate.config import load_settings
from trustate.logging_utils import configure_logging


def run_entrypoint() -> None:
    """Configure logging and serve the HTTP application with uvicorn."""
    settings = load_settings()
    configure_logging()
    logging.info("Starting Trustate service v%s", __version__)
    logging.info("Log file configured at: %s", settings.logging.file)

    import uvicorn

    from trustate.app import get_app_context
    from trustate.transport.http_server import create_http_app

    context = get_app_context()
    app = create_http_app(context)
    try:
        uvicorn.run(
            app,
            host=settings.server.host,
            port=settings.server.port,
            ws="none",
            log_config=None,
        )
    finally:
        context.store.close()


if __name__ == "__main__":  # pragma: no cover
    run_entrypoint()
