"""Executable entry point for launching the Library XML FastAPI application.

Process managers can import the stable ``app`` object from
``library_xml_api.app``; ``python -m library_xml_api.run_server`` runs it
directly for local development.

Environment Variables:
    PORT (int): Override listening port (default 8000).
    LIBRARY_DATA_DIR, LIBRARY_LOG_LEVEL, ...: see :mod:`library_xml_api.config`.

Example:
    $ LIBRARY_DATA_DIR=./Data python -m library_xml_api.run_server
    $ PORT=9000 library-xml-server
"""

from __future__ import annotations

import logging
import os

import uvicorn

from .app import app
from .config import Settings


def main() -> None:
    """Launch the ASGI server with development-friendly defaults.

    Reads the ``PORT`` environment variable (default 8000). For production,
    start uvicorn explicitly so you can configure workers and reload behavior.
    """
    settings = Settings.from_env()
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))


if __name__ == "__main__":
    main()
