#!/usr/bin/env python3
"""
SecureBank Entry Point

Starts the FastAPI server with JSON logging configured from the environment.
"""

import sys

from securebank.api import run_server
from securebank.config import get_config
from securebank.logging_config import setup_logging


if __name__ == "__main__":
    config = get_config()
    logger = setup_logging(config.log_level)
    logger.info(f"Starting SecureBank API on {config.api_host}:{config.api_port}")

    try:
        run_server(host=config.api_host, port=config.api_port, debug=False)
    except KeyboardInterrupt:
        logger.info("Shutting down SecureBank API")
    except Exception:
        logger.exception("Error starting server")
        sys.exit(1)
