"""
Runtime configuration for the Stock Ledger API.

Values come from the process environment, optionally seeded from a local
``.env`` file.
"""

import logging
import os
import sys

from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

PORT = int(os.getenv("PORT", 8000))

# Sales tax applied on top of every transaction subtotal
TAX_RATE = float(os.getenv("TAX_RATE", 0.21))
CURRENCY_DECIMALS = int(os.getenv("CURRENCY_DECIMALS", 2))
LIST_LIMIT = int(os.getenv("LIST_LIMIT", 100))

CLOUDINARY_CLOUD_NAME = os.getenv("CLOUDINARY_CLOUD_NAME")
CLOUDINARY_API_KEY = os.getenv("CLOUDINARY_API_KEY")
CLOUDINARY_API_SECRET = os.getenv("CLOUDINARY_API_SECRET")
CLOUDINARY_FOLDER = os.getenv("CLOUDINARY_FOLDER", "inventario-negocio")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


def _configure_logging() -> logging.Logger:
    """Configure the project logger once with a console handler."""

    logger = logging.getLogger("stock_ledger")
    if logger.handlers:
        return logger

    logger.setLevel(LOG_LEVEL)
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    logger.addHandler(handler)
    return logger


log = _configure_logging()


def get_logger(name: str) -> logging.Logger:
    return log.getChild(name)
