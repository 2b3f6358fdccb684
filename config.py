"""
Application configuration

Values are read from the environment (a local .env file is loaded first).
"""

import logging
import os

from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

PORT = int(os.getenv("PORT", 8000))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

# Max items accepted by a single bulk create / replace / delete call
BULK_LIMIT = int(os.getenv("BULK_LIMIT", 100))
# Size of the "top" lists in analysis stats
TOP_ITEMS_LIMIT = 5

UNCATEGORIZED = "Uncategorized"


def configure_logging(level: str = LOG_LEVEL):
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
