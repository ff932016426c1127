"""
Runtime configuration for EditAI
Reads settings from the environment (and a local .env file)
"""

import os
import logging
from typing import Optional
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

OPENAI_API_KEY: Optional[str] = os.getenv("OPENAI_API_KEY")
OPENAI_BASE_URL: Optional[str] = os.getenv("OPENAI_BASE_URL") or None
REQUEST_TIMEOUT: float = float(os.getenv("EDITAI_REQUEST_TIMEOUT", "120"))
LOG_LEVEL: str = os.getenv("EDITAI_LOG_LEVEL", "INFO").upper()

# Byte ceilings used by the upload constraints
MB = 1024 * 1024


def configure_logging(level: Optional[str] = None) -> None:
    """Set up root logging once for the app process."""
    logging.basicConfig(
        level=getattr(logging, level or LOG_LEVEL, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )


def get_api_key(api_key: Optional[str] = None) -> str:
    """Return the bearer token, preferring an explicit key over the environment."""
    api_key = api_key or os.getenv("OPENAI_API_KEY") or OPENAI_API_KEY
    if not api_key:
        raise ValueError("No API key provided. Set OPENAI_API_KEY environment variable or pass api_key parameter.")
    return api_key
