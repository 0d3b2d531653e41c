"""Logging setup shared by entry points and workers."""

import logging
from typing import Optional

from leadintel.config import settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(level: Optional[str] = None):
    """Configure root logging once from LOG_LEVEL."""
    level_name = (level or settings.LOG_LEVEL).upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format=LOG_FORMAT
    )
    
    # Quiet chatty client libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)
    
    if level_name == "DEBUG":
        logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO)
