"""
Continuity Engine - Logging Configuration
"""

import logging
from typing import Optional

from continuity_engine.config import settings

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# Decision trail for reuse/link/create outcomes
AUDIT_LOGGER_NAME = "continuity_engine.audit"


def setup_logging(level: Optional[str] = None) -> None:
    """Configure root logging once; later calls are no-ops"""
    if getattr(setup_logging, "_configured", False):
        return

    logging.basicConfig(
        level=getattr(logging, (level or settings.log_level).upper()),
        format=LOG_FORMAT
    )
    setup_logging._configured = True
