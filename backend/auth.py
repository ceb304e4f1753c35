# backend/auth.py

import hmac
import logging
from typing import Optional

logger = logging.getLogger(__name__)

PIN_HEADER = "X-Family-Pin"


def check_pin(presented: Optional[str], expected: str) -> bool:
    """Exact match against the configured family PIN. A missing PIN never matches."""
    if presented is None:
        return False
    ok = hmac.compare_digest(presented.encode("utf-8"), expected.encode("utf-8"))
    if not ok:
        logger.info("Rejected PIN attempt")
    return ok
