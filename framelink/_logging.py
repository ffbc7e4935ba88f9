# =============================================================================
# FrameLink -- Package Logger
# =============================================================================

from __future__ import annotations

import logging

logger = logging.getLogger("framelink")
logger.addHandler(logging.NullHandler())
