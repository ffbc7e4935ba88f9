# =============================================================================
# FrameLink -- Protocol Constants
# =============================================================================

# -- Wire format --------------------------------------------------------------

HEADER_FORMAT = ">BI"  # type (u8), channel (u32 big-endian)
HEADER_SIZE = 5
MAX_TYPE = 0xFF
MAX_CHANNEL = 0xFFFFFFFF

HEARTBEAT_TYPE = 0x09

# -- Timing (seconds) ---------------------------------------------------------

HEARTBEAT_INTERVAL = 15.0
CONNECTION_TIMEOUT = 10.0

# -- Reconnection -------------------------------------------------------------

RECONNECT_BASE_DELAY = 1.0
RECONNECT_MAX_DELAY = 30.0
RECONNECT_MAX_RETRIES = 5  # -1 = infinite
RECONNECT_JITTER_RATIO = 0.3

# -- Messages -----------------------------------------------------------------

MAX_MESSAGE_SIZE = 1_048_576  # 1 MB
FRAME_QUEUE_SIZE = 1000

# -- WebSocket close codes -----------------------------------------------------

WS_CLOSE_NORMAL = 1000
