# =============================================================================
# MHU Python Client -- Protocol Constants
# =============================================================================
#
# Values match the hub's plain frame protocol.
# =============================================================================

# -- Framing -------------------------------------------------------------------

FIELD_DELIMITER = "."
FRAME_TERMINATOR = "\n"
LEGACY_FRAME_PARTS = 4     # subscriber, topic, action, object id
ESCAPED_FRAME_PARTS = 3    # subscriber, topic, payload
FRAME_PADDING = "\x00\r\n"

RECEIVE_BUFFER_SIZE = 1024  # bytes per transport read
MAX_FRAME_SIZE = 65_536     # bytes buffered before an unterminated frame is dropped

# -- Timing (seconds) ----------------------------------------------------------

RECONNECT_DELAY = 10.0
RECONNECT_MAX_DELAY = 300.0
RECONNECT_FACTOR = 1.5
RECONNECT_MAX_ATTEMPTS = -1  # -1 = retry forever

CONNECTION_TIMEOUT = None    # None = wait for the handshake indefinitely
READ_TIMEOUT = None

# -- Dispatch ------------------------------------------------------------------

DISPATCH_WORKERS = 8
DISPATCH_QUEUE_SIZE = 1000

# -- Certificates --------------------------------------------------------------

CLIENT_CERT_FILE = "client.pem"
CLIENT_KEY_FILE = "client.key"
