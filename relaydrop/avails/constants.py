from os import path

APP_NAME = "relaydrop"

RELAY_URL = "ws://localhost:3000/ws"
LINK_BASE = "http://localhost:3001/receive"

DEFAULT_MIME_TYPE = "application/octet-stream"

# websocket close codes
CLOSE_NORMAL = 1000

CHUNK_SIZE = 64 * 1024  # 64 KB
SEND_TIMEOUT = 10

MAX_RECONNECT_ATTEMPTS = 5
RECONNECT_DELAY = 3.0
RECONNECT_BACKOFF_FACTOR = 2
RECONNECT_MAX_DELAY = 30.0
OPEN_TIMEOUT = 10
MAX_FRAME_SIZE = 16 * 1024 * 1024

KEEPALIVE_INTERVAL = 15.0
RECEIVER_READY_RESEND_DELAY = 1.0

# fraction of the declared size at which the receiver assembles on its own
COMPLETION_THRESHOLD = 1.0
COMPLETION_GRACE_DELAY = 0.3
ACK_RESEND_DELAY = 0.5
ACK_WAIT_TIMEOUT = 10.0

STALL_TIMEOUT = 30.0
ABORT_ON_STALL = False

DEFAULT_CONFIG_FILE_NAME = "default_config.ini"
LOG_CONFIG_NAME = "log_config.json"

PATH_CURRENT = "."
PATH_LOG = "logs"
PATH_CONFIG = "configs"
PATH_CONFIG_FILE = path.join(PATH_CONFIG, DEFAULT_CONFIG_FILE_NAME)
PATH_LOG_CONFIG = path.join(path.dirname(path.dirname(__file__)), "configurations", LOG_CONFIG_NAME)
PATH_DOWNLOAD = path.join(path.expanduser("~"), "Downloads")

VERSIONS = {
    "GLOBAL": 1.0,
}

debug = False
