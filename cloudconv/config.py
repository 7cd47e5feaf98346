"""Client configuration. Loads from environment and .env file."""
import logging
import os
from pathlib import Path

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent
# Load .env from cwd, then project root .env
load_dotenv()
load_dotenv(BASE_DIR / ".env")

# Remote service
API_BASE_URL = os.getenv("CLOUDCONVERT_BASE_URL", "https://api.cloudconvert.org").rstrip("/")
API_KEY_ENV_NAME = "CLOUDCONVERT_APIKEY"
HTTP_TIMEOUT = float(os.getenv("CLOUDCONVERT_HTTP_TIMEOUT", "60"))
DOWNLOAD_CHUNK_SIZE = 64 * 1024

# Polling (seconds)
POLL_INTERVAL = float(os.getenv("CLOUDCONVERT_POLL_INTERVAL", "1"))
MIN_POLL_WAIT = 1.0
MAX_POLL_WAIT = 60.0
STATUS_RETRY_LIMIT = int(os.getenv("CLOUDCONVERT_STATUS_RETRIES", "3"))
STATUS_RETRY_BACKOFF = float(os.getenv("CLOUDCONVERT_STATUS_BACKOFF", "10"))

# Upload pipe: chunk size read from the source file and how many chunks may be queued
UPLOAD_CHUNK_SIZE = 64 * 1024
UPLOAD_QUEUE_SIZE = 8

# Concurrency
MAX_CONCURRENT_CONVERSIONS = int(os.getenv("CLOUDCONVERT_CONCURRENCY", "5"))

# Ledger database – SQLite under the user's data dir by default; set DATABASE_URL to override.
DATA_DIR = Path(os.getenv("CLOUDCONV_DATA_DIR", str(Path.home() / ".cloudconv")))
DATABASE_URL = os.getenv("DATABASE_URL", "").strip() or f"sqlite:///{DATA_DIR / 'cloudconv.db'}"

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "WARNING").upper()
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


def configure_logging(level: str = LOG_LEVEL) -> logging.Logger:
    """Configure root logging once; the CLI calls this with its verbosity."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.WARNING),
        format=LOG_FORMAT,
        datefmt=LOG_DATEFMT,
    )
    logging.getLogger("cloudconv").setLevel(getattr(logging, level.upper(), logging.WARNING))
    return logging.getLogger("cloudconv")


def get_api_key(explicit: str = "") -> str:
    """Return the explicit key, else the CLOUDCONVERT_APIKEY environment value (may be empty)."""
    return explicit or os.getenv(API_KEY_ENV_NAME, "")
