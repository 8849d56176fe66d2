import os
import re
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def _resolve_mongo_uri() -> str:
    """Resolve the MongoDB connection string, empty when not configured."""
    candidates = [
        os.getenv("MONGO_URI"),
        os.getenv("MONGODB_URI"),
    ]

    for candidate in candidates:
        if candidate and candidate.strip():
            return candidate.strip()

    return ""


MONGO_URI = _resolve_mongo_uri()
DATABASE_NAME = os.getenv("MONGO_DATABASE", "goflow")
COLLECTION_NAME = os.getenv("MONGO_COLLECTION", "events")

# Server-side limit for one SSRM aggregation; grids are interactive
SSRM_MAX_TIME_MS: int = int(os.getenv("SSRM_MAX_TIME_MS", "15000"))
# Largest row window a single request may ask for
SSRM_MAX_WINDOW: int = int(os.getenv("SSRM_MAX_WINDOW", "5000"))


_CREDENTIALS_RE = re.compile(r"(mongodb(?:\+srv)?://)[^@/\s]+@", re.IGNORECASE)


def redact_credentials(text: str) -> str:
    """Mask the user:password part of any MongoDB URI inside `text`.

    >>> redact_credentials("failed: mongodb://admin:s3cret@db:27017/app")
    'failed: mongodb://***@db:27017/app'
    """
    if not text:
        return text
    return _CREDENTIALS_RE.sub(r"\1***@", text)
