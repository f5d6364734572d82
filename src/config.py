"""
Configuration settings for the Literary Corpus Crawler & Analyzer.
"""

import os
from pathlib import Path

# =============================================================================
# PATHS (using pathlib for cross-platform compatibility)
# =============================================================================

BASE_DIR = Path(__file__).parent.parent.resolve()  # Go up one level from src/ to project root
DATA_DIR = Path(os.environ.get("CORPUS_DATA_DIR", BASE_DIR / "data" / "texts"))
LOG_DIR = Path(os.environ.get("CORPUS_LOG_DIR", BASE_DIR / "logs"))
UNKNOWN_DIR_NAME = "Unknown"     # Country folder for texts without a resolved author

# =============================================================================
# DATABASE
# =============================================================================

DATABASE_URL = os.environ.get(
    "CORPUS_DATABASE_URL",
    f"sqlite:///{BASE_DIR / 'data' / 'corpus.db'}",
)

# =============================================================================
# REMOTE CATALOG
# =============================================================================

SEARCH_URL = "https://chitanka.info/texts/search.xml?q={query}"
PERSON_URL = "https://chitanka.info/persons/search.xml?q={author_id}&by=id&match=exact"
DOWNLOAD_URL = "https://m3.chitanka.info/text/{text_id}.txt.zip"

# Bulgarian lowercase alphabet used to build 3-letter search keys
LETTERS = "абвгдежзийклмнопрстуфхцчшщюя"
QUERY_LENGTH = 3

# =============================================================================
# RATE LIMITING & PACING
# =============================================================================

MAX_RETRIES = 5                  # Retry cap for both 429 and network failures
BACKOFF_BASE_SECONDS = 5.0       # 429 backoff: 5s, 10s, 20s, 40s, ...
NETWORK_RETRY_DELAY = 3.0        # Fixed wait after a connection error / timeout
AUTHOR_LOOKUP_DELAY = 0.5        # Pause after each author lookup before the next one
SAVE_DELAY = 1.5                 # Pause after every successfully saved text
QUERY_DELAY = 1.0                # Pause after each query key
REQUEST_TIMEOUT = 30             # Per-request timeout (seconds)

DEFAULT_QUOTA = 100              # New texts per crawl run

# =============================================================================
# HTTP HEADERS
# =============================================================================

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

REQUEST_HEADERS = {
    "User-Agent": USER_AGENT,
    "Accept": "*/*",
}

# =============================================================================
# LOGGING
# =============================================================================

LOG_LEVEL = os.environ.get("CORPUS_LOG_LEVEL", "INFO").upper()
LOG_FORMAT = "[%(asctime)s] [%(levelname)s] %(name)s: %(message)s"

# =============================================================================
# FILE ENCODING (Cross-platform)
# =============================================================================

FILE_ENCODING = "utf-8"
TEXT_EXTENSION = ".txt"
