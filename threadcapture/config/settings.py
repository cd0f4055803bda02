from __future__ import annotations

import os
from pathlib import Path

# Local data directory (session database, logs, lock file)
DATA_DIR: Path = Path(os.getenv("THREADCAPTURE_DATA_DIR") or (Path.home() / ".threadcapture"))

# Session database
DB_PATH: Path = DATA_DIR / "sessions.db"

# Logging
LOG_DIR: Path = DATA_DIR / "logs"
LOG_FILE: Path = LOG_DIR / "threadcapture.log"
LOG_LEVEL: str = os.getenv("THREADCAPTURE_LOG_LEVEL", "INFO").upper()

# Poll interval for new snapshots (seconds)
POLL_INTERVAL_SECONDS: float = float(os.getenv("POLL_INTERVAL_SECONDS", "3.0"))

# Delay before the first capture after start-up (seconds)
INITIAL_DELAY_SECONDS: float = 1.0

# Screen-reader command that prints a base64-encoded JSON snapshot on stdout.
# Platform specific; empty means no live probe is configured.
CAPTURE_COMMAND: str = (os.getenv("CAPTURE_COMMAND") or "").strip()
CAPTURE_TIMEOUT_SECONDS: float = float(os.getenv("CAPTURE_TIMEOUT_SECONDS", "20"))

# Model label stored on captured sessions
CAPTURE_MODEL_LABEL: str = "claude-for-excel"

# Workbook identity used when the probe cannot name the window
UNKNOWN_WORKBOOK: str = "Unknown"

# Extractive summarizer
SUMMARY_RATIO: float = float(os.getenv("SUMMARY_RATIO", "0.3"))
RANK_ITERATIONS: int = int(os.getenv("RANK_ITERATIONS", "50"))
RANK_DAMPING: float = float(os.getenv("RANK_DAMPING", "0.85"))

# Assistant messages that segment into more units than this are left as-is.
# 0 disables the cap.
SUMMARY_MAX_UNITS: int = int(os.getenv("SUMMARY_MAX_UNITS", "400"))

# Anthropic
ANTHROPIC_API_KEY: str | None = os.getenv("ANTHROPIC_API_KEY")
ANTHROPIC_MODEL: str = os.getenv("ANTHROPIC_MODEL", "claude-sonnet-4-20250514")
ANTHROPIC_MAX_TOKENS: int = 4096

# LotL (local controller routing prompts through a logged-in browser session)
LOTL_BASE_URL: str = os.getenv("LOTL_BASE_URL", "http://localhost:3000")
LOTL_TIMEOUT: float = float(os.getenv("LOTL_TIMEOUT", "180"))

# Remote summarizer provider
# Priority:
# 1) Explicit env var always wins
# 2) Otherwise anthropic when a key is configured
# 3) Otherwise none (extractive summarizer only)
_env_provider = (os.getenv("SUMMARY_PROVIDER") or "").strip().lower()

if _env_provider:
    _default_provider = _env_provider
elif ANTHROPIC_API_KEY:
    _default_provider = "anthropic"
else:
    _default_provider = "none"

SUMMARY_PROVIDER: str = _default_provider

# Retry behavior when the session db is locked
DB_LOCKED_RETRIES: int = 3
DB_LOCKED_BACKOFF_SECONDS: float = 0.35
