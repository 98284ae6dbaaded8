"""
Central configuration — reads from .env file.

Every value is read once at import time from the environment (or a .env file
in the working directory). Tests override individual values with
monkeypatch.setattr(config, "NAME", value); all code reads config.X at call
time so overrides take effect immediately.
"""
import os
from dotenv import load_dotenv

load_dotenv()

# ── Storage ───────────────────────────────────────────────────────────────────
# Classification cache + selection run log live here (SQLite file + log file).
DATA_DIR: str = os.getenv("DATA_DIR", "data")

# ── Content classification providers ──────────────────────────────────────────
# Add keys for whichever providers you have access to.
# With no key at all the service still runs: every image is scored on quality
# only and the response carries a top-level warning.
OPENAI_API_KEY: str | None    = os.getenv("OPENAI_API_KEY")
ANTHROPIC_API_KEY: str | None = os.getenv("ANTHROPIC_API_KEY")

# auto      → OpenAI if its key is present, otherwise Anthropic
# openai    → force OpenAI
# anthropic → force Anthropic
CLASSIFIER_PROVIDER: str = os.getenv("CLASSIFIER_PROVIDER", "auto")
OPENAI_MODEL: str        = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
ANTHROPIC_MODEL: str     = os.getenv("ANTHROPIC_MODEL", "claude-3-haiku-20240307")

# Classification calls per batch that may be in flight at once (rate limits)
CLASSIFY_CONCURRENCY: int    = int(os.getenv("CLASSIFY_CONCURRENCY", "5"))
# Per-image timeout; a timeout only fails that one image
CLASSIFY_TIMEOUT_SECS: float = float(os.getenv("CLASSIFY_TIMEOUT_SECS", "20"))
# Whole-batch deadline; calls still pending are cancelled. 0 disables.
BATCH_DEADLINE_SECS: float   = float(os.getenv("BATCH_DEADLINE_SECS", "60"))

# ── Classification cache ──────────────────────────────────────────────────────
# sqlite → persistent cache in DATA_DIR (default)
# memory → process-local dict (tests / single-shot runs)
CACHE_BACKEND: str              = os.getenv("CACHE_BACKEND", "sqlite")
CACHE_TTL_SECS: int             = int(os.getenv("CACHE_TTL_SECS", "86400"))
CACHE_PURGE_INTERVAL_SECS: int  = int(os.getenv("CACHE_PURGE_INTERVAL_SECS", "3600"))

# ── Scoring / layout ──────────────────────────────────────────────────────────
# Resolution score saturates at this size and scales linearly to 0 below it
MIN_WIDTH: int  = max(1, int(os.getenv("MIN_WIDTH", "800")))
MIN_HEIGHT: int = max(1, int(os.getenv("MIN_HEIGHT", "600")))
# Aspect-ratio variance at which a mosaic-eligible section switches to mosaic
MOSAIC_ASPECT_VARIANCE: float = float(os.getenv("MOSAIC_ASPECT_VARIANCE", "0.04"))

# ── HTTP server ───────────────────────────────────────────────────────────────
MAX_IMAGES_PER_REQUEST: int = int(os.getenv("MAX_IMAGES_PER_REQUEST", "100"))
SERVER_HOST: str            = os.getenv("SERVER_HOST", "0.0.0.0")
SERVER_PORT: int            = int(os.getenv("SERVER_PORT", "8080"))
