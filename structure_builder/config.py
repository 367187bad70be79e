"""Configuration for the AI Structure Builder service."""

import os
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# LLM API Keys
GOOGLE_API_KEY = os.getenv("GOOGLE_API_KEY", "")
ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY", "")

# LLM Models
GEMINI_MODELS = {
    "flash": "gemini-2.0-flash",
    "pro": "gemini-2.5-pro",
}

CLAUDE_MODELS = {
    "haiku": "claude-haiku-4-5-20251001",
    "sonnet": "claude-sonnet-4-5-20250929",
}

DEFAULT_PROVIDER = os.getenv("DEFAULT_PROVIDER", "gemini")
DEFAULT_MODELS = {"gemini": "flash", "claude": "haiku"}
MAX_TOKENS = int(os.getenv("MAX_TOKENS", "4000"))
TEMPERATURE = float(os.getenv("TEMPERATURE", "0.7"))

# Requests
REQUEST_TIMEOUT_SECONDS = float(os.getenv("REQUEST_TIMEOUT_SECONDS", "60"))
MAX_RETRIES = int(os.getenv("MAX_RETRIES", "3"))
RETRY_BASE_DELAY_SECONDS = float(os.getenv("RETRY_BASE_DELAY_SECONDS", "2.0"))

# Building
MAX_STRUCTURE_SIZE = int(os.getenv("MAX_STRUCTURE_SIZE", "100"))
CONFIRMATION_THRESHOLD = int(os.getenv("CONFIRMATION_THRESHOLD", "50"))
DEFAULT_TARGET_SIZE = int(os.getenv("DEFAULT_TARGET_SIZE", "500"))
MIN_VOXEL_THRESHOLD = int(os.getenv("MIN_VOXEL_THRESHOLD", "10"))

# Performance
BLOCKS_PER_TURN = int(os.getenv("BLOCKS_PER_TURN", "10"))
BUILD_DELAY_SECONDS = float(os.getenv("BUILD_DELAY_SECONDS", "0.1"))

# Chunked generation
CHUNKED_GENERATION_ENABLED = _env_bool("CHUNKED_GENERATION_ENABLED", True)
CHUNKED_THRESHOLD = int(os.getenv("CHUNKED_THRESHOLD", "1000"))
CHUNK_SIZE = int(os.getenv("CHUNK_SIZE", "16"))
CHUNK_REQUEST_DELAY_SECONDS = float(os.getenv("CHUNK_REQUEST_DELAY_SECONDS", "1.0"))

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_AI_REQUESTS = _env_bool("LOG_AI_REQUESTS", False)
LOG_BUILDING = _env_bool("LOG_BUILDING", True)

# Cache
CACHE_TTL_SECONDS = int(os.getenv("CACHE_TTL_SECONDS", "86400"))

# Server
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "8000"))
