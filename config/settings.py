"""Central configuration loader for the moving-request intake engine."""

import os
from pathlib import Path
from dotenv import load_dotenv

load_dotenv()

# Base paths
PROJECT_ROOT = Path(__file__).parent.parent
SCHEMAS_DIR = PROJECT_ROOT / "config" / "schemas"
OUTPUT_DIR = PROJECT_ROOT / "output"

# Environment
ENVIRONMENT = os.getenv("ENVIRONMENT", "dev")

# Schema file paths
MOVING_REQUEST_SCHEMA = SCHEMAS_DIR / "moving_request.schema.json"

# Canonical record
SCHEMA_VERSION = "2.1"
DEFAULT_PLATFORM = os.getenv("DEFAULT_PLATFORM", "mobile")

# Parsed fields at or above this confidence auto-complete their guided step
AUTO_COMPLETE_CONFIDENCE = float(os.getenv("AUTO_COMPLETE_CONFIDENCE", "0.8"))

# LLM configuration (free-text moving info extraction)
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
LLM_MODEL = os.getenv("LLM_MODEL", "gpt-4o-mini")
LLM_MAX_TOKENS = int(os.getenv("LLM_MAX_TOKENS", "2048"))
LLM_TEMPERATURE = float(os.getenv("LLM_TEMPERATURE", "0.1"))
LLM_ENABLED = os.getenv("LLM_ENABLED", "true").lower() in ("true", "1", "yes")

# Web layer: in-memory sessions kept before the least recently used is saved and dropped
MAX_SESSIONS = int(os.getenv("MAX_SESSIONS", "500"))
