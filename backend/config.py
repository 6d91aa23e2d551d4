"""Configuration management for Parley Chat API."""
import os
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# API Keys
GROQ_API_KEY = os.getenv("GROQ_API_KEY")
SUPABASE_URL = os.getenv("SUPABASE_URL")
SUPABASE_KEY = os.getenv("SUPABASE_KEY")

# Server Configuration
PORT = int(os.getenv("PORT", "9000"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
ENVIRONMENT = os.getenv("ENVIRONMENT", "production")
VERSION = "1.0.0"

# CORS Configuration
CORS_ORIGINS = os.getenv(
    "CORS_ORIGINS",
    "http://localhost:5173,http://localhost:9000"
).split(",")

# Model Configuration
SUPPORTED_MODELS = [
    name.strip()
    for name in os.getenv(
        "SUPPORTED_MODELS",
        "llama-3.1-8b-instant,llama-3.3-70b-versatile"
    ).split(",")
    if name.strip()
]
DEFAULT_MODEL = os.getenv("DEFAULT_MODEL", SUPPORTED_MODELS[0])
MAX_OUTPUT_TOKENS = int(os.getenv("MAX_OUTPUT_TOKENS", "1024"))
REQUEST_TIMEOUT = float(os.getenv("REQUEST_TIMEOUT", "60"))  # seconds

# Retry Configuration
MAX_ATTEMPTS = int(os.getenv("MAX_ATTEMPTS", "3"))
RATE_LIMIT_RETRY_AFTER = 120  # seconds, used when upstream gives no hint

# Conversation Configuration
HISTORY_TURNS = int(os.getenv("HISTORY_TURNS", "3"))
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100

# Storage Configuration
STORAGE_BACKEND = os.getenv("STORAGE_BACKEND", "auto").lower()  # auto | supabase | file
DATA_DIR = Path(os.getenv("DATA_DIR", str(Path(__file__).parent / "data")))
CONVERSATIONS_FILE = Path(os.getenv("CONVERSATIONS_FILE", str(DATA_DIR / "conversations.json")))
CONVERSATIONS_TABLE = os.getenv("CONVERSATIONS_TABLE", "conversations")
CONVERSATIONS_SEARCH_FUNCTION = os.getenv("CONVERSATIONS_SEARCH_FUNCTION", "search_conversations")
