"""Simple configuration for the Excel skills assessment service."""
import os
from dotenv import load_dotenv

load_dotenv()

class Settings:
    # Database
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./excel_assessment.db")

    # LLM provider: "gemini" or "ollama"
    LLM_PROVIDER = os.getenv("LLM_PROVIDER", "gemini")
    LLM_TIMEOUT = float(os.getenv("LLM_TIMEOUT", 120))
    LLM_MAX_ATTEMPTS = int(os.getenv("LLM_MAX_ATTEMPTS", 1))

    # Gemini
    GEMINI_API_KEY = os.getenv("GEMINI_API_KEY")
    GEMINI_API_BASE = os.getenv("GEMINI_API_BASE", "https://generativelanguage.googleapis.com/v1beta")
    GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.5-pro")
    GEMINI_FAST_MODEL = os.getenv("GEMINI_FAST_MODEL", "gemini-2.5-flash")

    # Ollama
    OLLAMA_API_URL = os.getenv("OLLAMA_API_URL", "http://localhost:11434/api/generate")
    OLLAMA_MODEL = os.getenv("OLLAMA_MODEL", "llama3")

    # Uploads
    UPLOAD_DIR = os.getenv("UPLOAD_DIR", os.path.join(os.getcwd(), "uploads"))
    MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", 10 * 1024 * 1024))
    ALLOWED_UPLOAD_TYPES = (
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        "application/vnd.ms-excel",
    )

    # Identity resolution: "demo" uses one synthetic owner, "header" trusts AUTH_HEADER
    AUTH_MODE = os.getenv("AUTH_MODE", "demo")
    AUTH_HEADER = os.getenv("AUTH_HEADER", "X-User-Id")
    DEMO_USER_ID = os.getenv("DEMO_USER_ID", "demo-user")

    # App Settings
    DEBUG = os.getenv("DEBUG", "false").lower() in ("1", "true", "yes")
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    HOST = os.getenv("HOST", "0.0.0.0")
    PORT = int(os.getenv("PORT", 8000))

    # File Paths
    PACKAGE_ROOT = os.path.dirname(os.path.abspath(__file__))
    QUESTION_SCRIPT_PATH = os.getenv(
        "QUESTION_SCRIPT_PATH", os.path.join(PACKAGE_ROOT, "data", "question_script.json")
    )

settings = Settings()
