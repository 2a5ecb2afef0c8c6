"""
Sahayak v1.0 — Configuration
All environment variables and constants. Single source of truth.
No other file reads os.environ directly.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

# ─── Paths ───────────────────────────────────────────────────────────────────
BASE_DIR = Path(__file__).resolve().parent.parent

# Load .env file if present
load_dotenv(BASE_DIR / ".env")


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() == "true"


# ─── API Keys ────────────────────────────────────────────────────────────────
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
OPENAI_BASE_URL = os.getenv("OPENAI_BASE_URL") or None
GROQ_API_KEY = os.getenv("GROQ_API_KEY", "")
SARVAM_API_KEY = os.getenv("SARVAM_API_KEY", "")

# ─── Provider Selection (swap by changing these) ─────────────────────────────
STT_PROVIDER = os.getenv("STT_PROVIDER", "sarvam_saarika")
# Options: sarvam_saarika | groq_whisper | mock
TTS_PROVIDER = os.getenv("TTS_PROVIDER", "sarvam_bulbul")
# Options: sarvam_bulbul | mock

# ─── Database ────────────────────────────────────────────────────────────────
DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"sqlite:///{BASE_DIR / 'sahayak.db'}"
)
# Managed hosts hand out postgres:// URLs; SQLAlchemy wants postgresql://
if DATABASE_URL.startswith("postgres://"):
    DATABASE_URL = DATABASE_URL.replace("postgres://", "postgresql://", 1)

# ─── Redis (shared cache tier) ───────────────────────────────────────────────
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
REDIS_DISABLED = _flag("REDIS_DISABLED")
CACHE_NAMESPACE = os.getenv("CACHE_NAMESPACE", "sahayak")

# ─── JWT / Auth ──────────────────────────────────────────────────────────────
JWT_SECRET = os.getenv("JWT_SECRET", "sahayak-dev-secret-change-in-production")
JWT_ALGORITHM = "HS256"
JWT_EXPIRY_HOURS = int(os.getenv("JWT_EXPIRY_HOURS", "24"))

# ─── LLM Tiers ───────────────────────────────────────────────────────────────
# Three cost/capability classes. Cost is USD per million tokens (prompt+completion).
LLM_TIERS = {
    "economy": {
        "model": os.getenv("LLM_ECONOMY_MODEL", "gpt-4.1-nano"),
        "cost_per_million": float(os.getenv("LLM_ECONOMY_COST", "0.10")),
    },
    "standard": {
        "model": os.getenv("LLM_STANDARD_MODEL", "gpt-4.1-mini"),
        "cost_per_million": float(os.getenv("LLM_STANDARD_COST", "0.40")),
    },
    "advanced": {
        "model": os.getenv("LLM_ADVANCED_MODEL", "gpt-4.1"),
        "cost_per_million": float(os.getenv("LLM_ADVANCED_COST", "2.00")),
    },
}
LLM_MAX_TOKENS = int(os.getenv("LLM_MAX_TOKENS", "600"))
LLM_TEMPERATURE = float(os.getenv("LLM_TEMPERATURE", "0.7"))
LLM_TIMEOUT_SECONDS = float(os.getenv("LLM_TIMEOUT_SECONDS", "60"))
CLASSIFIER_MODEL = os.getenv("CLASSIFIER_MODEL", "gpt-4o-mini")

# ─── Embeddings ──────────────────────────────────────────────────────────────
EMBEDDING_MODEL = os.getenv("EMBEDDING_MODEL", "text-embedding-3-small")
# cosine | dot; dot only for models trained for dot-product similarity
EMBEDDING_METRIC = os.getenv("EMBEDDING_METRIC", "cosine")

# ─── Semantic Cache ──────────────────────────────────────────────────────────
SEMANTIC_CACHE_THRESHOLD = float(os.getenv("SEMANTIC_CACHE_THRESHOLD", "0.95"))
SEMANTIC_CACHE_TTL = int(os.getenv("SEMANTIC_CACHE_TTL", "3600"))  # 1 hour
SEMANTIC_CACHE_CAPACITY = int(os.getenv("SEMANTIC_CACHE_CAPACITY", "1000"))
SEMANTIC_CACHE_MAX_SCAN = int(os.getenv("SEMANTIC_CACHE_MAX_SCAN", "200"))

# ─── TTS Cache ───────────────────────────────────────────────────────────────
TTS_CACHE_TTL = int(os.getenv("TTS_CACHE_TTL", "3600"))
TTS_MEMORY_CACHE_SIZE = int(os.getenv("TTS_MEMORY_CACHE_SIZE", "100"))

# ─── Session Context ─────────────────────────────────────────────────────────
CONTEXT_TTL = int(os.getenv("CONTEXT_TTL", str(3600 * 24)))  # 24 hours
CONTEXT_HISTORY_SIZE = 20

# ─── Lesson Phases ───────────────────────────────────────────────────────────
# Learner messages needed before leaving each phase.
PHASE_THRESHOLDS = {
    "greeting": int(os.getenv("PHASE_GREETING_MIN", "2")),
    "rapport": int(os.getenv("PHASE_RAPPORT_MIN", "4")),
    "assessment": int(os.getenv("PHASE_ASSESSMENT_MIN", "6")),
    "teaching": int(os.getenv("PHASE_TEACHING_MIN", "8")),
    "practice": int(os.getenv("PHASE_PRACTICE_MIN", "12")),
    "feedback": int(os.getenv("PHASE_FEEDBACK_MIN", "15")),
}
DEFAULT_PERSONA = os.getenv("DEFAULT_PERSONA", "priya")

# ─── TTS Settings ────────────────────────────────────────────────────────────
TTS_MODEL = os.getenv("TTS_MODEL", "bulbul:v2")
TTS_SAMPLE_RATE = int(os.getenv("TTS_SAMPLE_RATE", "22050"))
TTS_COMPRESS_THRESHOLD = int(os.getenv("TTS_COMPRESS_THRESHOLD", str(32 * 1024)))
TTS_MAX_CHARS = 2000
TTS_WARMUP = _flag("TTS_WARMUP")  # pre-synthesize common phrases at startup
SARVAM_TTS_URL = "https://api.sarvam.ai/text-to-speech"

# ─── STT Settings ────────────────────────────────────────────────────────────
GROQ_WHISPER_MODEL = "whisper-large-v3-turbo"
GROQ_STT_URL = "https://api.groq.com/openai/v1/audio/transcriptions"
SARVAM_STT_URL = "https://api.sarvam.ai/speech-to-text"
STT_CONFIDENCE_THRESHOLD = float(os.getenv("STT_CONFIDENCE_THRESHOLD", "0.4"))

# ─── Timeouts ────────────────────────────────────────────────────────────────
EXTRACTOR_TIMEOUT_SECONDS = float(os.getenv("EXTRACTOR_TIMEOUT_SECONDS", "2.0"))
VOICE_HTTP_TIMEOUT_SECONDS = float(os.getenv("VOICE_HTTP_TIMEOUT_SECONDS", "30.0"))

# ─── Languages ───────────────────────────────────────────────────────────────
# Detector labels → BCP-47 codes used by the voice providers
LANGUAGE_CODES = {
    "hindi": "hi-IN",
    "hinglish": "hi-IN",
    "english": "en-IN",
}

# ─── CORS ────────────────────────────────────────────────────────────────────
CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*").split(",")

# ─── Logging ─────────────────────────────────────────────────────────────────
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
