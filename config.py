"""
config.py - Configuration settings for the Counselling FAQ Assistant
=====================================================================

This file centralizes all configuration values. Every value can be
overridden from the environment (or a .env file); API keys must come
from the environment.
"""

import os
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables from .env file if it exists
load_dotenv()

# =============================================================================
# PATH CONFIGURATION
# =============================================================================

# Base directory (where this file lives)
BASE_DIR = Path(__file__).parent

# Data directories
DATA_DIR = BASE_DIR / "data"
FAQ_SOURCE_FILE = Path(os.getenv("FAQ_SOURCE_FILE", str(DATA_DIR / "faq.json")))   # {question, answer} records
FAQ_FILE = Path(os.getenv("FAQ_FILE", str(DATA_DIR / "faqs_with_embeddings.json")))  # Corpus served at runtime

# =============================================================================
# EMBEDDING MODEL CONFIGURATION
# =============================================================================

# Local sentence-transformers model; must match the one used by
# scripts/build_index.py when the corpus was precomputed
EMBEDDING_MODEL_NAME = os.getenv("EMBEDDING_MODEL_NAME", "BAAI/bge-small-en-v1.5")
EMBEDDING_DIMENSION = 384  # Dimension for bge-small-en-v1.5

# Worker pool for query embeddings
EMBEDDING_MIN_WORKERS = int(os.getenv("EMBEDDING_MIN_WORKERS", "1"))
EMBEDDING_MAX_WORKERS = int(os.getenv("EMBEDDING_MAX_WORKERS", "2"))
EMBEDDING_IDLE_TIMEOUT = float(os.getenv("EMBEDDING_IDLE_TIMEOUT", "60"))  # seconds
EMBEDDING_QUEUE_SIZE = int(os.getenv("EMBEDDING_QUEUE_SIZE", "64"))

# =============================================================================
# RETRIEVAL CONFIGURATION
# =============================================================================

# Number of FAQs kept after the hybrid merge (and per vector search)
TOP_K_RESULTS = int(os.getenv("TOP_K_RESULTS", "4"))

# Number of fuzzy keyword matches fed into the merge
KEYWORD_TOP_K = int(os.getenv("KEYWORD_TOP_K", "3"))

# Minimum cosine similarity for a vector match
VECTOR_THRESHOLD = float(os.getenv("VECTOR_THRESHOLD", "0.4"))

# Maximum fuzzy distance (0 = exact) for a keyword match
KEYWORD_THRESHOLD = float(os.getenv("KEYWORD_THRESHOLD", "0.3"))

# Top merged score below this means "no confident match"
CONFIDENCE_THRESHOLD = float(os.getenv("CONFIDENCE_THRESHOLD", "0.5"))

# Suggested FAQs attached to the final stream frame
SUGGESTION_COUNT = int(os.getenv("SUGGESTION_COUNT", "2"))

# Longer messages get a "keep it brief" reply instead of an answer
MAX_MESSAGE_LENGTH = int(os.getenv("MAX_MESSAGE_LENGTH", "500"))

# =============================================================================
# LLM CONFIGURATION
# =============================================================================

# "groq" (OpenAI-compatible SSE stream) or "ollama" (NDJSON stream)
LLM_PROVIDER = os.getenv("LLM_PROVIDER", "groq").lower()

# Groq API key - MUST be set in environment or .env file when using groq
GROQ_API_KEY = os.getenv("GROQ_API_KEY", "")
GROQ_MODEL = os.getenv("GROQ_MODEL", "llama-3.1-8b-instant")
GROQ_BASE_URL = os.getenv("GROQ_BASE_URL", "https://api.groq.com/openai/v1")

OLLAMA_URL = os.getenv("OLLAMA_URL", "http://localhost:11434/api/generate")
OLLAMA_MODEL = os.getenv("OLLAMA_MODEL", "llama3")

# Answers are rewritten from FAQ text, so keep generation deterministic
LLM_TEMPERATURE = float(os.getenv("LLM_TEMPERATURE", "0.0"))
LLM_MAX_TOKENS = int(os.getenv("LLM_MAX_TOKENS", "1024"))

# Time allowed to reach the provider and receive response headers
LLM_TIMEOUT_SECONDS = float(os.getenv("LLM_TIMEOUT_SECONDS", "30"))

# Deadline for relaying a whole streamed answer
LLM_STREAM_TIMEOUT_SECONDS = float(os.getenv("LLM_STREAM_TIMEOUT_SECONDS", "120"))

# =============================================================================
# SERVICE IDENTITY
# =============================================================================

ORGANISATION_NAME = os.getenv("ORGANISATION_NAME", "IIT Gandhinagar Counselling Services")
COUNSELLING_EMAIL = os.getenv("COUNSELLING_EMAIL", "cservices@iitgn.ac.in")
MEDICAL_CENTRE = os.getenv("MEDICAL_CENTRE", "IIT Gandhinagar Medical Center")
EMERGENCY_NUMBER = os.getenv("EMERGENCY_NUMBER", "+91-1800-XXXX-XXXX")

# =============================================================================
# SAFETY CONFIGURATION
# =============================================================================

# These are used by core/safety.py. Matching happens on lower-cased text
# with apostrophes removed, so "don't" and "dont" are the same phrase.

CRISIS_KEYWORDS = [
    "suicide",
    "kill myself",
    "want to die",
    "don't want to live",
    "do not want to live",
    "no point living",
    "no point in living",
    "life is meaningless",
    "self harm",
    "hurt myself",
    "end my life",
    "end it all",
    "end my suffering",
    "take my life",
    "cut myself",
    "overdose",
    "dying wish",
    "wanting to die",
    "should be dead",
    "better off dead",
    "deserve to die",
    "burden to everyone",
    "everyone would be better off",
    "can't take it anymore",
    "can't handle this",
    "hopeless",
    "worthless",
    "no one cares",
    "nobody loves me",
    "i'm a burden",
]

# Distress indicators that get the supportive-resources reply
DEPRESSION_KEYWORDS = [
    "depressed",
    "depression",
    "sad",
    "feeling low",
    "feeling down",
    "lonely",
    "alone",
    "isolated",
    "anxious",
    "anxiety",
    "stressed",
    "stress",
    "overwhelmed",
    "tired of everything",
    "exhausted",
    "no energy",
    "unmotivated",
    "lost interest",
    "empty",
    "numb",
    "struggling",
    "having a hard time",
    "difficult time",
    "need help",
    "mental health",
    "emotional",
    "crying",
    "can't focus",
    "can't sleep",
    "insomnia",
    "worried",
    "fear",
    "scared",
    "panic",
]

# =============================================================================
# SERVER / UI CONFIGURATION
# =============================================================================

ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv(
        "ALLOWED_ORIGINS",
        "http://localhost:3000,http://127.0.0.1:3000,http://localhost:8501",
    ).split(",")
    if origin.strip()
]

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Where the Streamlit UI sends chat requests
BACKEND_URL = os.getenv("BACKEND_URL", "http://localhost:8000")

# Demo questions shown as buttons in the Streamlit UI
DEMO_QUESTIONS = [
    "How do I book a counselling session?",
    "Are the counselling sessions confidential?",
    "Where is the counselling centre located?",
]


def validate_config() -> None:
    """
    Fail fast on settings the server cannot run without.

    Raises:
        ValueError: If the selected LLM provider is unknown or its API key
            is missing.
    """
    if LLM_PROVIDER not in ("groq", "ollama"):
        raise ValueError(
            f"Unsupported LLM_PROVIDER '{LLM_PROVIDER}'. Use 'groq' or 'ollama'."
        )
    if LLM_PROVIDER == "groq" and not GROQ_API_KEY:
        raise ValueError(
            "GROQ_API_KEY is not set. "
            "Please set GROQ_API_KEY in your .env file or environment."
        )
