# config.py
import os
from pathlib import Path

from dotenv import load_dotenv

# ------------------ ENV & CONFIG ------------------
load_dotenv()

GEMINI_API_KEY = os.getenv("GEMINI_API_KEY", "")
FAL_API_KEY = os.getenv("FAL_API_KEY", "")

# Models (override via env if your account uses different names)
# script + identity planning
PLANNING_MODEL = os.getenv("PLANNING_MODEL", "gemini-2.5-flash")
# multimodal panel art
IMAGE_MODEL = os.getenv("IMAGE_MODEL", "gemini-2.5-flash-image")
# "gemini" (reference photo + seed) or "fal" (nano banana, no seed)
IMAGE_BACKEND = os.getenv("IMAGE_BACKEND", "gemini").strip().lower()
FAL_IMAGE_ENDPOINT = os.getenv("FAL_IMAGE_ENDPOINT", "fal-ai/nano-banana")

# free tier quotas are per minute, keep image calls spaced out
PANEL_PACING_SECONDS = float(os.getenv("PANEL_PACING_SECONDS", "5"))
MAX_RETRIES = int(os.getenv("MAX_RETRIES", "3"))
RETRY_BASE_DELAY = float(os.getenv("RETRY_BASE_DELAY", "2"))

MIN_PANELS = int(os.getenv("MIN_PANELS", "6"))
MAX_PANELS = int(os.getenv("MAX_PANELS", "25"))
MAX_CHARACTERS = int(os.getenv("MAX_CHARACTERS", "3"))
MAX_SEED = 1_000_000
# regeneration nudges the session seed by at most this much
SEED_JITTER = 1000

REFERENCE_MAX_SIZE = int(os.getenv("REFERENCE_MAX_SIZE", "1024"))
REFERENCE_JPEG_QUALITY = 85
PANEL_WIDTH = int(os.getenv("PANEL_WIDTH", "800"))
# webtoon panels are taller than wide
PANEL_ASPECT_RATIO = os.getenv("PANEL_ASPECT_RATIO", "3:4")

STORIES_DIR = Path(os.getenv("STORIES_DIR", "memories"))
OUTPUT_DIR = Path(os.getenv("OUTPUT_DIR", "output"))
PRINT_PROMPTS = os.getenv("PRINT_PROMPTS", "1") == "1"

PROMPTS_DIR = Path(__file__).parent / "prompts"
