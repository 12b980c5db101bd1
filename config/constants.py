import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

CONFIG_DIR = Path(__file__).resolve().parent

# ============================================================
# VISION PROVIDER
# ============================================================
OPENAI_API_KEY = os.getenv('OPENAI_API_KEY', '')
DEFAULT_VISION_MODEL = os.getenv('OPENAI_VISION_MODEL', 'gpt-5-mini')

# Model/price table and prompt templates
MODELS_TABLE_PATH = CONFIG_DIR / "models.yaml"
PROMPTS_PATH = CONFIG_DIR / "prompts.yaml"

# ============================================================
# IMAGE PREPROCESSING
# ============================================================
IMAGE_MAX_EDGE_PX = 640
IMAGE_JPEG_QUALITY = 75
IMAGE_DOWNLOAD_TIMEOUT_SECONDS = 30
IMAGE_USER_AGENT = "gem-analysis-pipeline/1.0"

# ============================================================
# EXTRACTION & MERGE POLICY
# ============================================================
DEFAULT_WRITE_THRESHOLD = 0.7
FREE_TEXT_CONFIDENCE_DISCOUNT = 0.6
DEFAULT_OBSERVATION_CONFIDENCE = 0.5
DEFAULT_SUB_SCORE = 0.5

# Attributes that must resolve above the write threshold for a run to succeed
MANDATORY_ATTRIBUTES = ("weight", "color")

# Primary image sub-score weights (equal by default, normalized at load)
DEFAULT_SUB_SCORE_WEIGHTS = {
    "focus": 1.0,
    "lighting": 1.0,
    "background": 1.0,
    "color_fidelity": 1.0,
    "visibility": 1.0,
}

# ============================================================
# BATCH EXECUTION
# ============================================================
DEFAULT_POOL_WIDTH = 5
DEFAULT_BATCH_DELAY_SECONDS = 2.0
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BACKOFF_DELAYS = [1.0, 2.0, 4.0]

# Unparseable responses re-issue the provider request at most this many times
UNPARSEABLE_REISSUE_LIMIT = 1

# ============================================================
# STORAGE
# ============================================================
DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///gem_analysis.db')
PROGRESS_FILE = os.getenv('PROGRESS_FILE', '.gem-analysis-progress.json')

# ============================================================
# LOGGING
# ============================================================
LOG_DIR = os.getenv('LOG_DIR', 'logs')
LOG_FILE = "pipeline.log"
