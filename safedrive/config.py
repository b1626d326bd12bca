import os
import logging
from typing import Optional
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# Database configuration
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./safedrive.db")

# Sampling configuration
INTERVALS_PER_DISTANCE_UNIT = float(os.getenv("INTERVALS_PER_DISTANCE_UNIT", "3600"))
SPEED_UNIT = os.getenv("SPEED_UNIT", "mph")

# Detection thresholds (speed units per sampling interval)
ALERT_SPEED_MARGIN = float(os.getenv("ALERT_SPEED_MARGIN", "5"))
HARD_BRAKING_THRESHOLD = float(os.getenv("HARD_BRAKING_THRESHOLD", "8"))
RAPID_ACCELERATION_THRESHOLD = float(os.getenv("RAPID_ACCELERATION_THRESHOLD", "8"))
ALERT_COOLDOWN_SAMPLES = int(os.getenv("ALERT_COOLDOWN_SAMPLES", "0"))

# Scoring configuration
SCORE_SPEED_PENALTY = int(os.getenv("SCORE_SPEED_PENALTY", "2"))
SCORE_HARD_BRAKING_PENALTY = int(os.getenv("SCORE_HARD_BRAKING_PENALTY", "3"))
SCORE_FLOOR = int(os.getenv("SCORE_FLOOR", "60"))
SCORE_CEILING = int(os.getenv("SCORE_CEILING", "100"))

# Export configuration
DEFAULT_INSURANCE_PROVIDER = os.getenv("DEFAULT_INSURANCE_PROVIDER", "Unknown")

# Replay configuration
REPLAY_INTERVAL_SECONDS = float(os.getenv("REPLAY_INTERVAL_SECONDS", "1.0"))
REPLAY_CSV = os.getenv("REPLAY_CSV", os.path.join("data", "trip_samples.csv"))
REPLAY_DEFAULT_SPEED_LIMIT = float(os.getenv("REPLAY_DEFAULT_SPEED_LIMIT", "35"))

# WebSocket configuration
WS_MAX_CONNECTIONS = int(os.getenv("WS_MAX_CONNECTIONS", "100"))

# API configuration
API_DEFAULT_LIMIT = int(os.getenv("API_DEFAULT_LIMIT", "10"))
API_MAX_LIMIT = int(os.getenv("API_MAX_LIMIT", "100"))

# Logging configuration
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = os.getenv("LOG_FORMAT", "%(asctime)s - %(name)s - %(levelname)s - %(message)s")
LOG_FILE = os.getenv("LOG_FILE", "")

# Development configuration
DEBUG = os.getenv("DEBUG", "false").lower() == "true"

class Config:
    """Configuration class with runtime overrides."""

    def __init__(self):
        self.database_url = DATABASE_URL
        self.intervals_per_distance_unit = INTERVALS_PER_DISTANCE_UNIT
        self.speed_unit = SPEED_UNIT

        # Detection thresholds
        self.alert_speed_margin = ALERT_SPEED_MARGIN
        self.hard_braking_threshold = HARD_BRAKING_THRESHOLD
        self.rapid_acceleration_threshold = RAPID_ACCELERATION_THRESHOLD
        self.alert_cooldown_samples = ALERT_COOLDOWN_SAMPLES

        # Scoring weights
        self.score_speed_penalty = SCORE_SPEED_PENALTY
        self.score_hard_braking_penalty = SCORE_HARD_BRAKING_PENALTY
        self.score_floor = SCORE_FLOOR
        self.score_ceiling = SCORE_CEILING

        # Export
        self.default_insurance_provider = DEFAULT_INSURANCE_PROVIDER

        # Replay
        self.replay_interval_seconds = REPLAY_INTERVAL_SECONDS
        self.replay_csv = REPLAY_CSV
        self.replay_default_speed_limit = REPLAY_DEFAULT_SPEED_LIMIT

        # WebSocket settings
        self.ws_max_connections = WS_MAX_CONNECTIONS

        # API settings
        self.api_default_limit = API_DEFAULT_LIMIT
        self.api_max_limit = API_MAX_LIMIT

        # Logging
        self.log_level = LOG_LEVEL
        self.log_format = LOG_FORMAT
        self.log_file = LOG_FILE

        # Development
        self.debug = DEBUG

    def update_detection_thresholds(self,
                                  alert_speed_margin: Optional[float] = None,
                                  hard_braking_threshold: Optional[float] = None,
                                  rapid_acceleration_threshold: Optional[float] = None,
                                  alert_cooldown_samples: Optional[int] = None):
        """Update detection thresholds at runtime."""
        if alert_speed_margin is not None:
            self.alert_speed_margin = alert_speed_margin
        if hard_braking_threshold is not None:
            self.hard_braking_threshold = hard_braking_threshold
        if rapid_acceleration_threshold is not None:
            self.rapid_acceleration_threshold = rapid_acceleration_threshold
        if alert_cooldown_samples is not None:
            self.alert_cooldown_samples = alert_cooldown_samples

    def update_scoring_weights(self,
                             speed_penalty: Optional[int] = None,
                             hard_braking_penalty: Optional[int] = None,
                             floor: Optional[int] = None,
                             ceiling: Optional[int] = None):
        """Update scoring weights at runtime."""
        if speed_penalty is not None:
            self.score_speed_penalty = speed_penalty
        if hard_braking_penalty is not None:
            self.score_hard_braking_penalty = hard_braking_penalty
        if floor is not None:
            self.score_floor = floor
        if ceiling is not None:
            self.score_ceiling = ceiling
        if self.score_floor > self.score_ceiling:
            raise ValueError(
                f"score floor {self.score_floor} exceeds ceiling {self.score_ceiling}"
            )

    def get_detection_config(self) -> dict:
        """Get detection configuration as dictionary."""
        return {
            "alert_speed_margin": self.alert_speed_margin,
            "hard_braking_threshold": self.hard_braking_threshold,
            "rapid_acceleration_threshold": self.rapid_acceleration_threshold,
            "alert_cooldown_samples": self.alert_cooldown_samples
        }

    def get_scoring_config(self) -> dict:
        """Get scoring configuration as dictionary."""
        return {
            "speed_penalty": self.score_speed_penalty,
            "hard_braking_penalty": self.score_hard_braking_penalty,
            "floor": self.score_floor,
            "ceiling": self.score_ceiling
        }

# Global configuration instance
config = Config()

def setup_logging():
    """Setup logging configuration."""
    handlers = [logging.StreamHandler()]
    if config.log_file:
        handlers.append(logging.FileHandler(config.log_file))

    logging.basicConfig(
        level=getattr(logging, config.log_level),
        format=config.log_format,
        handlers=handlers
    )

    # Set specific logger levels
    logging.getLogger("uvicorn").setLevel(logging.INFO)
    logging.getLogger("fastapi").setLevel(logging.INFO)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.DEBUG if config.debug else logging.WARNING)

    return logging.getLogger(__name__)

# Initialize logger
logger = setup_logging()
