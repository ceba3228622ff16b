"""
Configuration management for the focus coaching system.
"""

import os
import json
import logging
from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional


_log = logging.getLogger(__name__)


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


@dataclass
class ScoringConfig:
    """Instant score weights, thresholds and display smoothing."""
    head_pose_weight: float = 0.6  # Head pose is the most reliable signal
    gaze_weight: float = 0.2       # Gaze data is noisy
    face_presence_weight: float = 0.2
    yaw_threshold_deg: float = 30.0
    pitch_threshold_deg: float = 25.0
    gaze_threshold_deg: float = 30.0
    gaze_confidence_floor: float = 0.5
    # Display smoothing only (alignment readout), user tunable
    ema_alpha: float = 0.15
    display_drop_threshold: float = 8.0
    display_recover_threshold: float = 5.0


@dataclass
class CalibrationConfig:
    """Gaze calibration settings."""
    calibration_frames: int = 50
    gaze_center_deg: float = 90.0  # Raw bearing when looking at the camera


@dataclass
class AccumulatorConfig:
    """Session score accumulation settings."""
    eval_interval_sec: float = 1.0
    recent_buffer_size: int = 10      # ~2s of frames at 5 Hz
    distraction_threshold: float = 65.0
    sustain_evals_required: int = 3
    decrement_step: int = 1
    max_history_length: int = 300
    focus_threshold: float = 70.0


@dataclass
class ChimeConfig:
    """Distraction alert settings."""
    drop_threshold: int = 2
    chime_interval_sec: float = 1.5
    warmup_sec: float = 12.0
    recovery_threshold: float = 55.0
    distraction_threshold: float = 45.0
    instant_buffer_size: int = 15     # ~3s of frames at 5 Hz


@dataclass
class CoachingConfig:
    """Voice coaching timing and escalation settings."""
    chimes_to_activate: int = 5
    grace_period_sec: float = 60.0
    cooldown_sec: float = 30.0
    enable_escalation: bool = True
    recovery_window: int = 3
    escalation_history_size: int = 5
    sustained_focus_threshold: float = 70.0
    max_escalation_level: int = 2
    playback_timeout_sec: float = 10.0
    prewarm_on_start: bool = True
    prewarm_batch_size: int = 2


@dataclass
class ServiceConfig:
    """Remote text generation and speech service settings."""
    gemini_api_key: Optional[str] = field(default_factory=lambda: os.getenv("GEMINI_API_KEY"))
    gemini_model: str = field(default_factory=lambda: os.getenv("FOCUSCOACH_GEMINI_MODEL", "gemini-2.5-flash"))
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    gemini_temperature: float = 0.8
    elevenlabs_api_key: Optional[str] = field(default_factory=lambda: os.getenv("ELEVENLABS_API_KEY"))
    elevenlabs_voice_id: str = field(default_factory=lambda: os.getenv("FOCUSCOACH_VOICE_ID", "21m00Tcm4TlvDq8ikWAM"))
    elevenlabs_model_id: str = "eleven_flash_v2_5"
    elevenlabs_base_url: str = "https://api.elevenlabs.io/v1"
    voice_stability: float = 0.5
    voice_similarity_boost: float = 0.75
    # When set, coaching goes through a running web_server instead of the vendors
    coaching_server_url: Optional[str] = field(default_factory=lambda: os.getenv("FOCUSCOACH_SERVER_URL"))
    request_timeout_sec: float = 10.0


@dataclass
class LoggingConfig:
    """Logging settings."""
    enable_file_logging: bool = field(default_factory=lambda: _env_bool("FOCUSCOACH_LOG_TO_FILE", False))
    log_dir: str = "logs"
    log_level: str = "INFO"


class Config:
    """Main configuration class for the focus coaching system."""

    SECTIONS = ('scoring', 'calibration', 'accumulator', 'chime', 'coaching', 'services', 'logging')

    def __init__(self, config_file: Optional[str] = None):
        """Initialize configuration with optional config file."""
        self.scoring = ScoringConfig()
        self.calibration = CalibrationConfig()
        self.accumulator = AccumulatorConfig()
        self.chime = ChimeConfig()
        self.coaching = CoachingConfig()
        self.services = ServiceConfig()
        self.logging = LoggingConfig()

        if config_file is None:
            config_file = os.getenv("FOCUSCOACH_CONFIG")
        if config_file and os.path.exists(config_file):
            self.load_from_file(config_file)

    def load_from_file(self, config_file: str) -> None:
        """Load configuration from JSON file."""
        try:
            with open(config_file, 'r') as f:
                config_data = json.load(f)
        except (OSError, ValueError) as e:
            _log.warning(f"Could not load config file {config_file}: {e}")
            return

        self.update(config_data)

    def update(self, config_data: Dict[str, Any]) -> None:
        """Apply a nested dict of overrides. Unknown sections and keys are ignored."""
        for section_name, section_data in config_data.items():
            if section_name not in self.SECTIONS or not isinstance(section_data, dict):
                _log.warning(f"Ignoring unknown config section: {section_name}")
                continue
            section = getattr(self, section_name)
            for key, value in section_data.items():
                if hasattr(section, key):
                    setattr(section, key, value)
                else:
                    _log.warning(f"Ignoring unknown config key: {section_name}.{key}")

    def to_dict(self, include_secrets: bool = False) -> Dict[str, Any]:
        config_data = {}
        for section_name in self.SECTIONS:
            section = getattr(self, section_name)
            config_data[section_name] = {
                key: getattr(section, key)
                for key in section.__dataclass_fields__.keys()
            }
        if not include_secrets:
            for key in ('gemini_api_key', 'elevenlabs_api_key'):
                config_data['services'][key] = None
        return config_data

    def save_to_file(self, config_file: str) -> None:
        """Save current configuration (without API keys) to JSON file."""
        try:
            with open(config_file, 'w') as f:
                json.dump(self.to_dict(), f, indent=2)
        except OSError as e:
            _log.warning(f"Could not save config file {config_file}: {e}")

    def get_validation_errors(self) -> List[str]:
        errors = []

        s = self.scoring
        total_weight = s.head_pose_weight + s.gaze_weight + s.face_presence_weight
        if abs(total_weight - 1.0) > 0.01:
            errors.append(f"Scoring weights must sum to 1.0 (got {total_weight:.2f})")
        if min(s.yaw_threshold_deg, s.pitch_threshold_deg, s.gaze_threshold_deg) <= 0:
            errors.append("Angular thresholds must be positive")
        if not 0.0 <= s.gaze_confidence_floor <= 1.0:
            errors.append("Gaze confidence floor must be between 0 and 1")
        if not 0.0 < s.ema_alpha <= 1.0:
            errors.append("EMA alpha must be in (0, 1]")

        if self.calibration.calibration_frames <= 0:
            errors.append("Calibration frame target must be positive")

        a = self.accumulator
        if a.eval_interval_sec <= 0:
            errors.append("Evaluation interval must be positive")
        if a.recent_buffer_size <= 0 or a.max_history_length <= 0:
            errors.append("Buffer and history sizes must be positive")
        if a.sustain_evals_required < 1:
            errors.append("Sustain requirement must be at least 1 evaluation")
        if a.decrement_step < 1:
            errors.append("Score decrement step must be at least 1")

        c = self.chime
        if c.recovery_threshold <= c.distraction_threshold:
            errors.append("Chime recovery threshold must exceed the distraction threshold")
        if c.chime_interval_sec <= 0:
            errors.append("Chime interval must be positive")
        if c.drop_threshold < 1:
            errors.append("Chime drop threshold must be at least 1 point")

        k = self.coaching
        if k.chimes_to_activate < 1:
            errors.append("Chimes to activate must be at least 1")
        if k.grace_period_sec < 0 or k.cooldown_sec < 0:
            errors.append("Grace period and cooldown cannot be negative")
        if k.playback_timeout_sec <= 0:
            errors.append("Playback timeout must be positive")

        return errors

    def validate_config(self) -> bool:
        """Validate configuration settings. Problems are logged, never raised."""
        errors = self.get_validation_errors()
        if errors:
            _log.warning("Configuration validation errors:")
            for error in errors:
                _log.warning(f"  - {error}")
            return False
        return True


# Global configuration instance
config = Config()
