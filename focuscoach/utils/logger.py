"""
Logging utilities for the focus coaching system.
"""

import logging
import sys
import time
import traceback
from datetime import datetime
from typing import Optional
from pathlib import Path

from .config import config


ROOT_LOGGER_NAME = "focuscoach"


class FocusLogger:
    """Custom logger for the focus coaching system."""

    def __init__(self, name: str = ROOT_LOGGER_NAME, log_file: Optional[str] = None):
        """Initialize the logger."""
        self.logger = logging.getLogger(name)

        # Module loggers propagate to the package logger's handlers
        if name.startswith(ROOT_LOGGER_NAME + "."):
            return

        self.logger.setLevel(getattr(logging, config.logging.log_level.upper(), logging.INFO))

        # Prevent duplicate handlers
        if self.logger.handlers:
            return

        detailed_formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s'
        )
        simple_formatter = logging.Formatter(
            '%(asctime)s - %(levelname)s - %(message)s'
        )

        # Console handler: errors only, the CLI prints its own status lines
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(logging.ERROR)
        console_handler.setFormatter(simple_formatter)
        self.logger.addHandler(console_handler)

        if config.logging.enable_file_logging:
            if log_file is None:
                logs_dir = Path(config.logging.log_dir)
                logs_dir.mkdir(parents=True, exist_ok=True)

                timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
                log_file = logs_dir / f"focuscoach_{timestamp}.log"

            file_handler = logging.FileHandler(log_file)
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(detailed_formatter)
            self.logger.addHandler(file_handler)

    def debug(self, message: str) -> None:
        self.logger.debug(message)

    def info(self, message: str) -> None:
        self.logger.info(message)

    def warning(self, message: str) -> None:
        self.logger.warning(message)

    def error(self, message: str) -> None:
        self.logger.error(message)

    def critical(self, message: str) -> None:
        self.logger.critical(message)

    def log_evaluation(self, mean_instant: float, consecutive: int, required: int, score: int) -> None:
        """Log one score accumulator evaluation tick."""
        self.debug(f"Score Eval - avg={mean_instant:.0f}, consecutive={consecutive}/{required}, score={score}")

    def log_chime(self, event: str, score: int, baseline: int, chime_count: int) -> None:
        """Log a distraction alert transition or firing."""
        self.info(f"Chime {event} - score={score}, baseline={baseline}, count={chime_count}")

    def log_nudge(self, tier: str, text: str, audio_source: str) -> None:
        """Log a delivered coaching nudge."""
        self.info(f"Nudge delivered - tier={tier}, audio={audio_source}, text={text!r}")

    def log_calibration(self, frame_count: int, target: int, offset_deg: float) -> None:
        self.debug(f"Calibration - frame {frame_count}/{target}, offset={offset_deg:.1f} deg")

    def log_error_with_context(self, error: Exception, context: str) -> None:
        """Log error with additional context."""
        self.error(f"Error in {context}: {str(error)}")
        if error.__traceback__ is not None:
            tb = ''.join(traceback.format_exception(type(error), error, error.__traceback__))
            self.debug(f"Traceback: {tb}")

    def log_system_info(self) -> None:
        """Log the active configuration."""
        self.info("=== Configuration ===")
        self.info(f"Evaluation interval: {config.accumulator.eval_interval_sec}s, "
                  f"threshold: {config.accumulator.distraction_threshold}")
        self.info(f"Chime drop/recovery: {config.chime.drop_threshold}/{config.chime.recovery_threshold}")
        self.info(f"Coaching grace/cooldown: {config.coaching.grace_period_sec}s/{config.coaching.cooldown_sec}s")
        self.info(f"Text generation key configured: {bool(config.services.gemini_api_key)}")
        self.info(f"Speech key configured: {bool(config.services.elevenlabs_api_key)}")


# Global logger instance
logger = FocusLogger()


def get_logger(name: str = ROOT_LOGGER_NAME) -> FocusLogger:
    """Get a logger instance."""
    return FocusLogger(name)


def log_function_call(func):
    """Decorator to log function calls."""
    def wrapper(*args, **kwargs):
        logger.debug(f"Calling {func.__name__}")
        try:
            result = func(*args, **kwargs)
            logger.debug(f"Completed {func.__name__}")
            return result
        except Exception as e:
            logger.log_error_with_context(e, func.__name__)
            raise
    return wrapper


def log_performance_metrics(func):
    """Decorator to log performance metrics."""
    def wrapper(*args, **kwargs):
        start_time = time.time()
        try:
            result = func(*args, **kwargs)
            processing_time = (time.time() - start_time) * 1000
            logger.debug(f"{func.__name__} took {processing_time:.2f}ms")
            return result
        except Exception as e:
            logger.log_error_with_context(e, func.__name__)
            raise
    return wrapper
