"""
Instant Score Module

Pure functions mapping one NormalizedSignal to a 0-100 attentiveness value,
plus the EMA and hysteresis helpers used for the responsive "alignment"
readout shown to the user. Nothing here touches the session score.
"""

from dataclasses import dataclass
from typing import Optional, Tuple

from .normalizer import NormalizedSignal
from ..utils.config import ScoringConfig


def clamp(value: float, low: float, high: float) -> float:
    """Clamp value to [low, high] with NaN safety (NaN maps to low)."""
    if value != value:
        return low
    return max(low, min(high, value))


def head_pose_subscore(signal: NormalizedSignal, config: ScoringConfig) -> float:
    yaw_score = max(0.0, 1.0 - abs(signal.yaw_deg) / config.yaw_threshold_deg)
    pitch_score = max(0.0, 1.0 - abs(signal.pitch_deg) / config.pitch_threshold_deg)
    return (yaw_score + pitch_score) / 2.0


def gaze_subscore(signal: NormalizedSignal, config: ScoringConfig) -> float:
    # The floor keeps a low confidence reading from suppressing a centered gaze
    direction_score = max(0.0, 1.0 - abs(signal.gaze_deviation_deg) / config.gaze_threshold_deg)
    effective_confidence = max(config.gaze_confidence_floor, signal.gaze_confidence)
    return direction_score * effective_confidence


def instant_score(signal: NormalizedSignal, config: Optional[ScoringConfig] = None) -> int:
    """
    Compute the instantaneous attentiveness score (0-100) for one frame.

    Face absence dominates: a frame without a face scores 0. Otherwise the
    head pose, gaze and face presence sub-scores are combined with the
    configured weights.
    """
    if not signal.face_present:
        return 0
    config = config or ScoringConfig()

    raw = (
        head_pose_subscore(signal, config) * config.head_pose_weight +
        gaze_subscore(signal, config) * config.gaze_weight +
        1.0 * config.face_presence_weight
    )
    return int(clamp(round(raw * 100.0), 0, 100))


@dataclass(frozen=True)
class EMAState:
    """Exponential moving average state."""
    value: float = 0.0
    initialized: bool = False


def apply_ema(instant: float, state: EMAState, alpha: float) -> Tuple[int, EMAState]:
    """Blend a new reading into the running average; the first reading passes through."""
    if not state.initialized:
        return int(round(instant)), EMAState(value=float(instant), initialized=True)

    smoothed = alpha * instant + (1.0 - alpha) * state.value
    return int(round(smoothed)), EMAState(value=smoothed, initialized=True)


def apply_hysteresis(smoothed: int, displayed: int, config: ScoringConfig) -> int:
    """Only move the displayed value when the smoothed value leaves the band around it."""
    diff = smoothed - displayed
    if diff < -config.display_drop_threshold or diff > config.display_recover_threshold:
        return smoothed
    return displayed


class AlignmentSmoother:
    """EMA plus hysteresis over instant scores for a steady on-screen readout."""

    def __init__(self, config: Optional[ScoringConfig] = None):
        self.config = config or ScoringConfig()
        self._ema = EMAState()
        self.displayed = 100

    def update(self, instant: int) -> int:
        smoothed, self._ema = apply_ema(instant, self._ema, self.config.ema_alpha)
        self.displayed = apply_hysteresis(smoothed, self.displayed, self.config)
        return self.displayed

    def reset(self) -> None:
        self._ema = EMAState()
        self.displayed = 100
