"""
Gaze Calibration Module

Learns a per-session gaze-center offset over the first N face-present
frames. The smallest raw deviation observed is taken as "looking at the
camera"; once the frame target is reached the offset is frozen and the
calibration never reverts for the rest of the session.
"""

import math
from dataclasses import dataclass
from typing import Optional

from .normalizer import DetectionFrame, NormalizedSignal, normalize_detection, raw_gaze_offset_deg
from ..utils.config import CalibrationConfig
from ..utils.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class GazeCalibration:
    """Calibration state; offset_deg is signed, min_deviation_seen is absolute."""
    offset_deg: float = 0.0
    is_calibrated: bool = False
    min_deviation_seen: float = math.inf
    frame_count: int = 0


def update_calibration(calibration: GazeCalibration, face_present: bool,
                       raw_offset_deg: Optional[float], target_frames: int) -> GazeCalibration:
    """
    Fold one frame into the calibration.

    Args:
        calibration: Current state
        face_present: Only face-present frames count towards the target
        raw_offset_deg: Signed uncalibrated gaze deviation, None without pose data
        target_frames: Frame count at which the offset freezes
    """
    if calibration.is_calibrated or not face_present:
        return calibration

    offset = calibration.offset_deg
    min_seen = calibration.min_deviation_seen
    if raw_offset_deg is not None and abs(raw_offset_deg) < min_seen:
        min_seen = abs(raw_offset_deg)
        offset = raw_offset_deg

    frame_count = calibration.frame_count + 1
    return GazeCalibration(
        offset_deg=offset,
        is_calibrated=frame_count >= target_frames,
        min_deviation_seen=min_seen,
        frame_count=frame_count,
    )


def calibration_progress(calibration: GazeCalibration, target_frames: int) -> float:
    """Completion percentage from the raw frame count (0-100)."""
    if calibration.is_calibrated:
        return 100.0
    return min(100.0, calibration.frame_count / float(target_frames) * 100.0)


def animate_progress(displayed: float, target: float, step: float = 1.0) -> float:
    """Move a displayed progress value one step towards target (display only)."""
    diff = target - displayed
    if abs(diff) <= step:
        return target
    return displayed + (step if diff > 0 else -step)


class GazeCalibrator:
    """Owns the session's GazeCalibration and produces calibrated signals."""

    def __init__(self, calibration_config: Optional[CalibrationConfig] = None,
                 initial: Optional[GazeCalibration] = None):
        self.config = calibration_config or CalibrationConfig()
        self.state = initial or GazeCalibration()

    @property
    def is_calibrated(self) -> bool:
        return self.state.is_calibrated

    @property
    def progress(self) -> float:
        return calibration_progress(self.state, self.config.calibration_frames)

    def process(self, frame: Optional[DetectionFrame]) -> NormalizedSignal:
        """Update calibration with this frame, then normalize it against the current offset."""
        face = frame.primary_face if frame is not None else None
        was_calibrated = self.state.is_calibrated

        raw_offset = None
        if face is not None and face.rotation is not None:
            raw_offset = raw_gaze_offset_deg(face.rotation, self.config.gaze_center_deg)

        self.state = update_calibration(
            self.state, face is not None, raw_offset, self.config.calibration_frames
        )

        if not was_calibrated:
            logger.log_calibration(self.state.frame_count, self.config.calibration_frames, self.state.offset_deg)
            if self.state.is_calibrated:
                logger.info(f"Gaze calibration complete: offset={self.state.offset_deg:.1f} deg "
                            f"after {self.state.frame_count} frames")

        return normalize_detection(frame, self.state.offset_deg, self.config)

    def reset(self) -> None:
        """Forget the learned offset (a new calibration run)."""
        self.state = GazeCalibration()
        logger.info("Gaze calibration reset")
