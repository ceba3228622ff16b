"""
Measurement Normalizer Module

Converts a raw per-frame detection record (face box, head rotation in
radians, gaze bearing and strength) into a small NormalizedSignal that the
instant score function consumes. A missing face or missing rotation data is
a valid low-signal frame, not an error.
"""

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from ..utils.config import CalibrationConfig


@dataclass(frozen=True)
class NormalizedSignal:
    """Per-frame signal tuple in degrees."""
    yaw_deg: float = 0.0
    pitch_deg: float = 0.0
    gaze_deviation_deg: float = 0.0
    gaze_confidence: float = 0.0
    face_present: bool = False


NO_FACE_SIGNAL = NormalizedSignal()


@dataclass(frozen=True)
class Rotation:
    """Head rotation and gaze as reported by the detector (radians)."""
    yaw: float = 0.0
    pitch: float = 0.0
    roll: float = 0.0
    gaze_bearing: float = 0.0
    gaze_strength: float = 0.0

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["Rotation"]:
        if not data:
            return None
        angle = data.get('angle') or {}
        gaze = data.get('gaze') or {}
        return cls(
            yaw=float(angle.get('yaw', 0.0)),
            pitch=float(angle.get('pitch', 0.0)),
            roll=float(angle.get('roll', 0.0)),
            gaze_bearing=float(gaze.get('bearing', 0.0)),
            gaze_strength=float(gaze.get('strength', 0.0)),
        )


@dataclass(frozen=True)
class FaceDetection:
    """A single tracked face."""
    box: Tuple[float, float, float, float] = (0.0, 0.0, 0.0, 0.0)
    score: float = 0.0
    rotation: Optional[Rotation] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FaceDetection":
        box = data.get('box') or (0.0, 0.0, 0.0, 0.0)
        return cls(
            box=tuple(float(v) for v in box[:4]),
            score=float(data.get('score', 0.0)),
            rotation=Rotation.from_dict(data.get('rotation')),
        )


@dataclass(frozen=True)
class DetectionFrame:
    """Detector output for one frame. Only the first face is used."""
    faces: Tuple[FaceDetection, ...] = field(default_factory=tuple)
    timestamp: Optional[float] = None  # epoch seconds

    @property
    def primary_face(self) -> Optional[FaceDetection]:
        return self.faces[0] if self.faces else None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "DetectionFrame":
        """
        Build a frame from detector JSON.

        Timestamps are accepted in milliseconds (as browsers report them) or
        seconds and stored as seconds.
        """
        if not data:
            return cls()
        faces: List[FaceDetection] = [FaceDetection.from_dict(f) for f in data.get('faces') or []]
        timestamp = data.get('timestamp')
        if timestamp is not None:
            timestamp = float(timestamp)
            if timestamp > 1e11:
                timestamp /= 1000.0
        return cls(faces=tuple(faces), timestamp=timestamp)


def raw_gaze_offset_deg(rotation: Rotation, gaze_center_deg: float) -> float:
    """Signed gaze deviation from the uncalibrated center, in degrees."""
    return math.degrees(rotation.gaze_bearing) - gaze_center_deg


def normalize_detection(frame: Optional[DetectionFrame],
                        calibration_offset_deg: float = 0.0,
                        calibration_config: Optional[CalibrationConfig] = None) -> NormalizedSignal:
    """
    Convert a detection frame into a NormalizedSignal.

    Args:
        frame: Detector output (None is treated as "no face")
        calibration_offset_deg: Learned signed gaze offset; the calibrated
            center is gaze_center_deg + offset
        calibration_config: Supplies the raw gaze center (default 90 deg)

    Returns:
        NormalizedSignal with angles in degrees
    """
    face = frame.primary_face if frame is not None else None
    if face is None:
        return NO_FACE_SIGNAL

    if face.rotation is None:
        # Face box without pose data: present, but nothing to score beyond presence
        return NormalizedSignal(face_present=True)

    center = (calibration_config or CalibrationConfig()).gaze_center_deg
    deviation = abs(raw_gaze_offset_deg(face.rotation, center) - calibration_offset_deg)
    confidence = face.rotation.gaze_strength
    if confidence != confidence:  # NaN
        confidence = 0.0

    return NormalizedSignal(
        yaw_deg=math.degrees(face.rotation.yaw),
        pitch_deg=math.degrees(face.rotation.pitch),
        gaze_deviation_deg=deviation,
        gaze_confidence=max(0.0, min(1.0, confidence)),
        face_present=True,
    )
