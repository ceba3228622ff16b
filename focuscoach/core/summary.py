"""
Session Summary Module

Records per-tick score snapshots over a session's lifetime and reduces them
to the end-of-session summary handed to an external storage layer.
"""

import json
import math
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np

from .accumulator import ScoreSample, longest_focus_streak
from ..utils.logger import get_logger, log_performance_metrics

logger = get_logger(__name__)

MAX_SUMMARY_POINTS = 120


class SessionPhase(Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    ENDED = "ended"


@dataclass(frozen=True)
class SessionSummary:
    """End-of-session figures."""
    session_id: str
    started_at: float
    ended_at: float
    duration_sec: float
    average_score: int
    focused_percentage: int
    peak_score: int
    final_score: int
    longest_focus_streak_sec: float
    distraction_count: int
    nudge_count: int = 0
    paused_duration_sec: float = 0.0
    snapshots: Tuple[ScoreSample, ...] = field(default_factory=tuple)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'session_id': self.session_id,
            'started_at': self.started_at,
            'ended_at': self.ended_at,
            'duration_sec': round(self.duration_sec, 1),
            'average_score': self.average_score,
            'focused_percentage': self.focused_percentage,
            'peak_score': self.peak_score,
            'final_score': self.final_score,
            'longest_focus_streak_sec': self.longest_focus_streak_sec,
            'distraction_count': self.distraction_count,
            'nudge_count': self.nudge_count,
            'paused_duration_sec': round(self.paused_duration_sec, 1),
            'snapshots': [{'time': s.time, 'score': s.score} for s in self.snapshots],
        }


def downsample_snapshots(samples: Sequence[ScoreSample],
                         max_points: int = MAX_SUMMARY_POINTS) -> List[ScoreSample]:
    """Keep every step-th sample so at most max_points remain, always ending on the last one."""
    samples = list(samples)
    if len(samples) <= max_points:
        return samples

    step = int(math.ceil(len(samples) / float(max_points)))
    picked = samples[::step]
    if picked[-1] is not samples[-1]:
        if len(picked) >= max_points:
            picked[-1] = samples[-1]
        else:
            picked.append(samples[-1])
    return picked


@log_performance_metrics
def compute_session_summary(samples: Sequence[ScoreSample], started_at: float, ended_at: float,
                            duration_sec: Optional[float] = None, distraction_count: int = 0,
                            nudge_count: int = 0, paused_duration_sec: float = 0.0,
                            eval_interval_sec: float = 1.0,
                            focus_threshold: float = 70.0, session_id: str = "",
                            max_points: int = MAX_SUMMARY_POINTS) -> SessionSummary:
    """
    Reduce a session's snapshots to its summary.

    Args:
        samples: One ScoreSample per evaluation tick
        started_at: Session start (epoch seconds)
        ended_at: Session end (epoch seconds)
        duration_sec: Active time; defaults to ended_at - started_at
        distraction_count: Number of distraction alert episodes
        nudge_count: Number of delivered coaching nudges
        paused_duration_sec: Time spent paused
        eval_interval_sec: Spacing between samples, used for the streak length
        focus_threshold: Score at or above which a sample counts as focused

    Returns:
        SessionSummary
    """
    samples = list(samples)
    if duration_sec is None:
        duration_sec = max(0.0, ended_at - started_at)

    if samples:
        scores = np.array([s.score for s in samples], dtype=float)
        average = int(round(float(np.mean(scores))))
        focused = int(round(float(np.mean(scores >= focus_threshold)) * 100.0))
        peak = int(np.max(scores))
        final = samples[-1].score
    else:
        # No evaluation ticks recorded; peak stays at the starting score
        average = 0
        focused = 0
        peak = 100
        final = 100

    streak = longest_focus_streak(samples, focus_threshold) * eval_interval_sec

    return SessionSummary(
        session_id=session_id,
        started_at=started_at,
        ended_at=ended_at,
        duration_sec=duration_sec,
        average_score=average,
        focused_percentage=focused,
        peak_score=peak,
        final_score=final,
        longest_focus_streak_sec=streak,
        distraction_count=distraction_count,
        nudge_count=nudge_count,
        paused_duration_sec=paused_duration_sec,
        snapshots=tuple(downsample_snapshots(samples, max_points)),
    )


class SessionRecorder:
    """Session lifecycle plus one snapshot per evaluation tick while running."""

    def __init__(self, eval_interval_sec: float = 1.0, focus_threshold: float = 70.0,
                 session_id: Optional[str] = None):
        self.eval_interval_sec = eval_interval_sec
        self.focus_threshold = focus_threshold
        self.session_id = session_id or f"session_{int(time.time())}"
        self.phase = SessionPhase.IDLE
        self.samples: List[ScoreSample] = []
        self.distraction_count = 0
        self.nudge_count = 0
        self.started_at: Optional[float] = None
        self.ended_at: Optional[float] = None
        self._paused_at: Optional[float] = None
        self._paused_total = 0.0
        self.summary: Optional[SessionSummary] = None

    @property
    def is_running(self) -> bool:
        return self.phase == SessionPhase.RUNNING

    def start(self, now: float) -> bool:
        if self.phase != SessionPhase.IDLE:
            logger.warning(f"Cannot start session {self.session_id} from phase {self.phase.value}")
            return False
        self.phase = SessionPhase.RUNNING
        self.started_at = now
        logger.info(f"Session started: {self.session_id}")
        return True

    def pause(self, now: float) -> bool:
        if self.phase != SessionPhase.RUNNING:
            return False
        self.phase = SessionPhase.PAUSED
        self._paused_at = now
        return True

    def resume(self, now: float) -> bool:
        if self.phase != SessionPhase.PAUSED:
            return False
        self._paused_total += now - self._paused_at
        self._paused_at = None
        self.phase = SessionPhase.RUNNING
        return True

    def record(self, sample: ScoreSample) -> None:
        if self.phase == SessionPhase.RUNNING:
            self.samples.append(sample)

    def record_distraction(self) -> None:
        if self.phase == SessionPhase.RUNNING:
            self.distraction_count += 1

    def record_nudge(self) -> None:
        if self.phase in (SessionPhase.RUNNING, SessionPhase.PAUSED):
            self.nudge_count += 1

    def active_duration(self, now: float) -> float:
        if self.started_at is None:
            return 0.0
        end = self.ended_at if self.ended_at is not None else now
        paused = self._paused_total
        if self._paused_at is not None:
            paused += end - self._paused_at
        return max(0.0, end - self.started_at - paused)

    def end(self, now: float) -> Optional[SessionSummary]:
        """Finish the session and compute its summary. Ending twice returns the same summary."""
        if self.phase == SessionPhase.ENDED:
            return self.summary
        if self.phase == SessionPhase.IDLE:
            logger.warning(f"Session {self.session_id} ended before it started")
            return None

        duration = self.active_duration(now)
        paused = max(0.0, now - self.started_at - duration)
        self.ended_at = now
        self._paused_at = None
        self.phase = SessionPhase.ENDED
        self.summary = compute_session_summary(
            self.samples, self.started_at, now,
            duration_sec=duration,
            distraction_count=self.distraction_count,
            nudge_count=self.nudge_count,
            paused_duration_sec=paused,
            eval_interval_sec=self.eval_interval_sec,
            focus_threshold=self.focus_threshold,
            session_id=self.session_id,
        )
        logger.info(f"Session ended: {self.session_id} avg={self.summary.average_score} "
                    f"focused={self.summary.focused_percentage}%")
        return self.summary

    def clear(self) -> None:
        """Drop recorded samples and counters; the phase and start time are kept."""
        self.samples.clear()
        self.distraction_count = 0
        self.nudge_count = 0

    def save_session_data(self, filepath: Optional[str] = None) -> str:
        """Write the summary of an ended session to a JSON file."""
        if self.summary is None:
            logger.warning("No session summary to save")
            return ""
        if filepath is None:
            timestamp = time.strftime("%Y%m%d_%H%M%S")
            filepath = f"session_data_{self.session_id}_{timestamp}.json"

        try:
            with open(filepath, 'w') as f:
                json.dump(self.summary.to_dict(), f, indent=2)
            logger.info(f"Session data saved to: {filepath}")
            return filepath
        except OSError as e:
            logger.error(f"Error saving session data: {e}")
            return ""
