"""
Focus Session

Wires the per-frame pipeline (calibration, instant score, alignment
smoothing), the score accumulator, the chime controller and the nudge
orchestrator onto one scheduler, and records the session for its summary.
"""

from dataclasses import replace
from typing import Any, Dict, Optional, Union

from .coaching.nudge import EscalationTier
from .coaching.orchestrator import NudgeEvent, NudgeOrchestrator
from .core.accumulator import EvaluationResult, ScoreAccumulator, ScoreSample
from .core.calibration import GazeCalibration, GazeCalibrator
from .core.chime import ChimeController
from .core.normalizer import NO_FACE_SIGNAL, DetectionFrame
from .core.scheduler import Scheduler
from .core.scoring import AlignmentSmoother, instant_score
from .core.summary import SessionPhase, SessionRecorder, SessionSummary
from .utils.config import Config, config as default_config
from .utils.logger import get_logger

logger = get_logger(__name__)

FrameInput = Union[DetectionFrame, Dict[str, Any], None]


class FocusSession:
    """One focus session from start() to end()."""

    def __init__(self, cfg: Optional[Config] = None, scheduler: Optional[Scheduler] = None,
                 orchestrator: Optional[NudgeOrchestrator] = None,
                 calibration: Optional[GazeCalibration] = None,
                 chime_alert=None, session_id: Optional[str] = None):
        """
        Args:
            cfg: Configuration; defaults to the shared module config
            scheduler: Timer owner; a wall clock Scheduler if omitted
            orchestrator: Nudge delivery; None disables voice coaching
            calibration: Gaze calibration carried over from a previous session
            chime_alert: Called with the chime count on every alert firing
            session_id: Identifier used in logs and the summary
        """
        self.config = cfg or default_config
        self.scheduler = scheduler or Scheduler()

        # Smoothing is tunable per session, so keep a private copy
        self.scoring_config = replace(self.config.scoring)

        self.calibrator = GazeCalibrator(self.config.calibration, initial=calibration)
        self.smoother = AlignmentSmoother(self.scoring_config)
        self.accumulator = ScoreAccumulator(self.config.accumulator, self.scheduler)
        self.chime = ChimeController(self.config.chime, self.scheduler, alert=chime_alert)
        self.orchestrator = orchestrator
        self.recorder = SessionRecorder(
            eval_interval_sec=self.config.accumulator.eval_interval_sec,
            focus_threshold=self.config.accumulator.focus_threshold,
            session_id=session_id,
        )

        self.last_signal = NO_FACE_SIGNAL
        self.instant_score = 0
        self.frame_count = 0

        self.accumulator.add_listener(self._on_evaluation)
        self.chime.add_listener(self._on_chime_count)
        if self.orchestrator is not None:
            self.orchestrator.add_listener(self._on_nudge)

    @property
    def phase(self) -> SessionPhase:
        return self.recorder.phase

    @property
    def session_id(self) -> str:
        return self.recorder.session_id

    def start(self) -> bool:
        now = self.scheduler.now()
        if not self.recorder.start(now):
            return False
        self.accumulator.start()
        self.chime.start()
        if self.orchestrator is not None:
            self.orchestrator.start_session(now)
        return True

    def process_frame(self, frame: FrameInput) -> Optional[int]:
        """
        Run one detection frame through the pipeline.

        Returns the frame's instant score, or None when the session is not
        running (frames arriving while paused or ended are ignored).
        """
        if self.recorder.phase != SessionPhase.RUNNING:
            return None
        if not isinstance(frame, DetectionFrame):
            frame = DetectionFrame.from_dict(frame)

        self.last_signal = self.calibrator.process(frame)
        self.instant_score = instant_score(self.last_signal, self.scoring_config)
        self.smoother.update(self.instant_score)
        self.accumulator.push(self.instant_score)
        self.chime.observe(self.accumulator.current_score, self.instant_score)
        self.frame_count += 1
        return self.instant_score

    def pause(self) -> bool:
        if not self.recorder.pause(self.scheduler.now()):
            return False
        self.accumulator.stop()
        self.chime.stop()
        if self.orchestrator is not None:
            self.orchestrator.reset()
        logger.info(f"Session paused: {self.session_id}")
        return True

    def resume(self) -> bool:
        if not self.recorder.resume(self.scheduler.now()):
            return False
        self.accumulator.start()
        logger.info(f"Session resumed: {self.session_id}")
        return True

    def set_smoothing(self, alpha: float) -> None:
        """Change the alignment readout's EMA factor (display only)."""
        if not 0.0 < alpha <= 1.0:
            raise ValueError(f"Smoothing factor must be in (0, 1], got {alpha}")
        self.scoring_config.ema_alpha = alpha

    def end(self) -> Optional[SessionSummary]:
        """Stop all timers and cancel playback; returns the summary."""
        if self.recorder.phase == SessionPhase.ENDED:
            return self.recorder.summary
        self.accumulator.stop()
        self.chime.stop()
        if self.orchestrator is not None:
            self.orchestrator.reset()
        return self.recorder.end(self.scheduler.now())

    def reset(self, recalibrate: bool = False) -> None:
        """
        Restart scoring from 100 within the same session.

        Clears the score, history, chime episode and any in-flight nudge.
        The learned gaze calibration and the escalation ladder survive
        unless recalibrate is set (calibration only).
        """
        self.accumulator.reset()
        self.chime.reset()
        if self.orchestrator is not None:
            self.orchestrator.reset()
        self.smoother.reset()
        self.recorder.clear()
        self.instant_score = 0
        self.last_signal = NO_FACE_SIGNAL
        if recalibrate:
            self.calibrator.reset()

    def _on_evaluation(self, result: EvaluationResult) -> None:
        self.recorder.record(ScoreSample(result.time, result.score))
        if self.orchestrator is not None:
            self.orchestrator.current_score = result.score
            # The instant mean can rise again, so recovery stays detectable
            self.orchestrator.record_score(result.mean_instant)

    def _on_chime_count(self, count: int) -> None:
        if count == 1:
            self.recorder.record_distraction()
        if self.orchestrator is not None:
            self.orchestrator.on_chime_count(count)

    def _on_nudge(self, event: NudgeEvent) -> None:
        self.recorder.record_nudge()

    def status(self) -> Dict[str, Any]:
        tier: Optional[EscalationTier] = None
        message = None
        nudge_active = False
        escalation_level = 0
        last_nudge = None
        if self.orchestrator is not None:
            nudge_active = self.orchestrator.is_playing
            tier = self.orchestrator.current_tier
            message = self.orchestrator.current_message
            escalation_level = self.orchestrator.state.escalation_level
            event = self.orchestrator.last_nudge
            if event is not None:
                last_nudge = {'time': event.time, 'tier': event.tier.value, 'text': event.text,
                              'audio_source': event.audio_source}

        return {
            'session_id': self.session_id,
            'phase': self.phase.value,
            'time': self.scheduler.now(),
            'instant_score': self.instant_score,
            'alignment_score': self.smoother.displayed,
            'session_score': self.accumulator.current_score,
            'history': self.accumulator.history.to_list(),
            'is_calibrated': self.calibrator.is_calibrated,
            'calibration_progress': round(self.calibrator.progress, 1),
            'face_present': self.last_signal.face_present,
            'chime_count': self.chime.chime_count,
            'is_alerting': self.chime.is_active,
            'is_distracted': self.chime.is_distracted,
            'nudge_active': nudge_active,
            'nudge_tier': tier.value if tier else None,
            'nudge_message': message,
            'escalation_level': escalation_level,
            'last_nudge': last_nudge,
            'frames': self.frame_count,
        }
