"""
Score Accumulator Module

Maintains the session-long focus score. Instant scores are buffered per
frame; on a fixed evaluation tick the buffer mean is compared with the
distraction threshold, and only after a sustained run of below-threshold
ticks does the score step down. The score is never incremented within a
session; only reset() restores it to 100.
"""

from collections import deque
from dataclasses import dataclass, replace
from typing import Callable, Deque, Iterable, Iterator, List, Optional, Tuple

import numpy as np

from .scheduler import Scheduler, TimerHandle
from ..utils.config import AccumulatorConfig
from ..utils.logger import get_logger

logger = get_logger(__name__)

MAX_SCORE = 100


@dataclass(frozen=True)
class ScoreSample:
    time: float
    score: int


@dataclass(frozen=True)
class SessionScoreState:
    current_score: int = MAX_SCORE
    last_eval_time: float = 0.0
    recent_instant_scores: Tuple[int, ...] = ()
    consecutive_below_threshold_evals: int = 0


@dataclass(frozen=True)
class EvaluationResult:
    """Outcome of one evaluation tick."""
    time: float
    mean_instant: Optional[float]
    below_threshold: bool
    consecutive_below: int
    score: int
    score_changed: bool

    @property
    def skipped(self) -> bool:
        return self.mean_instant is None


def longest_focus_streak(samples: Iterable[ScoreSample], threshold: float) -> int:
    """Longest run of consecutive samples with score >= threshold (in samples)."""
    longest = 0
    current = 0
    for sample in samples:
        if sample.score >= threshold:
            current += 1
            longest = max(longest, current)
        else:
            current = 0
    return longest


class ScoreHistory:
    """Time-stamped score samples in a capped sliding window."""

    def __init__(self, max_length: int = 300):
        self._samples: Deque[ScoreSample] = deque(maxlen=max_length)

    @property
    def max_length(self) -> int:
        return self._samples.maxlen

    def append(self, time: float, score: int) -> ScoreSample:
        sample = ScoreSample(time=time, score=score)
        self._samples.append(sample)
        return sample

    def samples(self) -> List[ScoreSample]:
        return list(self._samples)

    def latest(self) -> Optional[ScoreSample]:
        return self._samples[-1] if self._samples else None

    def clear(self) -> None:
        self._samples.clear()

    def longest_streak(self, threshold: float) -> int:
        return longest_focus_streak(self._samples, threshold)

    def to_list(self) -> List[dict]:
        return [{'time': s.time, 'score': s.score} for s in self._samples]

    def __len__(self) -> int:
        return len(self._samples)

    def __iter__(self) -> Iterator[ScoreSample]:
        return iter(list(self._samples))


def push_instant(state: SessionScoreState, score: int, buffer_size: int) -> SessionScoreState:
    """Append one instant score to the bounded recent-readings buffer."""
    buffer = (state.recent_instant_scores + (int(score),))[-buffer_size:]
    return replace(state, recent_instant_scores=buffer)


def evaluate(state: SessionScoreState, now: float,
             config: AccumulatorConfig) -> Tuple[SessionScoreState, EvaluationResult]:
    """
    One evaluation tick.

    Returns the new state and an EvaluationResult. With no readings yet the
    tick is a no-op apart from the evaluation timestamp.
    """
    if not state.recent_instant_scores:
        result = EvaluationResult(
            time=now, mean_instant=None, below_threshold=False,
            consecutive_below=state.consecutive_below_threshold_evals,
            score=state.current_score, score_changed=False,
        )
        return replace(state, last_eval_time=now), result

    mean_instant = float(np.mean(state.recent_instant_scores))
    below = mean_instant < config.distraction_threshold
    consecutive = state.consecutive_below_threshold_evals + 1 if below else 0

    score = state.current_score
    if consecutive >= config.sustain_evals_required:
        score = max(0, score - config.decrement_step)
    # No else branch: the score never increases

    new_state = replace(
        state,
        current_score=score,
        last_eval_time=now,
        consecutive_below_threshold_evals=consecutive,
    )
    result = EvaluationResult(
        time=now, mean_instant=mean_instant, below_threshold=below,
        consecutive_below=consecutive, score=score,
        score_changed=score != state.current_score,
    )
    return new_state, result


class ScoreAccumulator:
    """Controller that drives evaluate() from the scheduler's evaluation tick."""

    def __init__(self, config: Optional[AccumulatorConfig] = None, scheduler: Optional[Scheduler] = None):
        self.config = config or AccumulatorConfig()
        self.scheduler = scheduler or Scheduler()
        self.state = SessionScoreState()
        self.history = ScoreHistory(self.config.max_history_length)
        self.last_result: Optional[EvaluationResult] = None
        self._timer: Optional[TimerHandle] = None
        self._listeners: List[Callable[[EvaluationResult], None]] = []

    @property
    def current_score(self) -> int:
        return self.state.current_score

    @property
    def is_running(self) -> bool:
        return self._timer is not None and not self._timer.cancelled

    def add_listener(self, callback: Callable[[EvaluationResult], None]) -> None:
        """Register a callback invoked after every non-skipped evaluation tick."""
        self._listeners.append(callback)

    def start(self) -> None:
        """Start the repeating evaluation tick."""
        if self.is_running:
            return
        self.state = replace(self.state, last_eval_time=self.scheduler.now())
        self._timer = self.scheduler.call_every(self.config.eval_interval_sec, self.tick)

    def stop(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def push(self, instant: int) -> None:
        """Record one frame's instant score."""
        self.state = push_instant(self.state, instant, self.config.recent_buffer_size)

    def tick(self) -> EvaluationResult:
        """Run one evaluation now. Normally called by the scheduler."""
        now = self.scheduler.now()
        self.state, result = evaluate(self.state, now, self.config)
        self.last_result = result
        if result.skipped:
            return result

        self.history.append(now, result.score)
        logger.log_evaluation(result.mean_instant, result.consecutive_below,
                              self.config.sustain_evals_required, result.score)
        if result.score_changed:
            logger.debug(f"Session score dropped to {result.score}")

        for listener in list(self._listeners):
            listener(result)
        return result

    def longest_focus_streak_sec(self, threshold: Optional[float] = None) -> float:
        """Longest sustained-focus run in the capped history, in seconds."""
        threshold = self.config.focus_threshold if threshold is None else threshold
        return self.history.longest_streak(threshold) * self.config.eval_interval_sec

    def reset(self) -> None:
        """Restore the score to 100 and clear history and counters. Calibration is not touched."""
        was_running = self.is_running
        self.stop()
        self.state = SessionScoreState(last_eval_time=self.scheduler.now())
        self.history.clear()
        self.last_result = None
        if was_running:
            self.start()
        logger.info("Score accumulator reset")
