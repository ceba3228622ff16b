"""
Chime Controller Module

Watches the session score trajectory and a short rolling mean of instant
scores. A drop of drop_threshold points below the baseline (outside the
warm-up window) starts a repeating distraction alert; the alert stops only
when the rolling instant mean climbs back to the recovery threshold, which
sits above the distraction threshold so the alert does not flap.
"""

from dataclasses import dataclass, replace
from typing import Callable, List, Optional, Tuple

import numpy as np

from .scheduler import Scheduler, TimerHandle
from ..utils.config import ChimeConfig
from ..utils.logger import get_logger

logger = get_logger(__name__)

CHIME_STARTED = "started"
CHIME_STOPPED = "stopped"


@dataclass(frozen=True)
class ChimeState:
    baseline_score: int = 100
    lowest_score_during_drop: int = 100
    is_active: bool = False
    chime_count: int = 0
    recent_instant_buffer: Tuple[int, ...] = ()
    warmup_started_at: float = 0.0


def rolling_instant_mean(state: ChimeState) -> Optional[float]:
    if not state.recent_instant_buffer:
        return None
    return float(np.mean(state.recent_instant_buffer))


def in_warmup(state: ChimeState, now: float, config: ChimeConfig) -> bool:
    return now - state.warmup_started_at < config.warmup_sec


def observe(state: ChimeState, score: int, instant: int, now: float,
            config: ChimeConfig) -> Tuple[ChimeState, Optional[str]]:
    """
    Fold one (session score, instant score) reading into the chime state.

    Returns the new state and CHIME_STARTED, CHIME_STOPPED or None. The
    start check and the recovery check run on the same reading, so a
    reading can start and immediately stop an alert; in that case only
    CHIME_STOPPED is reported and the alert has fired once.
    """
    buffer = (state.recent_instant_buffer + (int(instant),))[-config.instant_buffer_size:]
    state = replace(state, recent_instant_buffer=buffer)
    event = None

    if not state.is_active and score > state.baseline_score:
        state = replace(state, baseline_score=score, lowest_score_during_drop=score)

    drop = state.baseline_score - score
    if not state.is_active and drop >= config.drop_threshold and not in_warmup(state, now, config):
        state = replace(state, is_active=True, lowest_score_during_drop=score)
        event = CHIME_STARTED

    if state.is_active and score < state.lowest_score_during_drop:
        state = replace(state, lowest_score_during_drop=score)

    if state.is_active and rolling_instant_mean(state) >= config.recovery_threshold:
        state = replace(
            state, is_active=False, chime_count=0,
            baseline_score=score, lowest_score_during_drop=score,
        )
        event = CHIME_STOPPED

    return state, event


def fire(state: ChimeState) -> ChimeState:
    """Count one alert firing. Firings outside an active alert are ignored."""
    if not state.is_active:
        return state
    return replace(state, chime_count=state.chime_count + 1)


def reset_chime_state(now: float, score: int = 100) -> ChimeState:
    return ChimeState(baseline_score=score, lowest_score_during_drop=score, warmup_started_at=now)


class ChimeController:
    """
    Runs the alert timer for the chime state machine.

    Listeners receive the chime count after every firing and 0 when an
    episode ends. The alert callable (e.g. a sound) is optional.
    """

    def __init__(self, config: Optional[ChimeConfig] = None, scheduler: Optional[Scheduler] = None,
                 alert: Optional[Callable[[int], None]] = None):
        self.config = config or ChimeConfig()
        self.scheduler = scheduler or Scheduler()
        self.alert = alert
        self.state = reset_chime_state(self.scheduler.now())
        self._timer: Optional[TimerHandle] = None
        self._listeners: List[Callable[[int], None]] = []
        self.episode_count = 0

    @property
    def chime_count(self) -> int:
        return self.state.chime_count

    @property
    def is_active(self) -> bool:
        return self.state.is_active

    @property
    def is_distracted(self) -> bool:
        mean = rolling_instant_mean(self.state)
        return mean is not None and mean < self.config.distraction_threshold

    def add_listener(self, callback: Callable[[int], None]) -> None:
        self._listeners.append(callback)

    def start(self, score: int = 100) -> None:
        """Begin a session: clear state and start the warm-up window now."""
        self._cancel_timer()
        self.state = reset_chime_state(self.scheduler.now(), score)

    def observe(self, score: int, instant: int) -> Optional[str]:
        """Feed one reading; starts or stops the repeating alert as needed."""
        was_active = self.state.is_active
        self.state, event = observe(self.state, score, instant, self.scheduler.now(), self.config)

        if event == CHIME_STARTED:
            self._begin_alert()
        elif event == CHIME_STOPPED:
            if not was_active:
                # Started and recovered on the same reading: one firing, then stop
                self.state = replace(self.state, is_active=True)
                self._begin_alert()
                self.state = replace(self.state, is_active=False, chime_count=0)
            self._end_alert()
        return event

    def _begin_alert(self) -> None:
        self.episode_count += 1
        logger.log_chime(CHIME_STARTED, self.state.lowest_score_during_drop,
                         self.state.baseline_score, self.state.chime_count)
        self._fire()
        if self.state.is_active:
            self._timer = self.scheduler.call_every(self.config.chime_interval_sec, self._fire)

    def _end_alert(self) -> None:
        self._cancel_timer()
        logger.log_chime(CHIME_STOPPED, self.state.baseline_score,
                         self.state.baseline_score, self.state.chime_count)
        self._notify(0)

    def _fire(self) -> None:
        self.state = fire(self.state)
        if not self.state.is_active:
            return
        if self.alert is not None:
            try:
                self.alert(self.state.chime_count)
            except Exception as e:
                logger.log_error_with_context(e, "chime alert")
        logger.debug(f"Chime played (count: {self.state.chime_count})")
        self._notify(self.state.chime_count)

    def _notify(self, count: int) -> None:
        for listener in list(self._listeners):
            listener(count)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def stop(self) -> None:
        """Stop any running alert without clearing the baseline."""
        if self.state.is_active:
            self.state = replace(self.state, is_active=False, chime_count=0)
            self._end_alert()
        self._cancel_timer()

    def reset(self) -> None:
        """Stop the alert, clear everything and restart the warm-up window."""
        had_count = self.state.chime_count > 0
        self._cancel_timer()
        self.state = reset_chime_state(self.scheduler.now())
        self.episode_count = 0
        if had_count:
            self._notify(0)
        logger.info("Chime controller reset")
