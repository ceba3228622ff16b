"""
Nudge State Machine Module

Coaching timing policy as pure functions over an immutable NudgeState:
startup grace period, cooldown between nudges, suppression while the user
is visibly recovering, and a three-step escalation ladder that climbs on
every delivered nudge and only drops back to gentle after sustained focus.
Nothing here schedules anything; the orchestrator queries it.
"""

from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional, Tuple

from ..utils.config import CoachingConfig

GRACE_PERIOD = "grace-period"
COOLDOWN = "cooldown"
RECOVERING = "recovering"


class EscalationTier(Enum):
    GENTLE = "gentle"
    MEDIUM = "medium"
    DIRECT = "direct"


@dataclass(frozen=True)
class NudgeState:
    session_start_time: float
    last_nudge_time: float = 0.0  # 0 means no nudge delivered yet
    escalation_level: int = 0
    consecutive_distractions: int = 0
    score_history: Tuple[float, ...] = ()


@dataclass(frozen=True)
class NudgeDecision:
    allowed: bool
    reason: Optional[str] = None

    def __bool__(self) -> bool:
        return self.allowed


def create_nudge_state(session_start_time: float) -> NudgeState:
    return NudgeState(session_start_time=session_start_time)


def is_recovering(history: Tuple[float, ...], window: int = 3) -> bool:
    """Last `window` entries never decrease and end higher than they started."""
    if len(history) < window:
        return False
    recent = history[-window:]
    non_decreasing = all(b >= a for a, b in zip(recent, recent[1:]))
    return non_decreasing and recent[-1] > recent[0]


def can_trigger_nudge(state: NudgeState, current_score: float, now: float,
                      config: Optional[CoachingConfig] = None) -> NudgeDecision:
    """
    Decide whether a nudge may be delivered now.

    Checks run in order: grace period since session start, cooldown since
    the last delivered nudge, then active recovery in the score history.
    current_score is accepted for callers' convenience; the decision
    depends only on time and the recorded history.
    """
    config = config or CoachingConfig()

    if now - state.session_start_time < config.grace_period_sec:
        return NudgeDecision(False, GRACE_PERIOD)

    if state.last_nudge_time > 0 and now - state.last_nudge_time < config.cooldown_sec:
        return NudgeDecision(False, COOLDOWN)

    if is_recovering(state.score_history, config.recovery_window):
        return NudgeDecision(False, RECOVERING)

    return NudgeDecision(True)


def advance_escalation(state: NudgeState, config: Optional[CoachingConfig] = None) -> NudgeState:
    """Called after each delivered nudge."""
    config = config or CoachingConfig()
    level = state.escalation_level
    if config.enable_escalation:
        level = min(level + 1, config.max_escalation_level)
    return replace(
        state,
        escalation_level=level,
        consecutive_distractions=state.consecutive_distractions + 1,
    )


def update_score_history(state: NudgeState, score: float,
                         config: Optional[CoachingConfig] = None) -> NudgeState:
    config = config or CoachingConfig()
    history = (state.score_history + (score,))[-config.escalation_history_size:]
    return replace(state, score_history=history)


def should_reset_escalation(state: NudgeState, config: Optional[CoachingConfig] = None) -> bool:
    """True only when the history is full and every entry shows sustained focus."""
    config = config or CoachingConfig()
    if len(state.score_history) < config.escalation_history_size:
        return False
    return all(s >= config.sustained_focus_threshold for s in state.score_history)


def reset_escalation(state: NudgeState) -> NudgeState:
    return replace(state, escalation_level=0)


def record_score(state: NudgeState, score: float,
                 config: Optional[CoachingConfig] = None) -> Tuple[NudgeState, bool]:
    """Append a score and apply the escalation reset rule. Returns (state, was_reset)."""
    state = update_score_history(state, score, config)
    if state.escalation_level > 0 and should_reset_escalation(state, config):
        return reset_escalation(state), True
    return state, False


def get_escalation_tier(level: int) -> EscalationTier:
    if level <= 0:
        return EscalationTier.GENTLE
    if level == 1:
        return EscalationTier.MEDIUM
    return EscalationTier.DIRECT
