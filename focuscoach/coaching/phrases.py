"""
Coaching phrase bank and prompt templates.

The phrase bank is both the offline fallback for text generation and the
corpus whose audio is pre-warmed at session start.
"""

import random
from typing import Dict, List, Optional, Tuple, Union

from .nudge import EscalationTier

SYSTEM_INSTRUCTIONS: Dict[EscalationTier, str] = {
    EscalationTier.GENTLE: (
        "You are a supportive focus coach. Generate a single gentle reminder to refocus. "
        "MUST be 4-8 words. No quotes or punctuation except periods. "
        "Examples: \"Hey, let's get back on track.\" \"Time to refocus on your work.\" "
        "\"Your attention drifted a little.\" Never use harsh language."
    ),
    EscalationTier.MEDIUM: (
        "You are a firm but caring focus coach. Generate a single nudge to regain focus. "
        "MUST be 4-8 words. Be direct but not harsh. No quotes or punctuation except periods. "
        "Examples: \"Your focus is slipping, come back.\" \"Let's bring that attention back now.\" "
        "\"Time to re-engage with your task.\""
    ),
    EscalationTier.DIRECT: (
        "You are a no-nonsense focus coach. Generate a single direct command to focus immediately. "
        "MUST be 4-8 words. Be assertive. No quotes or punctuation except periods. "
        "Examples: \"Stop. Focus. Right now.\" \"Enough distractions, get to work.\" "
        "\"Focus up. No more delays.\""
    ),
}

COMMON_NUDGE_PHRASES: Dict[EscalationTier, Tuple[str, ...]] = {
    EscalationTier.GENTLE: (
        "Hey, let's refocus on your task.",
        "Come back and focus.",
        "Your attention is drifting a little.",
        "Time to return your focus.",
        "Let's get back on track.",
        "A gentle reminder to refocus.",
        "Bring your attention back here.",
        "Time to refocus on your work.",
        "Let's ease back into focus.",
    ),
    EscalationTier.MEDIUM: (
        "You're losing focus. Bring it back.",
        "Focus is slipping. Time to re-engage.",
        "Your mind is wandering. Snap back.",
        "Let's regain that focus you had.",
        "Attention needed. Come back now.",
        "Your focus dropped. Let's fix that.",
        "Stay with your work. Refocus now.",
        "Bring that attention back to work.",
        "Re-engage with your task now.",
    ),
    EscalationTier.DIRECT: (
        "Stop getting distracted. Focus now.",
        "You need to concentrate. Get working.",
        "Focus up. Your attention is needed.",
        "Enough distractions. Time to focus.",
        "No more delays. Focus immediately.",
        "Stop. Get back to work now.",
        "Distractions end now. Focus up.",
        "Lock in. Focus on your task.",
        "Quit drifting. Concentrate right now.",
    ),
}


def parse_tier(value: Union[str, EscalationTier, None]) -> EscalationTier:
    """Accept a tier name (any case); unknown names map to gentle."""
    if isinstance(value, EscalationTier):
        return value
    try:
        return EscalationTier(str(value).strip().lower())
    except ValueError:
        return EscalationTier.GENTLE


def build_prompt(session_minutes: Optional[float] = None, distraction_count: Optional[int] = None) -> str:
    """User prompt sent alongside the tier's system instruction."""
    if session_minutes is None and distraction_count is None:
        return "Generate a focus coaching nudge."
    return (
        "Generate a focus coaching nudge. "
        f"User has been in session for {int(session_minutes or 0)} minutes "
        f"with {int(distraction_count or 0)} distractions."
    )


class PhraseBank:
    """Fixed fallback phrases per tier with a seedable random source."""

    def __init__(self, phrases: Optional[Dict[EscalationTier, Tuple[str, ...]]] = None,
                 rng: Optional[random.Random] = None):
        self.phrases = phrases or COMMON_NUDGE_PHRASES
        self.rng = rng or random.Random()

    def pick(self, tier: Union[str, EscalationTier]) -> str:
        options = self.phrases.get(parse_tier(tier)) or COMMON_NUDGE_PHRASES[EscalationTier.GENTLE]
        return self.rng.choice(options)

    def for_tier(self, tier: Union[str, EscalationTier]) -> Tuple[str, ...]:
        return tuple(self.phrases.get(parse_tier(tier), ()))

    def all_phrases(self) -> List[str]:
        return [text for tier in EscalationTier for text in self.phrases.get(tier, ())]
