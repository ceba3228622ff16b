"""
Tests for the nudge timing and escalation policy.
"""

import unittest

from focuscoach.coaching.nudge import (
    COOLDOWN, GRACE_PERIOD, RECOVERING, EscalationTier, NudgeState, advance_escalation,
    can_trigger_nudge, create_nudge_state, get_escalation_tier, is_recovering, record_score,
    should_reset_escalation, update_score_history,
)
from focuscoach.utils.config import CoachingConfig


class TestCanTriggerNudge(unittest.TestCase):

    def setUp(self):
        self.config = CoachingConfig()
        self.state = create_nudge_state(1000.0)

    def test_grace_period(self):
        decision = can_trigger_nudge(self.state, 50, 1030.0, self.config)
        self.assertFalse(decision)
        self.assertEqual(decision.reason, GRACE_PERIOD)
        self.assertTrue(can_trigger_nudge(self.state, 50, 1060.0, self.config))

    def test_cooldown_after_nudge(self):
        state = NudgeState(session_start_time=1000.0, last_nudge_time=1100.0)
        decision = can_trigger_nudge(state, 50, 1120.0, self.config)
        self.assertEqual(decision.reason, COOLDOWN)
        self.assertTrue(can_trigger_nudge(state, 50, 1130.0, self.config).allowed)

    def test_never_nudged_has_no_cooldown(self):
        self.assertEqual(self.state.last_nudge_time, 0.0)
        self.assertTrue(can_trigger_nudge(self.state, 50, 1061.0, self.config))

    def test_grace_is_checked_before_cooldown(self):
        state = NudgeState(session_start_time=1000.0, last_nudge_time=1010.0)
        self.assertEqual(can_trigger_nudge(state, 50, 1020.0, self.config).reason, GRACE_PERIOD)

    def test_recovering_blocks(self):
        state = NudgeState(session_start_time=0.0, score_history=(40.0, 50.0, 60.0))
        decision = can_trigger_nudge(state, 60, 500.0, self.config)
        self.assertEqual(decision.reason, RECOVERING)


class TestRecovery(unittest.TestCase):

    def test_is_recovering(self):
        self.assertTrue(is_recovering((40, 50, 60)))
        self.assertTrue(is_recovering((30, 40, 40, 45)))
        self.assertFalse(is_recovering((40, 40, 40)))
        self.assertFalse(is_recovering((40, 60, 50)))
        self.assertFalse(is_recovering((40, 50)))


class TestEscalation(unittest.TestCase):

    def setUp(self):
        self.config = CoachingConfig()

    def test_climbs_and_caps(self):
        state = create_nudge_state(0.0)
        levels = []
        for _ in range(4):
            state = advance_escalation(state, self.config)
            levels.append(state.escalation_level)
        self.assertEqual(levels, [1, 2, 2, 2])
        self.assertEqual(state.consecutive_distractions, 4)

    def test_escalation_disabled(self):
        config = CoachingConfig(enable_escalation=False)
        state = advance_escalation(create_nudge_state(0.0), config)
        self.assertEqual(state.escalation_level, 0)
        self.assertEqual(state.consecutive_distractions, 1)

    def test_tiers(self):
        self.assertEqual(get_escalation_tier(0), EscalationTier.GENTLE)
        self.assertEqual(get_escalation_tier(1), EscalationTier.MEDIUM)
        self.assertEqual(get_escalation_tier(2), EscalationTier.DIRECT)
        self.assertEqual(get_escalation_tier(7), EscalationTier.DIRECT)

    def test_history_is_bounded(self):
        state = create_nudge_state(0.0)
        for score in range(8):
            state = update_score_history(state, float(score), self.config)
        self.assertEqual(state.score_history, (3.0, 4.0, 5.0, 6.0, 7.0))

    def test_one_low_entry_prevents_reset(self):
        state = NudgeState(session_start_time=0.0, escalation_level=2)
        for score in (70, 70, 70, 70, 69):
            state, was_reset = record_score(state, score, self.config)
            self.assertFalse(was_reset)
        self.assertEqual(state.escalation_level, 2)

    def test_sustained_focus_resets_to_gentle(self):
        state = NudgeState(session_start_time=0.0, escalation_level=2)
        for score in (70, 70, 70, 70):
            state, was_reset = record_score(state, score, self.config)
            self.assertFalse(was_reset)
        state, was_reset = record_score(state, 70, self.config)
        self.assertTrue(was_reset)
        self.assertEqual(state.escalation_level, 0)

    def test_partial_history_never_resets(self):
        state = NudgeState(session_start_time=0.0, escalation_level=1, score_history=(90.0, 95.0))
        self.assertFalse(should_reset_escalation(state, self.config))


if __name__ == '__main__':
    unittest.main()
