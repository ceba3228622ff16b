"""
Tests for the phrase bank, prompt templates and audio cache.
"""

import random
import threading
import unittest

from focuscoach.coaching.audio_cache import AudioCache
from focuscoach.coaching.nudge import EscalationTier
from focuscoach.coaching.phrases import (
    COMMON_NUDGE_PHRASES, SYSTEM_INSTRUCTIONS, PhraseBank, build_prompt, parse_tier,
)


class TestPhrases(unittest.TestCase):

    def test_every_tier_has_phrases_and_instructions(self):
        for tier in EscalationTier:
            self.assertEqual(len(COMMON_NUDGE_PHRASES[tier]), 9)
            self.assertIn("4-8 words", SYSTEM_INSTRUCTIONS[tier])

    def test_parse_tier(self):
        self.assertEqual(parse_tier("MEDIUM"), EscalationTier.MEDIUM)
        self.assertEqual(parse_tier(" direct "), EscalationTier.DIRECT)
        self.assertEqual(parse_tier("shouty"), EscalationTier.GENTLE)
        self.assertEqual(parse_tier(None), EscalationTier.GENTLE)
        self.assertEqual(parse_tier(EscalationTier.DIRECT), EscalationTier.DIRECT)

    def test_build_prompt(self):
        self.assertEqual(build_prompt(), "Generate a focus coaching nudge.")
        self.assertEqual(
            build_prompt(12, 3),
            "Generate a focus coaching nudge. User has been in session for 12 minutes with 3 distractions.",
        )

    def test_pick_is_seedable(self):
        first = PhraseBank(rng=random.Random(7)).pick(EscalationTier.MEDIUM)
        second = PhraseBank(rng=random.Random(7)).pick("medium")
        self.assertEqual(first, second)
        self.assertIn(first, COMMON_NUDGE_PHRASES[EscalationTier.MEDIUM])

    def test_all_phrases(self):
        bank = PhraseBank()
        phrases = bank.all_phrases()
        self.assertEqual(len(phrases), 27)
        self.assertEqual(bank.for_tier("gentle"), COMMON_NUDGE_PHRASES[EscalationTier.GENTLE])

    def test_custom_bank_falls_back_for_missing_tier(self):
        bank = PhraseBank({EscalationTier.DIRECT: ("Focus.",)})
        self.assertEqual(bank.pick("direct"), "Focus.")
        self.assertIn(bank.pick("gentle"), COMMON_NUDGE_PHRASES[EscalationTier.GENTLE])


class TestAudioCache(unittest.TestCase):

    def test_exact_text_keys(self):
        cache = AudioCache()
        cache.set("Come back and focus.", b"mp3")
        self.assertEqual(cache.get("Come back and focus."), b"mp3")
        self.assertIsNone(cache.get("come back and focus."))
        self.assertIn("Come back and focus.", cache)
        self.assertEqual(len(cache), 1)
        self.assertEqual(cache.keys(), ["Come back and focus."])
        cache.clear()
        self.assertEqual(cache.size(), 0)

    def test_concurrent_writes(self):
        cache = AudioCache()

        def fill(prefix):
            for i in range(50):
                cache.set(f"{prefix}-{i}", b"x")

        threads = [threading.Thread(target=fill, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        self.assertEqual(cache.size(), 200)


if __name__ == '__main__':
    unittest.main()
