"""
Configuration and logger tests for the focus coaching system.
"""

import json
import os
import tempfile
import unittest

from focuscoach.utils.config import Config, config
from focuscoach.utils.logger import get_logger, logger


class TestConfig(unittest.TestCase):
    """Test configuration sections, overrides and validation."""

    def test_config_loading(self):
        """All sections are present with the documented defaults."""
        self.assertIsNotNone(config)
        for section in Config.SECTIONS:
            self.assertIsNotNone(getattr(config, section))

        cfg = Config()
        self.assertEqual(cfg.accumulator.eval_interval_sec, 1.0)
        self.assertEqual(cfg.accumulator.distraction_threshold, 65.0)
        self.assertEqual(cfg.accumulator.sustain_evals_required, 3)
        self.assertEqual(cfg.chime.recovery_threshold, 55.0)
        self.assertEqual(cfg.coaching.chimes_to_activate, 5)
        self.assertEqual(cfg.coaching.grace_period_sec, 60.0)
        self.assertEqual(cfg.coaching.cooldown_sec, 30.0)

    def test_config_validation(self):
        cfg = Config()
        self.assertTrue(cfg.validate_config())

        cfg.scoring.gaze_weight = 0.5
        self.assertFalse(cfg.validate_config())
        self.assertTrue(any('weights' in e for e in cfg.get_validation_errors()))

        cfg = Config()
        cfg.chime.recovery_threshold = 40.0
        self.assertFalse(cfg.validate_config())

    def test_update_ignores_unknown_keys(self):
        cfg = Config()
        cfg.update({
            'accumulator': {'decrement_step': 2, 'not_a_key': 1},
            'nonsense': {'x': 1},
        })
        self.assertEqual(cfg.accumulator.decrement_step, 2)
        self.assertFalse(hasattr(cfg.accumulator, 'not_a_key'))

    def test_file_round_trip_without_secrets(self):
        cfg = Config()
        cfg.services.gemini_api_key = "secret-key"
        cfg.chime.drop_threshold = 8

        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "config.json")
            cfg.save_to_file(path)
            with open(path) as f:
                data = json.load(f)
            self.assertIsNone(data['services']['gemini_api_key'])
            self.assertEqual(data['chime']['drop_threshold'], 8)

            loaded = Config(path)
            self.assertEqual(loaded.chime.drop_threshold, 8)

    def test_malformed_file_keeps_defaults(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "broken.json")
            with open(path, 'w') as f:
                f.write("{not json")
            cfg = Config(path)
            self.assertEqual(cfg.accumulator.eval_interval_sec, 1.0)


class TestLogger(unittest.TestCase):

    def test_logger_functionality(self):
        logger.info("Test info message")
        logger.warning("Test warning message")
        logger.log_evaluation(50.0, 2, 3, 99)
        logger.log_chime("started", 97, 100, 1)
        logger.log_nudge("gentle", "Come back and focus.", "none")
        logger.log_system_info()

        try:
            raise ValueError("boom")
        except ValueError as e:
            logger.log_error_with_context(e, "test context")

    def test_module_loggers_share_package_handlers(self):
        module_logger = get_logger("focuscoach.tests")
        self.assertEqual(module_logger.logger.name, "focuscoach.tests")
        self.assertEqual(module_logger.logger.handlers, [])
        self.assertTrue(module_logger.logger.propagate)


if __name__ == '__main__':
    unittest.main()
