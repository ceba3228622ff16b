"""
Tests for the remote coaching service clients. HTTP is mocked.
"""

import unittest
from unittest.mock import MagicMock, patch

import requests

from focuscoach.coaching.audio_cache import AudioCache
from focuscoach.coaching.clients import (
    CoachingApiClient, CoachingServiceError, ElevenLabsSpeechClient, GeminiTextGenerator,
)
from focuscoach.coaching.nudge import EscalationTier
from focuscoach.coaching.phrases import SYSTEM_INSTRUCTIONS
from focuscoach.utils.config import ServiceConfig


def fake_response(status=200, json_data=None, content=b""):
    response = MagicMock()
    response.ok = 200 <= status < 300
    response.status_code = status
    response.text = "error body"
    response.content = content
    response.json.return_value = json_data
    return response


def services(**overrides):
    values = dict(gemini_api_key="g-key", elevenlabs_api_key="e-key", coaching_server_url=None)
    values.update(overrides)
    return ServiceConfig(**values)


class TestGeminiTextGenerator(unittest.TestCase):

    @patch('focuscoach.coaching.clients.requests.post')
    def test_generate(self, mock_post):
        mock_post.return_value = fake_response(json_data={
            'candidates': [{'content': {'parts': [{'text': ' Time to refocus now. '}]}}],
        })
        generator = GeminiTextGenerator(services())

        text = generator.generate("medium", {'sessionMinutes': 12, 'distractionCount': 3})

        self.assertEqual(text, "Time to refocus now.")
        url = mock_post.call_args[0][0]
        kwargs = mock_post.call_args[1]
        self.assertTrue(url.endswith(":generateContent"))
        self.assertEqual(kwargs['headers']['x-goog-api-key'], "g-key")
        body = kwargs['json']
        self.assertEqual(body['systemInstruction']['parts'][0]['text'], SYSTEM_INSTRUCTIONS[EscalationTier.MEDIUM])
        self.assertIn("12 minutes with 3 distractions", body['contents'][0]['parts'][0]['text'])

    def test_missing_key(self):
        generator = GeminiTextGenerator(services(gemini_api_key=None))
        self.assertFalse(generator.available)
        with self.assertRaises(CoachingServiceError):
            generator.generate("gentle")

    @patch('focuscoach.coaching.clients.requests.post')
    def test_http_error(self, mock_post):
        mock_post.return_value = fake_response(status=429)
        with self.assertRaises(CoachingServiceError):
            GeminiTextGenerator(services()).generate("gentle")

    @patch('focuscoach.coaching.clients.requests.post')
    def test_network_error(self, mock_post):
        mock_post.side_effect = requests.ConnectionError("offline")
        with self.assertRaises(CoachingServiceError):
            GeminiTextGenerator(services()).generate("gentle")

    @patch('focuscoach.coaching.clients.requests.post')
    def test_empty_or_malformed_response(self, mock_post):
        generator = GeminiTextGenerator(services())
        mock_post.return_value = fake_response(json_data={'candidates': []})
        with self.assertRaises(CoachingServiceError):
            generator.generate("gentle")

        mock_post.return_value = fake_response(json_data={
            'candidates': [{'content': {'parts': [{'text': '   '}]}}],
        })
        with self.assertRaises(CoachingServiceError):
            generator.generate("gentle")


class TestElevenLabsSpeechClient(unittest.TestCase):

    @patch('focuscoach.coaching.clients.requests.post')
    def test_synthesize_uses_cache(self, mock_post):
        mock_post.return_value = fake_response(content=b"audio-bytes")
        client = ElevenLabsSpeechClient(services(), AudioCache())

        self.assertEqual(client.synthesize_with_source("Lock in."), (b"audio-bytes", False))
        self.assertEqual(client.synthesize_with_source("Lock in."), (b"audio-bytes", True))
        self.assertEqual(mock_post.call_count, 1)
        self.assertEqual(mock_post.call_args[1]['headers']['xi-api-key'], "e-key")
        self.assertEqual(mock_post.call_args[1]['json']['text'], "Lock in.")

    @patch('focuscoach.coaching.clients.requests.post')
    def test_failure_is_not_cached(self, mock_post):
        mock_post.return_value = fake_response(status=500)
        client = ElevenLabsSpeechClient(services(), AudioCache())
        with self.assertRaises(CoachingServiceError):
            client.synthesize("Lock in.")
        self.assertEqual(client.cache.size(), 0)

    def test_missing_key(self):
        client = ElevenLabsSpeechClient(services(elevenlabs_api_key=None))
        with self.assertRaises(CoachingServiceError):
            client.synthesize("Lock in.")
        with self.assertRaises(CoachingServiceError):
            client.prewarm(["Lock in."])

    @patch('focuscoach.coaching.clients.requests.post')
    def test_prewarm_skips_cached_and_survives_failures(self, mock_post):
        def respond(url, timeout=None, json=None, headers=None):
            if json['text'] == "Broken.":
                return fake_response(status=500)
            return fake_response(content=b"audio:" + json['text'].encode())

        mock_post.side_effect = respond
        cache = AudioCache()
        cache.set("Already here.", b"old")
        client = ElevenLabsSpeechClient(services(), cache)

        result = client.prewarm(["Already here.", "One.", "Two.", "Broken.", "Three."], batch_size=2)

        self.assertEqual(result, {'cached': 3, 'total': 5, 'skipped': 1})
        self.assertEqual(cache.get("Two."), b"audio:Two.")
        self.assertFalse(cache.has("Broken."))
        self.assertEqual(cache.get("Already here."), b"old")


class TestCoachingApiClient(unittest.TestCase):

    @patch('focuscoach.coaching.clients.requests.post')
    def test_generate_sends_context(self, mock_post):
        mock_post.return_value = fake_response(json_data={'text': 'Come back and focus.', 'tier': 'gentle'})
        client = CoachingApiClient("http://localhost:5000/")

        text = client.generate(EscalationTier.GENTLE, {'session_minutes': 4, 'distraction_count': 2})

        self.assertEqual(text, "Come back and focus.")
        self.assertEqual(mock_post.call_args[0][0], "http://localhost:5000/api/coaching/generate")
        self.assertEqual(mock_post.call_args[1]['json'],
                         {'tier': 'gentle', 'context': {'sessionMinutes': 4, 'distractionCount': 2}})

    @patch('focuscoach.coaching.clients.requests.post')
    def test_synthesize_and_prewarm(self, mock_post):
        client = CoachingApiClient("http://localhost:5000")
        mock_post.return_value = fake_response(content=b"mp3")
        self.assertEqual(client.synthesize("Focus."), b"mp3")

        mock_post.return_value = fake_response(json_data={'cached': 20, 'total': 27, 'skipped': 7})
        self.assertEqual(client.prewarm(), {'cached': 20, 'total': 27, 'skipped': 7})
        self.assertEqual(mock_post.call_args[0][0], "http://localhost:5000/api/coaching/precache")

    @patch('focuscoach.coaching.clients.requests.post')
    def test_empty_audio(self, mock_post):
        mock_post.return_value = fake_response(content=b"")
        with self.assertRaises(CoachingServiceError):
            CoachingApiClient("http://localhost:5000").synthesize("Focus.")


if __name__ == '__main__':
    unittest.main()
