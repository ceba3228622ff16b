"""
Remote Coaching Service Clients

HTTP clients for the two outbound collaborators of the coaching layer:
short coaching text generation (Gemini REST API) and speech synthesis
(ElevenLabs REST API), plus a client for this package's own web_server,
which fronts both behind one endpoint set. Every failure surfaces as
CoachingServiceError; callers convert it to a local fallback.
"""

from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

import requests

from .audio_cache import AudioCache
from .nudge import EscalationTier
from .phrases import SYSTEM_INSTRUCTIONS, build_prompt, parse_tier
from ..utils.config import ServiceConfig
from ..utils.logger import get_logger

logger = get_logger(__name__)

Tier = Union[str, EscalationTier]


class CoachingServiceError(Exception):
    """A remote coaching service could not produce a usable result."""


def _context_values(context: Optional[Dict[str, Any]]) -> Tuple[Optional[float], Optional[int]]:
    if not context:
        return None, None
    minutes = context.get('session_minutes', context.get('sessionMinutes'))
    distractions = context.get('distraction_count', context.get('distractionCount'))
    return minutes, distractions


def _post(url: str, timeout: float, **kwargs) -> requests.Response:
    try:
        response = requests.post(url, timeout=timeout, **kwargs)
    except requests.RequestException as e:
        raise CoachingServiceError(f"Request to {url} failed: {e}") from e
    if not response.ok:
        raise CoachingServiceError(f"{url} returned HTTP {response.status_code}: {response.text[:200]}")
    return response


class GeminiTextGenerator:
    """Generates coaching text with the Gemini generateContent endpoint."""

    def __init__(self, services: Optional[ServiceConfig] = None):
        self.services = services or ServiceConfig()

    @property
    def available(self) -> bool:
        return bool(self.services.gemini_api_key)

    def generate(self, tier: Tier, context: Optional[Dict[str, Any]] = None) -> str:
        """
        Request one short coaching line for the tier.

        Raises:
            CoachingServiceError: missing key, HTTP failure or empty text
        """
        if not self.available:
            raise CoachingServiceError("GEMINI_API_KEY is not configured")

        tier = parse_tier(tier)
        minutes, distractions = _context_values(context)
        s = self.services
        payload = {
            'systemInstruction': {'parts': [{'text': SYSTEM_INSTRUCTIONS[tier]}]},
            'contents': [{'role': 'user', 'parts': [{'text': build_prompt(minutes, distractions)}]}],
            'generationConfig': {'temperature': s.gemini_temperature},
        }
        url = f"{s.gemini_base_url.rstrip('/')}/models/{s.gemini_model}:generateContent"
        response = _post(
            url, s.request_timeout_sec, json=payload,
            headers={'Content-Type': 'application/json', 'x-goog-api-key': s.gemini_api_key},
        )

        try:
            data = response.json()
            parts = data['candidates'][0]['content']['parts']
            text = ''.join(part.get('text', '') for part in parts).strip()
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise CoachingServiceError(f"Unexpected text generation response: {e}") from e

        if not text:
            raise CoachingServiceError("Text generation returned an empty response")
        logger.debug(f"Generated {tier.value} coaching text: {text!r}")
        return text


class ElevenLabsSpeechClient:
    """Text-to-speech through ElevenLabs with an exact-text audio cache."""

    def __init__(self, services: Optional[ServiceConfig] = None, cache: Optional[AudioCache] = None):
        self.services = services or ServiceConfig()
        self.cache = cache if cache is not None else AudioCache()

    @property
    def available(self) -> bool:
        return bool(self.services.elevenlabs_api_key)

    def synthesize(self, text: str) -> bytes:
        audio, _ = self.synthesize_with_source(text)
        return audio

    def synthesize_with_source(self, text: str) -> Tuple[bytes, bool]:
        """Return (audio, cache_hit). Fresh audio is stored in the cache."""
        cached = self.cache.get(text)
        if cached is not None:
            logger.debug(f"Audio cache hit for: {text[:50]}")
            return cached, True

        audio = self._request_audio(text)
        self.cache.set(text, audio)
        return audio, False

    def _request_audio(self, text: str) -> bytes:
        if not self.available:
            raise CoachingServiceError("ELEVENLABS_API_KEY is not configured")
        if not text:
            raise CoachingServiceError("Cannot synthesize empty text")

        s = self.services
        url = f"{s.elevenlabs_base_url.rstrip('/')}/text-to-speech/{s.elevenlabs_voice_id}"
        response = _post(
            url, s.request_timeout_sec,
            json={
                'text': text,
                'model_id': s.elevenlabs_model_id,
                'voice_settings': {
                    'stability': s.voice_stability,
                    'similarity_boost': s.voice_similarity_boost,
                },
            },
            headers={'Content-Type': 'application/json', 'xi-api-key': s.elevenlabs_api_key},
        )
        audio = response.content
        if not audio:
            raise CoachingServiceError("Speech synthesis returned no audio")
        logger.debug(f"Speech generated: {len(audio)} bytes for {text[:50]!r}")
        return audio

    def prewarm(self, phrases: Iterable[str], batch_size: int = 2) -> Dict[str, int]:
        """
        Fill the cache for every phrase not already cached.

        Phrases are requested batch_size at a time to stay within the
        vendor's concurrency limit; individual failures are logged and
        skipped.

        Returns:
            {'cached': newly cached, 'total': phrases considered, 'skipped': already cached}
        """
        if not self.available:
            raise CoachingServiceError("ELEVENLABS_API_KEY is not configured")

        pending: List[str] = []
        skipped = 0
        for phrase in phrases:
            if self.cache.has(phrase):
                skipped += 1
            elif phrase not in pending:
                pending.append(phrase)

        cached = 0
        batch_size = max(1, batch_size)
        with ThreadPoolExecutor(max_workers=batch_size) as pool:
            for start in range(0, len(pending), batch_size):
                batch = pending[start:start + batch_size]
                logger.debug(f"Pre-warming phrases {start + 1}-{start + len(batch)}/{len(pending)}")
                futures = [(text, pool.submit(self._request_audio, text)) for text in batch]
                for text, future in futures:
                    try:
                        self.cache.set(text, future.result())
                        cached += 1
                    except CoachingServiceError as e:
                        logger.warning(f"Failed to pre-warm {text[:30]!r}: {e}")

        result = {'cached': cached, 'total': len(pending) + skipped, 'skipped': skipped}
        logger.info(f"Audio pre-warm complete: {result['cached']} cached, "
                    f"{result['skipped']} skipped, {result['total']} total")
        return result


class CoachingApiClient:
    """Client for the coaching routes of this package's web_server."""

    def __init__(self, base_url: str, timeout: float = 10.0):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout

    def generate(self, tier: Tier, context: Optional[Dict[str, Any]] = None) -> str:
        minutes, distractions = _context_values(context)
        payload: Dict[str, Any] = {'tier': parse_tier(tier).value}
        if context:
            payload['context'] = {'sessionMinutes': minutes or 0, 'distractionCount': distractions or 0}

        response = _post(f"{self.base_url}/api/coaching/generate", self.timeout, json=payload)
        try:
            text = (response.json().get('text') or '').strip()
        except (ValueError, AttributeError) as e:
            raise CoachingServiceError(f"Unexpected coaching response: {e}") from e
        if not text:
            raise CoachingServiceError("Coaching server returned empty text")
        return text

    def synthesize(self, text: str) -> bytes:
        response = _post(f"{self.base_url}/api/speak", self.timeout, json={'text': text})
        if not response.content:
            raise CoachingServiceError("Coaching server returned no audio")
        return response.content

    def prewarm(self, phrases: Optional[Iterable[str]] = None, batch_size: int = 2) -> Dict[str, int]:
        """Ask the server to warm its own cache; the server always uses its phrase bank."""
        response = _post(f"{self.base_url}/api/coaching/precache", self.timeout * 10)
        try:
            data = response.json()
        except ValueError as e:
            raise CoachingServiceError(f"Unexpected precache response: {e}") from e
        return {key: int(data.get(key, 0)) for key in ('cached', 'total', 'skipped')}
