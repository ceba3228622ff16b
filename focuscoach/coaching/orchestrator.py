"""
Nudge Delivery Orchestrator Module

Turns a long enough distraction alert into one spoken coaching nudge:
gate check, coaching text (remote, else phrase bank), audio (remote, else
local speech, else silent), then the escalation update. Remote calls run
on worker threads; every result comes back through the scheduler so all
state changes happen on the scheduler's thread. Each delivery carries a
generation token, and reset() bumps it so late results are dropped.
"""

from concurrent.futures import Executor, Future, ThreadPoolExecutor
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, List, Optional

from .clients import CoachingApiClient, CoachingServiceError, ElevenLabsSpeechClient, GeminiTextGenerator
from .nudge import (
    EscalationTier, NudgeState, advance_escalation, can_trigger_nudge,
    create_nudge_state, get_escalation_tier, record_score,
)
from .phrases import PhraseBank
from .speech import PYTTSX3_AVAILABLE, AudioPlayer, LocalSpeechSynthesizer, NullAudioPlayer
from ..core.scheduler import Scheduler, TimerHandle
from ..utils.config import CoachingConfig, config as default_config
from ..utils.logger import get_logger

logger = get_logger(__name__)

AUDIO_REMOTE = "remote"
AUDIO_LOCAL = "local"
AUDIO_NONE = "none"


@dataclass(frozen=True)
class NudgeEvent:
    """A delivered nudge."""
    time: float
    tier: EscalationTier
    text: str
    audio_source: str
    timed_out: bool = False


class NudgeOrchestrator:
    """Single-flight nudge delivery driven by the chime count."""

    def __init__(self, scheduler: Scheduler, config: Optional[CoachingConfig] = None,
                 text_generator=None, speech_client=None,
                 player: Optional[AudioPlayer] = None,
                 local_speech: Optional[LocalSpeechSynthesizer] = None,
                 phrase_bank: Optional[PhraseBank] = None,
                 executor: Optional[Executor] = None,
                 prewarm_executor: Optional[Executor] = None):
        """
        Args:
            scheduler: Owner of all state changes and of the safety timeout
            config: Coaching timing settings
            text_generator: Object with generate(tier, context) -> str, or None
            speech_client: Object with synthesize(text) -> bytes (and
                optionally prewarm(phrases, batch_size)), or None
            player: Plays remote audio; defaults to discarding it
            local_speech: On-device fallback voice
            phrase_bank: Offline coaching phrases
            executor: Runs remote text and audio requests
            prewarm_executor: Runs cache warm-up, separate from delivery
        """
        self.scheduler = scheduler
        self.config = config or CoachingConfig()
        self.text_generator = text_generator
        self.speech_client = speech_client
        self.player = player or NullAudioPlayer()
        self.local_speech = local_speech
        self.phrase_bank = phrase_bank or PhraseBank()
        self.executor = executor or ThreadPoolExecutor(max_workers=1, thread_name_prefix="nudge")
        self.prewarm_executor = prewarm_executor or ThreadPoolExecutor(max_workers=1,
                                                                       thread_name_prefix="prewarm")

        self.state: NudgeState = create_nudge_state(scheduler.now())
        self.current_score = 100
        self.episode_count = 0
        self.nudge_count = 0
        self.last_block_reason: Optional[str] = None
        self.last_nudge: Optional[NudgeEvent] = None

        self.is_playing = False
        self.current_tier: Optional[EscalationTier] = None
        self.current_message: Optional[str] = None

        self._generation = 0
        self._triggered_this_episode = False
        self._last_chime_count = 0
        self._audio_source = AUDIO_NONE
        self._timeout: Optional[TimerHandle] = None
        self._listeners: List[Callable[[NudgeEvent], None]] = []

    def add_listener(self, callback: Callable[[NudgeEvent], None]) -> None:
        self._listeners.append(callback)

    # Session lifecycle

    def start_session(self, now: Optional[float] = None, prewarm: Optional[bool] = None) -> None:
        """Fresh nudge state for a new session; optionally warm the audio cache."""
        self.reset()
        self.state = create_nudge_state(self.scheduler.now() if now is None else now)
        self.current_score = 100
        self.episode_count = 0
        self.nudge_count = 0
        self.last_nudge = None
        self.last_block_reason = None
        if self.config.prewarm_on_start if prewarm is None else prewarm:
            self.prewarm()

    def reset(self) -> None:
        """Cancel any delivery and clear what the UI shows. Escalation history is kept."""
        self._generation += 1
        self._cancel_timeout()
        if self.is_playing:
            logger.info("Cancelling in-flight nudge")
        self.player.stop()
        if self.local_speech is not None:
            self.local_speech.stop()
        self.is_playing = False
        self.current_tier = None
        self.current_message = None
        self._audio_source = AUDIO_NONE
        self._triggered_this_episode = False
        self._last_chime_count = 0

    def shutdown(self) -> None:
        self.reset()
        self.executor.shutdown(wait=False)
        self.prewarm_executor.shutdown(wait=False)

    # Inputs

    def record_score(self, score: float) -> None:
        """Feed one evaluation tick's score into the recovery and escalation history."""
        self.state, was_reset = record_score(self.state, score, self.config)
        if was_reset:
            logger.info("Sustained focus detected, escalation reset to gentle")

    def on_chime_count(self, count: int) -> None:
        """Listener for the chime controller's count."""
        previous = self._last_chime_count
        self._last_chime_count = count

        if count <= 0:
            if previous > 0:
                # Episode over: the next one may trigger again
                self._triggered_this_episode = False
            return

        if previous == 0:
            self.episode_count += 1
        self._maybe_trigger(count)

    # Delivery

    def _maybe_trigger(self, count: int) -> None:
        if count < self.config.chimes_to_activate:
            return
        if self._triggered_this_episode or self.is_playing:
            return

        decision = can_trigger_nudge(self.state, self.current_score, self.scheduler.now(), self.config)
        if not decision.allowed:
            if decision.reason != self.last_block_reason:
                logger.info(f"Nudge blocked: {decision.reason}")
            self.last_block_reason = decision.reason
            return

        self.last_block_reason = None
        self._deliver()

    def _deliver(self) -> None:
        self._triggered_this_episode = True
        self.is_playing = True
        self._generation += 1
        token = self._generation

        tier = get_escalation_tier(self.state.escalation_level)
        self.current_tier = tier
        self.current_message = None
        self._audio_source = AUDIO_NONE

        elapsed = self.scheduler.now() - self.state.session_start_time
        context = {'session_minutes': int(elapsed // 60), 'distraction_count': self.episode_count}
        logger.info(f"Delivering {tier.value} nudge (episode {self.episode_count})")

        self.executor.submit(self._fetch_content, token, tier, context)

    def _fetch_content(self, token: int, tier: EscalationTier, context: Dict[str, Any]) -> None:
        """Worker thread: coaching text then remote audio. Never raises."""
        text = None
        if self.text_generator is not None:
            try:
                text = self.text_generator.generate(tier, context)
            except Exception as e:
                # Any generator failure falls back to the phrase bank
                logger.warning(f"Coaching text generation failed, using phrase bank: {e}")
        if not text or not text.strip():
            text = self.phrase_bank.pick(tier)
        text = text.strip()

        audio = None
        if self.speech_client is not None:
            try:
                audio = self.speech_client.synthesize(text)
            except CoachingServiceError as e:
                logger.warning(f"Remote speech failed: {e}")
            except Exception as e:
                logger.log_error_with_context(e, "remote speech")

        self.scheduler.call_soon_threadsafe(self._on_content, token, text, audio)

    def _is_current(self, token: int) -> bool:
        return token == self._generation and self.is_playing

    def _on_content(self, token: int, text: str, audio: Optional[bytes]) -> None:
        if not self._is_current(token):
            return
        self.current_message = text
        self._arm_timeout(token)
        if audio:
            self._audio_source = AUDIO_REMOTE
            self.player.play(audio, lambda error: self.scheduler.call_soon_threadsafe(
                self._on_remote_done, token, error))
        else:
            self._speak_locally(token)

    def _on_remote_done(self, token: int, error: Optional[Exception]) -> None:
        if not self._is_current(token):
            return
        if error is not None:
            logger.warning(f"Audio playback failed, falling back to local speech: {error}")
            self._arm_timeout(token)
            self._speak_locally(token)
            return
        self._complete(token)

    def _speak_locally(self, token: int) -> None:
        if self.local_speech is not None and self.local_speech.speak(
                self.current_message,
                lambda error: self.scheduler.call_soon_threadsafe(self._complete, token)):
            self._audio_source = AUDIO_LOCAL
            return
        # No voice available: the nudge still counts as delivered
        self._audio_source = AUDIO_NONE
        self._complete(token)

    def _on_timeout(self, token: int) -> None:
        if not self._is_current(token):
            return
        logger.warning(f"Nudge playback did not finish within {self.config.playback_timeout_sec}s")
        self._timeout = None
        self.player.stop()
        if self.local_speech is not None:
            self.local_speech.stop()
        self._complete(token, timed_out=True)

    def _complete(self, token: int, timed_out: bool = False) -> None:
        if not self._is_current(token):
            return
        self._cancel_timeout()
        now = self.scheduler.now()
        self.state = advance_escalation(replace(self.state, last_nudge_time=now), self.config)

        event = NudgeEvent(
            time=now,
            tier=self.current_tier,
            text=self.current_message or self.phrase_bank.pick(self.current_tier),
            audio_source=self._audio_source,
            timed_out=timed_out,
        )
        self.is_playing = False
        self.current_tier = None
        self.current_message = None
        self.nudge_count += 1
        self.last_nudge = event

        logger.log_nudge(event.tier.value, event.text, event.audio_source)
        for listener in list(self._listeners):
            listener(event)

    def _arm_timeout(self, token: int) -> None:
        """Bound playback only; remote requests are bounded by their own timeout."""
        self._cancel_timeout()
        self._timeout = self.scheduler.call_later(self.config.playback_timeout_sec, self._on_timeout, token)

    def _cancel_timeout(self) -> None:
        if self._timeout is not None:
            self._timeout.cancel()
            self._timeout = None

    # Cache warm-up

    def prewarm(self) -> Optional[Future]:
        """Fire-and-forget audio generation for the whole phrase bank."""
        prewarm = getattr(self.speech_client, 'prewarm', None)
        if prewarm is None:
            return None
        return self.prewarm_executor.submit(self._run_prewarm, prewarm)

    def _run_prewarm(self, prewarm: Callable[..., Dict[str, int]]) -> Optional[Dict[str, int]]:
        try:
            return prewarm(self.phrase_bank.all_phrases(), batch_size=self.config.prewarm_batch_size)
        except CoachingServiceError as e:
            logger.warning(f"Audio pre-warm skipped: {e}")
            return None

    def status(self) -> Dict[str, Any]:
        return {
            'nudge_active': self.is_playing,
            'tier': self.current_tier.value if self.current_tier else None,
            'message': self.current_message,
            'escalation_level': self.state.escalation_level,
            'nudge_count': self.nudge_count,
            'last_block_reason': self.last_block_reason,
        }


def create_orchestrator(scheduler: Scheduler, cfg=None, player: Optional[AudioPlayer] = None,
                        use_local_speech: bool = True, rng=None,
                        executor: Optional[Executor] = None) -> NudgeOrchestrator:
    """
    Build an orchestrator from configuration.

    With services.coaching_server_url set, text and audio come from a
    running coaching server; otherwise the vendor clients are used for
    whichever API keys are configured.
    """
    cfg = cfg or default_config
    services = cfg.services
    if services.coaching_server_url:
        remote = CoachingApiClient(services.coaching_server_url, services.request_timeout_sec)
        text_generator, speech_client = remote, remote
    else:
        text_generator = GeminiTextGenerator(services) if services.gemini_api_key else None
        speech_client = ElevenLabsSpeechClient(services) if services.elevenlabs_api_key else None

    local_speech = LocalSpeechSynthesizer() if use_local_speech and PYTTSX3_AVAILABLE else None
    logger.info(f"Coaching: text={'remote' if text_generator else 'phrase bank'}, "
                f"audio={'remote' if speech_client else 'local' if local_speech else 'none'}")

    return NudgeOrchestrator(
        scheduler,
        config=cfg.coaching,
        text_generator=text_generator,
        speech_client=speech_client,
        player=player,
        local_speech=local_speech,
        phrase_bank=PhraseBank(rng=rng),
        executor=executor,
    )
