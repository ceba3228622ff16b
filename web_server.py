#!/usr/bin/env python3
"""
Flask web server for the focus coaching system.
Fronts the coaching text and speech services (keeping API keys server
side, with an audio cache) and hosts one focus session over HTTP.
"""

import argparse
import threading
from concurrent.futures import Executor
from typing import Optional

from flask import Flask, Response, jsonify, request

from focuscoach.coaching.audio_cache import AudioCache
from focuscoach.coaching.clients import CoachingServiceError, ElevenLabsSpeechClient, GeminiTextGenerator
from focuscoach.coaching.orchestrator import NudgeOrchestrator
from focuscoach.coaching.phrases import PhraseBank, parse_tier
from focuscoach.core.scheduler import Scheduler
from focuscoach.core.summary import SessionPhase
from focuscoach.session import FocusSession
from focuscoach.utils.config import Config, config as default_config
from focuscoach.utils.logger import get_logger, log_function_call

logger = get_logger("focuscoach.server")


class SessionHost:
    """The server's single focus session plus the lock that serializes access to it."""

    def __init__(self, cfg: Config, scheduler: Scheduler, text_generator, phrase_bank: PhraseBank,
                 executor: Optional[Executor] = None):
        self.cfg = cfg
        self.scheduler = scheduler
        self.text_generator = text_generator
        self.phrase_bank = phrase_bank
        self.executor = executor
        self.lock = threading.RLock()
        self.session: Optional[FocusSession] = None
        self.orchestrator: Optional[NudgeOrchestrator] = None
        self._pump: Optional[threading.Thread] = None
        self._pump_stop = threading.Event()

    def pump(self) -> None:
        """Run due timers; called with the lock held."""
        self.scheduler.run_pending()

    def start_pump(self, interval: float = 0.05) -> None:
        """Background thread that keeps evaluation ticks on time between requests."""
        if self._pump is not None:
            return

        def loop():
            while not self._pump_stop.wait(interval):
                with self.lock:
                    self.pump()

        self._pump = threading.Thread(target=loop, name="session-pump", daemon=True)
        self._pump.start()

    def stop_pump(self) -> None:
        self._pump_stop.set()

    @log_function_call
    def new_session(self, session_id: Optional[str] = None, carry_calibration: bool = True,
                    coaching: bool = True) -> FocusSession:
        calibration = None
        if self.session is not None:
            if carry_calibration and self.session.calibrator.is_calibrated:
                calibration = self.session.calibrator.state
            self.session.end()
        if self.orchestrator is not None:
            self.orchestrator.shutdown()

        # Audio is fetched by the client through /api/speak, so the server stays silent
        self.orchestrator = NudgeOrchestrator(
            self.scheduler, self.cfg.coaching,
            text_generator=self.text_generator,
            phrase_bank=self.phrase_bank,
            executor=self.executor,
        )
        self.session = FocusSession(
            self.cfg, self.scheduler,
            orchestrator=self.orchestrator if coaching else None,
            calibration=calibration,
            session_id=session_id,
        )
        self.session.start()
        return self.session


def create_app(cfg: Optional[Config] = None, scheduler: Optional[Scheduler] = None,
               text_generator=None, speech_client=None, phrase_bank: Optional[PhraseBank] = None,
               executor: Optional[Executor] = None) -> Flask:
    """
    Build the Flask application.

    Args:
        cfg: Configuration; defaults to the shared module config
        scheduler: Session timer owner; a wall clock Scheduler if omitted
        text_generator: Coaching text source; Gemini if omitted
        speech_client: Speech source with synthesize_with_source() and
            prewarm(); ElevenLabs with a fresh AudioCache if omitted
        phrase_bank: Offline coaching phrases
        executor: Runs the session orchestrator's remote calls
    """
    cfg = cfg or default_config
    text_generator = text_generator or GeminiTextGenerator(cfg.services)
    speech_client = speech_client or ElevenLabsSpeechClient(cfg.services, AudioCache())
    phrase_bank = phrase_bank or PhraseBank()

    app = Flask(__name__)
    host = SessionHost(cfg, scheduler or Scheduler(), text_generator, phrase_bank, executor)
    app.config['SESSION_HOST'] = host

    def json_body() -> dict:
        data = request.get_json(silent=True)
        return data if isinstance(data, dict) else {}

    def generate_text(tier, context) -> str:
        """Always returns usable text."""
        try:
            return text_generator.generate(tier, context)
        except CoachingServiceError as e:
            logger.warning(f"Coaching text generation failed, using phrase bank: {e}")
        except Exception as e:
            logger.log_error_with_context(e, "coaching text generation")
        return phrase_bank.pick(tier)

    @app.route('/health', methods=['GET'])
    def health_check():
        """Health check endpoint."""
        cache = getattr(speech_client, 'cache', None)
        with host.lock:
            session_phase = host.session.phase.value if host.session else None
        return jsonify({
            'status': 'healthy',
            'text_generation_configured': bool(getattr(text_generator, 'available', True)),
            'speech_configured': bool(getattr(speech_client, 'available', True)),
            'cached_phrases': cache.size() if cache is not None else 0,
            'session_phase': session_phase,
        })

    @app.route('/api/coaching/generate', methods=['POST'])
    def generate_coaching():
        """Coaching text for a tier; falls back to the phrase bank, never an error."""
        data = json_body()
        tier = parse_tier(data.get('tier', 'gentle'))
        context = data.get('context')
        if not isinstance(context, dict):
            context = None
        return jsonify({'text': generate_text(tier, context), 'tier': tier.value})

    @app.route('/api/coaching/precache', methods=['POST'])
    def precache():
        """Generate audio for every phrase bank entry, two at a time."""
        if not getattr(speech_client, 'available', True):
            return jsonify({
                'error': 'Speech service API key not configured',
                'cached': 0, 'total': 0, 'skipped': 0,
            }), 500
        try:
            result = speech_client.prewarm(phrase_bank.all_phrases(),
                                           batch_size=cfg.coaching.prewarm_batch_size)
        except CoachingServiceError as e:
            logger.error(f"Pre-warm failed: {e}")
            return jsonify({'error': str(e), 'cached': 0, 'total': 0, 'skipped': 0}), 500
        return jsonify(result)

    @app.route('/api/speak', methods=['POST'])
    def speak():
        """Audio for a text, served from the cache when possible."""
        data = json_body()
        text = data.get('text')
        if not text or not isinstance(text, str):
            return jsonify({'error': 'Text parameter is required'}), 400

        try:
            audio, cache_hit = speech_client.synthesize_with_source(text)
        except CoachingServiceError as e:
            logger.error(f"Speech generation failed: {e}")
            status = 500 if not getattr(speech_client, 'available', True) else 502
            return jsonify({'error': 'Failed to generate speech'}), status

        response = Response(audio, status=200, mimetype='audio/mpeg')
        response.headers['Content-Length'] = str(len(audio))
        response.headers['X-Cache'] = 'HIT' if cache_hit else 'MISS'
        return response

    @app.route('/session/start', methods=['POST'])
    def start_session():
        data = json_body()
        with host.lock:
            host.pump()
            if host.session is not None and host.session.phase in (SessionPhase.RUNNING, SessionPhase.PAUSED):
                return jsonify({'error': 'A session is already active'}), 409
            session = host.new_session(
                session_id=data.get('session_id'),
                carry_calibration=bool(data.get('carry_calibration', True)),
                coaching=bool(data.get('coaching', True)),
            )
            return jsonify({'success': True, 'status': session.status()})

    @app.route('/session/frame', methods=['POST'])
    def session_frame():
        data = request.get_json(silent=True)
        if data is None:
            return jsonify({'error': 'No frame data provided'}), 400
        frames = data.get('frames') if isinstance(data, dict) and 'frames' in data else [data]

        with host.lock:
            if host.session is None or host.session.phase != SessionPhase.RUNNING:
                return jsonify({'error': 'No running session'}), 409
            try:
                for frame in frames:
                    host.pump()
                    host.session.process_frame(frame)
            except (TypeError, ValueError, AttributeError) as e:
                logger.warning(f"Rejected malformed frame: {e}")
                return jsonify({'error': f'Malformed frame: {e}'}), 400
            host.pump()
            return jsonify({'success': True, 'status': host.session.status()})

    @app.route('/session/status', methods=['GET'])
    def session_status():
        with host.lock:
            if host.session is None:
                return jsonify({'error': 'No session'}), 404
            host.pump()
            return jsonify(host.session.status())

    @app.route('/session/reset', methods=['POST'])
    def session_reset():
        data = json_body()
        with host.lock:
            if host.session is None:
                return jsonify({'error': 'No session'}), 404
            host.pump()
            host.session.reset(recalibrate=bool(data.get('recalibrate', False)))
            return jsonify({'success': True, 'status': host.session.status()})

    @app.route('/session/end', methods=['POST'])
    def session_end():
        with host.lock:
            if host.session is None:
                return jsonify({'error': 'No session'}), 404
            host.pump()
            summary = host.session.end()
            if summary is None:
                return jsonify({'error': 'Session never started'}), 409
            return jsonify({'success': True, 'summary': summary.to_dict()})

    return app


def run_server(host: str = "127.0.0.1", port: int = 5000, cfg: Optional[Config] = None) -> None:
    app = create_app(cfg)
    app.config['SESSION_HOST'].start_pump()
    print(f"Starting focus coaching server on http://{host}:{port}")
    app.run(host=host, port=port, debug=False, threaded=True)


if __name__ == '__main__':
    parser = argparse.ArgumentParser(description="Focus coaching HTTP server")
    parser.add_argument("--host", type=str, default="127.0.0.1")
    parser.add_argument("--port", type=int, default=5000)
    parser.add_argument("--config", type=str, default=None)
    args = parser.parse_args()
    run_server(args.host, args.port, Config(args.config))
