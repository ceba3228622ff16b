"""
Audio playback and on-device speech synthesis.

Players run on their own thread and report completion through a callback
so the orchestrator can treat remote audio, local speech and a hung
player the same way.
"""

import io
import threading
import time
from pathlib import Path
from typing import Callable, List, Optional

import numpy as np

from ..utils.logger import get_logger

# Optional imports
try:
    import pyttsx3
    PYTTSX3_AVAILABLE = True
except ImportError:
    PYTTSX3_AVAILABLE = False
    pyttsx3 = None

try:
    import pygame
    PYGAME_AVAILABLE = True
except ImportError:
    PYGAME_AVAILABLE = False
    pygame = None

logger = get_logger(__name__)

DoneCallback = Callable[[Optional[Exception]], None]

MIXER_FREQUENCY = 44100


class AudioPlayer:
    """Plays encoded audio; on_done(error) fires once playback ends or fails."""

    def play(self, audio: bytes, on_done: DoneCallback) -> None:
        raise NotImplementedError

    def stop(self) -> None:
        raise NotImplementedError


class NullAudioPlayer(AudioPlayer):
    """Discards audio and completes immediately (headless replay)."""

    def play(self, audio: bytes, on_done: DoneCallback) -> None:
        on_done(None)

    def stop(self) -> None:
        pass


class FileAudioPlayer(AudioPlayer):
    """Writes each clip to a directory instead of playing it."""

    def __init__(self, output_dir: str = "nudges"):
        self.output_dir = Path(output_dir)
        self.files: List[Path] = []

    def play(self, audio: bytes, on_done: DoneCallback) -> None:
        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
            path = self.output_dir / f"nudge_{time.strftime('%Y%m%d_%H%M%S')}_{len(self.files)}.mp3"
            path.write_bytes(audio)
            self.files.append(path)
            logger.info(f"Nudge audio written to {path}")
        except OSError as e:
            on_done(e)
            return
        on_done(None)

    def stop(self) -> None:
        pass


def init_mixer() -> bool:
    """Open the pygame mixer once. Returns False when there is no audio device."""
    if not PYGAME_AVAILABLE:
        return False
    if pygame.mixer.get_init():
        return True
    try:
        pygame.mixer.init(frequency=MIXER_FREQUENCY, size=-16, channels=1, buffer=2048)
    except pygame.error as e:
        logger.warning(f"Audio mixer unavailable: {e}")
        return False
    return True


class PygameAudioPlayer(AudioPlayer):
    """Plays MP3 clips through pygame.mixer.music and polls for the end."""

    def __init__(self, poll_interval: float = 0.05):
        self.poll_interval = poll_interval
        self._clip = 0
        self._lock = threading.Lock()

    @property
    def available(self) -> bool:
        return PYGAME_AVAILABLE

    def play(self, audio: bytes, on_done: DoneCallback) -> None:
        if not init_mixer():
            on_done(RuntimeError("pygame audio mixer is not available"))
            return
        try:
            with self._lock:
                pygame.mixer.music.stop()
                pygame.mixer.music.load(io.BytesIO(audio), "mp3")
                pygame.mixer.music.play()
                self._clip += 1
                clip = self._clip
        except pygame.error as e:
            on_done(e)
            return
        threading.Thread(target=self._wait, args=(clip, on_done), daemon=True).start()

    def _wait(self, clip: int, on_done: DoneCallback) -> None:
        # Another clip replacing this one also ends it
        while clip == self._clip and pygame.mixer.music.get_busy():
            time.sleep(self.poll_interval)
        on_done(None)

    def stop(self) -> None:
        if PYGAME_AVAILABLE and pygame.mixer.get_init():
            pygame.mixer.music.stop()


class ChimeTone:
    """Short sine tone played on every chime alert."""

    def __init__(self, frequency: float = 880.0, duration_sec: float = 0.18, volume: float = 0.4):
        self.frequency = frequency
        self.duration_sec = duration_sec
        self.volume = volume
        self._sound = None

    def _build(self):
        frequency, _, channels = pygame.mixer.get_init()
        t = np.arange(int(frequency * self.duration_sec)) / frequency
        envelope = np.minimum(1.0, np.linspace(1.0, 0.0, t.size) * 4.0)
        samples = np.sin(2 * np.pi * self.frequency * t) * envelope * self.volume
        pcm = (samples * 32767).astype(np.int16)
        if channels > 1:
            pcm = np.repeat(pcm, channels)
        return pygame.mixer.Sound(buffer=pcm.tobytes())

    def __call__(self, count: int) -> None:
        if not init_mixer():
            return
        if self._sound is None:
            self._sound = self._build()
        self._sound.play()


class LocalSpeechSynthesizer:
    """On-device text-to-speech via pyttsx3, used when remote audio fails."""

    def __init__(self, rate: Optional[int] = None):
        self.rate = rate
        self._engine = None
        self._lock = threading.Lock()

    @property
    def available(self) -> bool:
        return PYTTSX3_AVAILABLE

    def speak(self, text: str, on_done: DoneCallback) -> bool:
        """Start speaking on a worker thread. Returns False when no engine is installed."""
        if not self.available:
            return False
        threading.Thread(target=self._speak, args=(text, on_done), daemon=True).start()
        return True

    def _speak(self, text: str, on_done: DoneCallback) -> None:
        try:
            engine = pyttsx3.init()
            if self.rate:
                engine.setProperty('rate', self.rate)
            with self._lock:
                self._engine = engine
            engine.say(text)
            engine.runAndWait()
        except Exception as e:
            # pyttsx3 driver errors are not a common base class
            logger.log_error_with_context(e, "local speech synthesis")
            on_done(e)
            return
        finally:
            with self._lock:
                self._engine = None
        on_done(None)

    def stop(self) -> None:
        with self._lock:
            if self._engine is not None:
                self._engine.stop()
