"""Speech synthesis using piper voices played through sounddevice."""

import asyncio
import io
import logging
import threading
import wave
from pathlib import Path
from typing import Optional

import numpy as np

from ..config import PlaybackConfig
from ..errors import CapabilityUnavailable, EngineCancelFailed
from .playback import SynthesisEngine, SynthesisFinished, Utterance

try:
    import sounddevice as sd
except (ImportError, OSError):  # PortAudio missing on this host
    sd = None

try:
    from piper import PiperVoice, SynthesisConfig
except ImportError:
    PiperVoice = None
    SynthesisConfig = None

logger = logging.getLogger(__name__)


class PiperSynthesizer(SynthesisEngine):
    """Synthesizes an utterance off the event loop and plays it."""

    def __init__(self, config: PlaybackConfig):
        self.config = config
        self.voice_model = config.voice_model

        self._voice = None
        self._stream = None
        self._cancelled: Optional[threading.Event] = None
        self._lock = threading.Lock()
        self._emit = None

        self._load_voice()

    def _load_voice(self) -> None:
        """Load the piper voice model."""
        logger.info(f"Loading piper voice: {self.voice_model}")
        try:
            self._voice = PiperVoice.load(str(Path(self.voice_model).expanduser()))
            logger.info("Piper voice loaded")
        except Exception as e:
            logger.error(f"Failed to load piper voice: {e}")
            raise

    def _synthesize(self, text: str, rate: float) -> tuple[np.ndarray, int]:
        """Render text to 16-bit mono samples."""
        syn_config = SynthesisConfig(length_scale=1.0 / rate if rate > 0 else 1.0)
        buf = io.BytesIO()
        with wave.open(buf, "wb") as wav_file:
            self._voice.synthesize_wav(text, wav_file, syn_config=syn_config)

        buf.seek(0)
        with wave.open(buf, "rb") as wav_file:
            sample_rate = wav_file.getframerate()
            frames = wav_file.readframes(wav_file.getnframes())

        return np.frombuffer(frames, dtype=np.int16), sample_rate

    def _play(self, utterance: Utterance, cancelled: threading.Event) -> None:
        """Worker: synthesize then block on playback until done or aborted."""
        audio, sample_rate = self._synthesize(utterance.text, utterance.rate)
        if cancelled.is_set():
            return

        device = None if self.config.device == "default" else self.config.device
        stream = sd.OutputStream(
            device=device,
            samplerate=sample_rate,
            channels=1,
            dtype="int16",
        )
        with self._lock:
            if cancelled.is_set():
                stream.close()
                return
            self._stream = stream

        try:
            stream.start()
            stream.write(audio.reshape(-1, 1))
        except sd.PortAudioError:
            if not cancelled.is_set():
                raise
        finally:
            with self._lock:
                if self._stream is stream:
                    self._stream = None
            stream.close(ignore_errors=True)

    def _on_done(self, utterance: Utterance, future: asyncio.Future) -> None:
        if not future.cancelled() and future.exception() is not None:
            logger.error(f"Playback of utterance {utterance.id} failed: {future.exception()}")
        if self._emit is not None:
            self._emit(SynthesisFinished(utterance_id=utterance.id))

    def speak(self, utterance: Utterance) -> None:
        """Start speaking on a worker thread."""
        loop = asyncio.get_running_loop()
        self._cancelled = threading.Event()
        future = loop.run_in_executor(None, self._play, utterance, self._cancelled)
        future.add_done_callback(lambda f: self._on_done(utterance, f))

    def cancel(self) -> None:
        """Abort the stream of the current utterance."""
        if self._cancelled is not None:
            self._cancelled.set()

        with self._lock:
            stream = self._stream

        if stream is None:
            return

        try:
            stream.abort()
        except sd.PortAudioError as e:
            raise EngineCancelFailed(f"Could not abort output stream: {e}") from e

    def cancel_all(self) -> None:
        """Force the output stream shut, then stop any sounddevice playback."""
        if self._cancelled is not None:
            self._cancelled.set()

        with self._lock:
            stream, self._stream = self._stream, None

        if stream is not None:
            stream.abort(ignore_errors=True)
            stream.close(ignore_errors=True)
        sd.stop()


def create_synthesizer(config: PlaybackConfig) -> PiperSynthesizer:
    """Build a synthesizer, or raise CapabilityUnavailable."""
    if not config.enabled:
        raise CapabilityUnavailable("Speech synthesis disabled in config")
    if sd is None:
        raise CapabilityUnavailable("sounddevice/PortAudio not available")
    if PiperVoice is None:
        raise CapabilityUnavailable("piper-tts not installed")
    if not config.voice_model or not Path(config.voice_model).expanduser().exists():
        raise CapabilityUnavailable(f"Piper voice model not found: {config.voice_model}")
    return PiperSynthesizer(config)
