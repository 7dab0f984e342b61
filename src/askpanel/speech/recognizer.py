"""Microphone speech recognition using sounddevice and faster-whisper."""

import asyncio
import logging
import queue
import threading
from typing import Optional

import numpy as np

from ..config import SpeechConfig
from ..errors import CapabilityUnavailable, EngineCancelFailed
from .capture import RecognitionEnded, RecognitionEngine, RecognitionEvent, RecognitionResult, RecognizedSegment

try:
    import sounddevice as sd
except (ImportError, OSError):  # PortAudio missing on this host
    sd = None

try:
    from faster_whisper import WhisperModel
except ImportError:
    WhisperModel = None

logger = logging.getLogger(__name__)


class WhisperRecognizer(RecognitionEngine):
    """Continuous recognition over a microphone stream.

    Audio chunks from the input stream are buffered into fixed windows and
    transcribed on a worker thread. Each window that yields text becomes one
    final result. Silence yields nothing, which is what lets the capture
    session's silence timer end the utterance.
    """

    def __init__(self, config: SpeechConfig):
        self.config = config
        self.sample_rate = config.sample_rate
        self.channels = config.channels
        self.chunk_samples = int(config.sample_rate * config.chunk_duration_ms / 1000)
        self.window_samples = int(config.sample_rate * config.window_ms / 1000)

        self._model: Optional["WhisperModel"] = None
        self._model_lock = threading.Lock()
        self._stream = None
        self._audio_queue: Optional[queue.Queue] = None
        self._stop_event: Optional[threading.Event] = None
        self._thread: Optional[threading.Thread] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._emit = None

    def _load_model(self) -> None:
        """Load the Whisper model. Runs on the worker thread."""
        logger.info(f"Loading Whisper model: {self.config.whisper_model} on {self.config.whisper_device}")
        try:
            self._model = WhisperModel(
                self.config.whisper_model,
                device=self.config.whisper_device,
                compute_type=self.config.whisper_compute_type,
            )
            logger.info("Whisper model loaded")
        except Exception as e:
            logger.error(f"Failed to load Whisper model: {e}")
            raise

    def _audio_callback(self, indata, frames, time_info, status) -> None:
        """Callback for sounddevice stream."""
        if status:
            logger.warning(f"Audio callback status: {status}")

        audio_queue = self._audio_queue
        if audio_queue is not None:
            audio_queue.put(indata.copy().flatten().astype(np.float32))

    def _process_loop(
        self,
        session_id: int,
        audio_queue: queue.Queue,
        stop_event: threading.Event,
    ) -> None:
        """Buffer chunks into windows and transcribe them until stopped."""
        try:
            with self._model_lock:
                if self._model is None:
                    self._load_model()
        except Exception:
            stop_event.set()
            self._post_call(self._abort, stop_event)
            self._post(RecognitionEnded(session_id=session_id))
            return

        buffer: list[np.ndarray] = []
        buffered = 0
        result_index = 0

        while not stop_event.is_set():
            try:
                chunk = audio_queue.get(timeout=0.1)
            except queue.Empty:
                continue

            buffer.append(chunk)
            buffered += len(chunk)
            if buffered >= self.window_samples:
                if self._transcribe_window(session_id, result_index, np.concatenate(buffer)):
                    result_index += 1
                buffer = []
                buffered = 0

        # Words spoken right before an explicit stop still count
        if buffer:
            self._transcribe_window(session_id, result_index, np.concatenate(buffer))

        self._post(RecognitionEnded(session_id=session_id))

    def _transcribe_window(self, session_id: int, result_index: int, audio: np.ndarray) -> bool:
        """Transcribe one window and emit it as a final result."""
        try:
            segments, _info = self._model.transcribe(
                audio,
                beam_size=5,
                language=self.config.language,
                vad_filter=True,
            )
            text = "".join(seg.text for seg in segments)
        except Exception as e:
            logger.error(f"Transcription error: {e}")
            return False

        if not text.strip():
            return False

        self._post(RecognitionResult(
            session_id=session_id,
            result_index=result_index,
            results=[RecognizedSegment(index=result_index, is_final=True, text=text)],
        ))
        return True

    def _post(self, event: RecognitionEvent) -> None:
        """Hand an event to the event loop that owns the session."""
        if self._emit is None:
            return
        self._post_call(self._emit, event)

    def _post_call(self, callback, *args) -> None:
        loop = self._loop
        if loop is None:
            return
        try:
            loop.call_soon_threadsafe(callback, *args)
        except RuntimeError:
            logger.debug(f"Event loop closed, dropping call to {callback!r}")

    def _abort(self, stop_event: threading.Event) -> None:
        """Close the stream of a session whose worker gave up."""
        if stop_event is not self._stop_event:
            return
        stream, self._stream = self._stream, None
        if stream is not None:
            stream.close(ignore_errors=True)

    def start(self, session_id: int) -> None:
        """Open the microphone and start transcribing."""
        if self._stop_event is not None and not self._stop_event.is_set():
            logger.warning("Recognizer already running")
            return

        self._loop = asyncio.get_running_loop()

        device = None
        if self.config.device != "default":
            try:
                device = int(self.config.device)
            except ValueError:
                device = self.config.device

        logger.info(f"Starting recognition: {self.sample_rate}Hz, {self.channels}ch")

        self._audio_queue = queue.Queue()
        self._stop_event = threading.Event()
        self._thread = threading.Thread(
            target=self._process_loop,
            args=(session_id, self._audio_queue, self._stop_event),
            daemon=True,
        )
        self._thread.start()

        stream = None
        try:
            stream = sd.InputStream(
                device=device,
                samplerate=self.sample_rate,
                channels=self.channels,
                dtype=np.float32,
                blocksize=self.chunk_samples,
                callback=self._audio_callback,
            )
            stream.start()
        except Exception:
            self._stop_event.set()
            if stream is not None:
                stream.close(ignore_errors=True)
            raise
        self._stream = stream

    def stop(self) -> None:
        """Close the microphone; the worker reports the end when drained."""
        if self._stop_event is None or self._stop_event.is_set():
            return

        logger.info("Stopping recognition")
        self._stop_event.set()

        stream, self._stream = self._stream, None
        if stream is not None:
            try:
                stream.stop()
                stream.close()
            except sd.PortAudioError as e:
                raise EngineCancelFailed(f"Could not stop input stream: {e}") from e

    def is_running(self) -> bool:
        """Check if recognition is running."""
        return self._stop_event is not None and not self._stop_event.is_set()

    @staticmethod
    def list_devices() -> list[dict]:
        """List available audio input devices."""
        if sd is None:
            return []
        devices = []
        for i, device in enumerate(sd.query_devices()):
            if device["max_input_channels"] > 0:
                devices.append({
                    "id": i,
                    "name": device["name"],
                    "channels": device["max_input_channels"],
                    "sample_rate": device["default_samplerate"],
                })
        return devices


def create_recognizer(config: SpeechConfig) -> WhisperRecognizer:
    """Build a recognizer, or raise CapabilityUnavailable."""
    if not config.enabled:
        raise CapabilityUnavailable("Speech recognition disabled in config")
    if sd is None:
        raise CapabilityUnavailable("sounddevice/PortAudio not available")
    if WhisperModel is None:
        raise CapabilityUnavailable("faster-whisper not installed")
    if not WhisperRecognizer.list_devices():
        raise CapabilityUnavailable("No audio input device found")
    return WhisperRecognizer(config)
