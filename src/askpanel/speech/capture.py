"""Capture session: continuous speech recognition with silence endpointing."""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, Optional

from ..config import SpeechConfig
from ..errors import AskPanelError

logger = logging.getLogger(__name__)


@dataclass
class RecognizedSegment:
    """One recognition result slot as reported by the engine."""
    index: int
    is_final: bool
    text: str


@dataclass
class RecognitionResult:
    """Engine event carrying results from ``result_index`` onward."""
    session_id: int
    result_index: int
    results: list[RecognizedSegment] = field(default_factory=list)


@dataclass
class RecognitionEnded:
    """Engine event reporting that the recognition stream has ended."""
    session_id: int


RecognitionEvent = RecognitionResult | RecognitionEnded


@dataclass
class CaptureState:
    """Observable capture state."""
    supported: bool
    listening: bool
    transcript: str


class RecognitionEngine(ABC):
    """Continuous speech-to-text capability consumed by a capture session."""

    def attach(self, emit: Callable[[RecognitionEvent], None]) -> None:
        """Register the channel that receives this engine's events."""
        self._emit = emit

    @abstractmethod
    def start(self, session_id: int) -> None:
        """Begin a continuous recognition stream tagged with ``session_id``."""
        raise NotImplementedError

    @abstractmethod
    def stop(self) -> None:
        """Request the stream to stop; the engine reports RecognitionEnded."""
        raise NotImplementedError


class CaptureSession:
    """Turns a continuous recognition stream into discrete utterances.

    The session is Idle until ``start()``. While listening, every result
    event from the engine restarts a silence timer; finalized text is
    appended to the transcript. When the timer fires, the engine reports its
    end, or ``stop()`` completes, the session returns to Idle and the
    transcript, if any, is handed to utterance listeners in the same loop
    callback.
    """

    def __init__(self, config: SpeechConfig, engine: Optional[RecognitionEngine] = None):
        self.config = config
        self.silence_timeout_s = config.silence_timeout_s

        self._engine = engine
        self._listening = False
        self._transcript = ""
        self._session_id = 0
        self._silence_timer: Optional[asyncio.TimerHandle] = None

        # Callbacks
        self._on_utterance: list[Callable[[str], None]] = []
        self._on_change: list[Callable[[CaptureState], None]] = []

        self._transitions = {
            RecognitionResult: self._on_result,
            RecognitionEnded: self._on_end,
        }

        if engine is None:
            logger.info("Speech recognition unavailable, capture disabled")
        else:
            engine.attach(self.dispatch)

    @property
    def supported(self) -> bool:
        return self._engine is not None

    @property
    def listening(self) -> bool:
        return self._listening

    @property
    def transcript(self) -> str:
        return self._transcript

    @property
    def state(self) -> CaptureState:
        """Snapshot of the observable capture state."""
        return CaptureState(
            supported=self.supported,
            listening=self._listening,
            transcript=self._transcript,
        )

    def on_utterance(self, callback: Callable[[str], None]) -> None:
        """Register callback for finalized utterances."""
        self._on_utterance.append(callback)

    def on_change(self, callback: Callable[[CaptureState], None]) -> None:
        """Register callback for state changes."""
        self._on_change.append(callback)

    def start(self) -> None:
        """Start a new listening session."""
        if self._engine is None:
            logger.debug("Capture start ignored: recognition unsupported")
            return

        if self._listening:
            logger.warning("Capture already listening")
            return

        self._session_id += 1
        self._transcript = ""
        self._listening = True
        logger.info(f"Listening (session {self._session_id})")

        try:
            self._engine.start(self._session_id)
        except Exception as e:
            logger.error(f"Recognition engine failed to start: {e}")
            self._cancel_timer()
            self._listening = False

        self._notify_change()

    def stop(self) -> None:
        """Stop listening at the user's request."""
        if self._engine is None:
            logger.debug("Capture stop ignored: recognition unsupported")
            return

        self._cancel_timer()

        try:
            self._engine.stop()
        except AskPanelError as e:
            logger.warning(f"Recognition engine stop failed: {e}")
            self._finish()
        except Exception as e:
            logger.error(f"Recognition engine stop error: {e}", exc_info=True)
            self._finish()

    def close(self) -> None:
        """Tear down the session. A pending utterance is discarded."""
        self._cancel_timer()
        if not self._listening:
            return

        try:
            self._engine.stop()
        except Exception as e:
            logger.warning(f"Recognition engine stop failed: {e}")
        self._finish(deliver=False)

    def dispatch(self, event: RecognitionEvent) -> None:
        """Route an engine event through the transition table."""
        handler = self._transitions.get(type(event))
        if handler is None:
            logger.warning(f"Unknown recognition event: {event!r}")
            return

        if not self._listening or event.session_id != self._session_id:
            logger.debug(f"Dropping stale recognition event: {event!r}")
            return

        handler(event)

    def _on_result(self, event: RecognitionResult) -> None:
        """Append finalized segments and restart the silence timer."""
        final = ""
        for segment in sorted(event.results, key=lambda s: s.index):
            if segment.index < event.result_index:
                continue
            if segment.is_final:
                final += segment.text

        if final:
            self._transcript += final
            logger.debug(f"Transcript: '{self._transcript[:50]}'")
            self._notify_change()

        self._reset_timer()

    def _on_end(self, event: RecognitionEnded) -> None:
        """Engine reported the end of the stream."""
        self._finish()

    def _on_silence(self, session_id: int) -> None:
        """Silence timer fired: end the utterance."""
        self._silence_timer = None
        if not self._listening or session_id != self._session_id:
            return

        logger.debug(f"No speech for {self.silence_timeout_s}s, ending utterance")
        try:
            self._engine.stop()
        except Exception as e:
            logger.warning(f"Recognition engine stop failed: {e}")
        self._finish()

    def _reset_timer(self) -> None:
        self._cancel_timer()
        loop = asyncio.get_running_loop()
        self._silence_timer = loop.call_later(
            self.silence_timeout_s, self._on_silence, self._session_id
        )

    def _cancel_timer(self) -> None:
        if self._silence_timer is not None:
            self._silence_timer.cancel()
            self._silence_timer = None

    def _finish(self, deliver: bool = True) -> None:
        """Single terminal transition: Listening -> Idle."""
        self._cancel_timer()
        if not self._listening:
            return

        self._listening = False
        logger.info(f"Stopped listening (session {self._session_id})")
        self._notify_change()

        text = self._transcript
        if not deliver or not text.strip():
            return

        for callback in self._on_utterance:
            try:
                callback(text)
            except Exception as e:
                logger.error(f"Utterance callback error: {e}")

    def _notify_change(self) -> None:
        state = self.state
        for callback in self._on_change:
            try:
                callback(state)
            except Exception as e:
                logger.error(f"Capture state callback error: {e}")
