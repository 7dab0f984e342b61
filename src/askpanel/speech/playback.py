"""Playback session: single-slot, interruptible speech synthesis."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Mapping, Optional

from ..config import PlaybackConfig

logger = logging.getLogger(__name__)


@dataclass
class Utterance:
    """Text handed to the synthesis engine."""
    id: int
    text: str
    rate: float = 1.0


@dataclass
class SynthesisFinished:
    """Engine event: the utterance finished playing on its own."""
    utterance_id: int


@dataclass
class PlaybackState:
    """Observable playback state."""
    supported: bool
    speaking: bool
    provider: Optional[str] = None


class SynthesisEngine(ABC):
    """Text-to-speech capability consumed by a playback session."""

    def attach(self, emit: Callable[[SynthesisFinished], None]) -> None:
        """Register the channel that receives this engine's events."""
        self._emit = emit

    @abstractmethod
    def speak(self, utterance: Utterance) -> None:
        """Start speaking; report SynthesisFinished when done."""
        raise NotImplementedError

    @abstractmethod
    def cancel(self) -> None:
        """Cancel the current utterance."""
        raise NotImplementedError

    def cancel_all(self) -> None:
        """Global fallback that silences all output."""
        raise NotImplementedError


def select_provider(results: Mapping[str, str], preferred: Optional[str]) -> Optional[str]:
    """Pick the provider to read back.

    The preferred provider wins when it answered; otherwise the first
    provider in the response's own order. None when nobody answered.
    """
    if preferred is not None and preferred in results:
        return preferred
    for provider in results:
        return provider
    return None


class PlaybackSession:
    """Speaks one utterance at a time and can always be stopped."""

    def __init__(self, config: PlaybackConfig, engine: Optional[SynthesisEngine] = None):
        self.config = config
        self.rate = config.rate
        self.preferred_provider = config.preferred_provider

        self._engine = engine
        self._current: Optional[Utterance] = None
        self._provider: Optional[str] = None
        self._next_id = 0

        self._on_change: list[Callable[[PlaybackState], None]] = []

        self._transitions = {
            SynthesisFinished: self._on_finished,
        }

        if engine is None:
            logger.info("Speech synthesis unavailable, playback disabled")
        else:
            engine.attach(self.dispatch)

    @property
    def supported(self) -> bool:
        return self._engine is not None

    @property
    def speaking(self) -> bool:
        return self._current is not None

    @property
    def state(self) -> PlaybackState:
        """Snapshot of the observable playback state."""
        return PlaybackState(
            supported=self.supported,
            speaking=self.speaking,
            provider=self._provider,
        )

    def on_change(self, callback: Callable[[PlaybackState], None]) -> None:
        """Register callback for state changes."""
        self._on_change.append(callback)

    def remove_on_change(self, callback: Callable[[PlaybackState], None]) -> None:
        """Unregister a state change callback."""
        if callback in self._on_change:
            self._on_change.remove(callback)

    def speak(self, text: str, provider: Optional[str] = None) -> bool:
        """Start speaking ``text``. Returns True if playback started."""
        if self._engine is None:
            logger.debug("Speak ignored: synthesis unsupported")
            return False

        if self._current is not None:
            logger.info("Already speaking, stop first")
            return False

        if not text or not text.strip():
            logger.debug("Speak ignored: nothing to say")
            return False

        self._next_id += 1
        utterance = Utterance(id=self._next_id, text=text, rate=self.rate)

        try:
            self._engine.speak(utterance)
        except Exception as e:
            logger.error(f"Synthesis engine failed to speak: {e}")
            return False

        self._current = utterance
        self._provider = provider
        logger.info(f"Speaking utterance {utterance.id} ({len(text)} chars)")
        self._notify_change()
        return True

    def speak_answer(self, answers, preferred: Optional[str] = None) -> Optional[str]:
        """Read back one provider's answer. Returns the provider chosen."""
        if answers is None:
            return None

        if preferred is None:
            preferred = self.preferred_provider

        provider = select_provider(answers.results, preferred)
        if provider is None:
            logger.info("No provider answers to speak")
            return None

        if not self.speak(answers.results[provider], provider=provider):
            return None
        return provider

    def stop(self) -> None:
        """Stop playback. Always leaves the session Idle."""
        if self._engine is None:
            logger.debug("Stop ignored: synthesis unsupported")
            return

        try:
            self._engine.cancel()
        except Exception as e:
            logger.warning(f"Synthesis cancel failed: {e}, trying cancel-all")
            try:
                self._engine.cancel_all()
            except Exception as e:
                logger.error(f"Synthesis cancel-all failed: {e}")

        self._to_idle()

    def dispatch(self, event: SynthesisFinished) -> None:
        """Route an engine event through the transition table."""
        handler = self._transitions.get(type(event))
        if handler is None:
            logger.warning(f"Unknown synthesis event: {event!r}")
            return
        handler(event)

    def _on_finished(self, event: SynthesisFinished) -> None:
        if self._current is None or event.utterance_id != self._current.id:
            logger.debug(f"Dropping stale synthesis event: {event!r}")
            return
        logger.info(f"Finished utterance {event.utterance_id}")
        self._to_idle()

    def _to_idle(self) -> None:
        was_speaking = self._current is not None
        self._current = None
        self._provider = None
        if was_speaking:
            self._notify_change()

    def _notify_change(self) -> None:
        state = self.state
        for callback in self._on_change:
            try:
                callback(state)
            except Exception as e:
                logger.error(f"Playback state callback error: {e}")
