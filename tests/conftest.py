"""Pytest configuration and shared fixtures."""

import asyncio
import tempfile
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from askpanel.answers.models import AnswerSet, Source
from askpanel.config import BackendConfig, PlaybackConfig, SpeechConfig
from askpanel.errors import EngineCancelFailed
from askpanel.speech.capture import RecognitionEnded, RecognitionEngine, RecognitionResult, RecognizedSegment
from askpanel.speech.playback import SynthesisEngine, SynthesisFinished


# ==================== Path Fixtures ====================

@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def temp_config_file(temp_dir):
    """Create a temporary config file."""
    config_path = temp_dir / "settings.yaml"
    config_content = """
speech:
  device: "default"
  language: "en"
  silence_timeout_s: 2.0
  whisper_model: "tiny"

playback:
  rate: 1.25
  preferred_provider: "gemini"

backend:
  url: "http://answers.local:9000"
  timeout_s: 10

web:
  port: 9090

logging:
  level: "DEBUG"
  file: null
"""
    config_path.write_text(config_content)
    return config_path


# ==================== Config Fixtures ====================

@pytest.fixture
def speech_config():
    """Speech config with a short silence timeout for fast tests."""
    return SpeechConfig(
        silence_timeout_s=0.05,
        whisper_model="tiny",
        whisper_device="cpu",
    )


@pytest.fixture
def playback_config():
    """Playback config."""
    return PlaybackConfig(rate=1.0, preferred_provider="openai")


@pytest.fixture
def backend_config():
    """Backend config."""
    return BackendConfig(url="http://answers.test", timeout_s=5.0)


# ==================== Fake Engines ====================

class FakeRecognizer(RecognitionEngine):
    """Recognition engine driven by the test."""

    def __init__(self):
        self.started: list[int] = []
        self.stop_calls = 0
        self.fail_on_start = False
        self.fail_on_stop = False

    @property
    def session_id(self) -> int:
        return self.started[-1] if self.started else 0

    def start(self, session_id: int) -> None:
        if self.fail_on_start:
            raise RuntimeError("microphone busy")
        self.started.append(session_id)

    def stop(self) -> None:
        self.stop_calls += 1
        if self.fail_on_stop:
            raise EngineCancelFailed("stop failed")

    def result(self, *segments, result_index: int = 0, session_id=None) -> None:
        """Emit a result event; segments are (index, is_final, text)."""
        self._emit(RecognitionResult(
            session_id=self.session_id if session_id is None else session_id,
            result_index=result_index,
            results=[RecognizedSegment(i, final, text) for i, final, text in segments],
        ))

    def end(self, session_id=None) -> None:
        """Emit the end event."""
        self._emit(RecognitionEnded(session_id=self.session_id if session_id is None else session_id))


class FakeSynthesizer(SynthesisEngine):
    """Synthesis engine that records what it was asked to do."""

    def __init__(self, finish_immediately: bool = False):
        self.spoken = []
        self.cancel_calls = 0
        self.cancel_all_calls = 0
        self.fail_on_speak = False
        self.fail_on_cancel = False
        self.fail_on_cancel_all = False
        self.finish_immediately = finish_immediately

    def speak(self, utterance) -> None:
        if self.fail_on_speak:
            raise RuntimeError("no audio device")
        self.spoken.append(utterance)
        if self.finish_immediately:
            asyncio.get_running_loop().call_soon(self._emit, SynthesisFinished(utterance.id))

    def cancel(self) -> None:
        self.cancel_calls += 1
        if self.fail_on_cancel:
            raise EngineCancelFailed("cancel failed")

    def cancel_all(self) -> None:
        self.cancel_all_calls += 1
        if self.fail_on_cancel_all:
            raise EngineCancelFailed("cancel-all failed")

    def finish(self, utterance_id=None) -> None:
        """Report that the last utterance finished."""
        if utterance_id is None:
            utterance_id = self.spoken[-1].id
        self._emit(SynthesisFinished(utterance_id))


@pytest.fixture
def fake_recognizer():
    """Create a fake recognition engine."""
    return FakeRecognizer()


@pytest.fixture
def fake_synthesizer():
    """Create a fake synthesis engine."""
    return FakeSynthesizer()


# ==================== Answer Fixtures ====================

@pytest.fixture
def answer_payload():
    """A two-provider backend response."""
    return {
        "results": {
            "mistral": "- Paris is the capital- It is on the Seine",
            "gemini": "- The capital is Paris",
        },
        "conclusion": "- Paris [Atlas](https://atlas.example/paris) (2024-01-02)",
        "sources": [
            {"title": "Atlas", "url": "https://atlas.example/paris", "date": "2024-01-02"},
            {"title": "Gazette", "url": "https://gazette.example/seine", "date": "2023-06-30"},
        ],
    }


@pytest.fixture
def sample_answers(answer_payload):
    """The payload parsed into an AnswerSet."""
    return AnswerSet.model_validate(answer_payload)


@pytest.fixture
def sample_sources():
    """Two sources."""
    return [
        Source(title="Atlas", url="https://atlas.example", date="2024-01-02"),
        Source(title="Gazette", url="https://gazette.example", date="2023-06-30"),
    ]


@pytest.fixture
def mock_answer_client(sample_answers):
    """Answer client whose ask() returns the sample answers."""
    client = MagicMock()
    client.ask = AsyncMock(return_value=sample_answers)
    client.aclose = AsyncMock()
    return client
