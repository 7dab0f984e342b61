"""Tests for the piper synthesizer module."""

import asyncio
import threading
from unittest.mock import MagicMock, patch

import numpy as np
import pytest

from askpanel.config import PlaybackConfig
from askpanel.errors import CapabilityUnavailable, EngineCancelFailed
from askpanel.speech.playback import PlaybackSession, SynthesisFinished, Utterance
from askpanel.speech.synthesizer import PiperSynthesizer, create_synthesizer


class PortAudioError(Exception):
    pass


@pytest.fixture
def mock_sd():
    """Mock sounddevice module."""
    sd = MagicMock()
    sd.PortAudioError = PortAudioError
    with patch("askpanel.speech.synthesizer.sd", sd):
        yield sd


@pytest.fixture
def mock_piper():
    """Mock piper voice loader."""
    voice = MagicMock()

    def synthesize_wav(text, wav_file, syn_config=None):
        wav_file.setnchannels(1)
        wav_file.setsampwidth(2)
        wav_file.setframerate(22050)
        wav_file.writeframes(b"\x01\x00" * 100)

    voice.synthesize_wav.side_effect = synthesize_wav
    with patch("askpanel.speech.synthesizer.PiperVoice") as piper_voice, \
            patch("askpanel.speech.synthesizer.SynthesisConfig") as syn_config:
        piper_voice.load.return_value = voice
        yield piper_voice, syn_config, voice


@pytest.fixture
def voice_file(temp_dir):
    """An on-disk voice model placeholder."""
    path = temp_dir / "en_US-test.onnx"
    path.write_bytes(b"onnx")
    return path


class TestCreateSynthesizer:
    """Tests for the synthesizer factory."""

    def test_disabled(self, mock_sd, mock_piper, voice_file):
        """Test synthesis disabled by config."""
        with pytest.raises(CapabilityUnavailable):
            create_synthesizer(PlaybackConfig(enabled=False, voice_model=str(voice_file)))

    def test_no_portaudio(self, mock_piper, voice_file):
        """Test missing PortAudio means no capability."""
        with patch("askpanel.speech.synthesizer.sd", None):
            with pytest.raises(CapabilityUnavailable):
                create_synthesizer(PlaybackConfig(voice_model=str(voice_file)))

    def test_no_piper(self, mock_sd, voice_file):
        """Test missing piper-tts means no capability."""
        with patch("askpanel.speech.synthesizer.PiperVoice", None):
            with pytest.raises(CapabilityUnavailable):
                create_synthesizer(PlaybackConfig(voice_model=str(voice_file)))

    def test_no_voice_model(self, mock_sd, mock_piper, temp_dir):
        """Test a missing voice model means no capability."""
        with pytest.raises(CapabilityUnavailable):
            create_synthesizer(PlaybackConfig(voice_model=None))
        with pytest.raises(CapabilityUnavailable):
            create_synthesizer(PlaybackConfig(voice_model=str(temp_dir / "missing.onnx")))

    def test_success(self, mock_sd, mock_piper, voice_file):
        """Test a synthesizer is built and loads its voice."""
        piper_voice, _, _ = mock_piper

        synthesizer = create_synthesizer(PlaybackConfig(voice_model=str(voice_file)))

        assert isinstance(synthesizer, PiperSynthesizer)
        piper_voice.load.assert_called_once_with(str(voice_file))


class TestPiperSynthesizer:
    """Tests for PiperSynthesizer class."""

    @pytest.fixture
    def synthesizer(self, mock_sd, mock_piper, voice_file):
        """Create synthesizer with an attached event list."""
        synthesizer = PiperSynthesizer(PlaybackConfig(voice_model=str(voice_file)))
        synthesizer.events = []
        synthesizer.attach(synthesizer.events.append)
        return synthesizer

    def test_load_voice_failure(self, mock_sd, mock_piper, voice_file):
        """Test voice loading failure propagates."""
        piper_voice, _, _ = mock_piper
        piper_voice.load.side_effect = Exception("bad model")

        with pytest.raises(Exception):
            PiperSynthesizer(PlaybackConfig(voice_model=str(voice_file)))

    def test_synthesize(self, synthesizer, mock_piper):
        """Test text is rendered to int16 samples."""
        _, syn_config, voice = mock_piper

        audio, sample_rate = synthesizer._synthesize("hello", 2.0)

        assert sample_rate == 22050
        assert audio.dtype == np.int16
        assert len(audio) == 100
        syn_config.assert_called_once_with(length_scale=0.5)
        assert voice.synthesize_wav.call_args[0][0] == "hello"

    def test_speak_plays_and_finishes(self, synthesizer, mock_sd):
        """Test speaking plays the audio and reports completion."""
        mock_stream = MagicMock()
        mock_sd.OutputStream.return_value = mock_stream

        async def scenario():
            synthesizer.speak(Utterance(id=4, text="hello", rate=1.0))
            for _ in range(50):
                await asyncio.sleep(0.02)
                if synthesizer.events:
                    break

        asyncio.run(scenario())

        assert synthesizer.events == [SynthesisFinished(utterance_id=4)]
        mock_stream.start.assert_called_once()
        mock_stream.write.assert_called_once()
        mock_stream.close.assert_called_once_with(ignore_errors=True)

    def test_playback_error_still_finishes(self, synthesizer, mock_sd):
        """Test a device error is logged and the utterance still ends."""
        mock_stream = MagicMock()
        mock_stream.write.side_effect = PortAudioError("underflow")
        mock_sd.OutputStream.return_value = mock_stream

        async def scenario():
            synthesizer.speak(Utterance(id=1, text="hello"))
            for _ in range(50):
                await asyncio.sleep(0.02)
                if synthesizer.events:
                    break

        asyncio.run(scenario())

        assert synthesizer.events == [SynthesisFinished(utterance_id=1)]

    def test_cancel(self, synthesizer):
        """Test cancel aborts the active stream."""
        stream = MagicMock()
        synthesizer._stream = stream

        synthesizer.cancel()

        stream.abort.assert_called_once()

    def test_cancel_without_stream(self, synthesizer):
        """Test cancel with nothing playing doesn't raise."""
        synthesizer.cancel()

    def test_cancel_failure(self, synthesizer):
        """Test an abort error is reported as EngineCancelFailed."""
        stream = MagicMock()
        stream.abort.side_effect = PortAudioError("device gone")
        synthesizer._stream = stream

        with pytest.raises(EngineCancelFailed):
            synthesizer.cancel()

    def test_cancel_before_playback_starts(self, synthesizer, mock_sd):
        """Test cancelling during synthesis skips playback."""
        gate = threading.Event()

        def slow_synthesize(text, rate):
            gate.wait(timeout=1.0)
            return np.zeros(10, dtype=np.int16), 22050

        async def scenario():
            with patch.object(synthesizer, "_synthesize", side_effect=slow_synthesize):
                synthesizer.speak(Utterance(id=2, text="hello"))
                synthesizer.cancel()
                gate.set()
                for _ in range(50):
                    await asyncio.sleep(0.02)
                    if synthesizer.events:
                        break

        asyncio.run(scenario())

        assert synthesizer.events == [SynthesisFinished(utterance_id=2)]
        mock_sd.OutputStream.return_value.write.assert_not_called()

    def test_cancel_all(self, synthesizer, mock_sd):
        """Test the global fallback stops all sounddevice output."""
        synthesizer.cancel_all()
        mock_sd.stop.assert_called_once()

    def test_cancel_all_shuts_own_stream(self, synthesizer, mock_sd):
        """Test the fallback forces the engine's output stream shut."""
        stream = MagicMock()
        synthesizer._stream = stream
        synthesizer._cancelled = threading.Event()

        synthesizer.cancel_all()

        stream.abort.assert_called_once_with(ignore_errors=True)
        stream.close.assert_called_once_with(ignore_errors=True)
        assert synthesizer._cancelled.is_set()
        assert synthesizer._stream is None

    def test_stop_fallback_silences_playback(self, synthesizer, mock_sd, playback_config):
        """Test a failing cancel still ends audible playback through the fallback."""
        stream = MagicMock()
        stream.abort.side_effect = [PortAudioError("device gone"), None]
        synthesizer._stream = stream
        synthesizer._cancelled = threading.Event()
        session = PlaybackSession(playback_config, synthesizer)
        session._current = Utterance(id=1, text="hello")

        session.stop()

        assert not session.speaking
        assert stream.abort.call_count == 2
        stream.close.assert_called_once_with(ignore_errors=True)
