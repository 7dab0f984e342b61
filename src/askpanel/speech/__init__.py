"""Speech capture and playback sessions and their engines."""

from .capture import CaptureSession, CaptureState, RecognitionEngine
from .playback import PlaybackSession, PlaybackState, SynthesisEngine, select_provider

__all__ = [
    "CaptureSession",
    "CaptureState",
    "RecognitionEngine",
    "PlaybackSession",
    "PlaybackState",
    "SynthesisEngine",
    "select_provider",
]
