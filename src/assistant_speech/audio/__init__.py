"""Speech synthesis, playback and the speech output facade."""

from assistant_speech.audio.clip import AudioClip
from assistant_speech.audio.playback_driver import (
    AudioPlaybackDriver,
    PlaybackError,
    PlaybackHandle,
    PlaybackState,
)
from assistant_speech.audio.synthesis_engine import (
    EngineNotInitialized,
    SynthesisEngine,
    SynthesisError,
    SynthesisFailed,
)
from assistant_speech.audio.system_backend import (
    Pyttsx3Backend,
    SystemSpeechBackend,
    SystemSpeechError,
    VoiceInfo,
    select_voice,
)

__all__ = [
    "AudioClip",
    "AudioPlaybackDriver",
    "EngineNotInitialized",
    "PlaybackError",
    "PlaybackHandle",
    "PlaybackState",
    "Pyttsx3Backend",
    "SynthesisEngine",
    "SynthesisError",
    "SynthesisFailed",
    "SystemSpeechBackend",
    "SystemSpeechError",
    "VoiceInfo",
    "select_voice",
]
