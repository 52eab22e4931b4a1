"""User settings for assistant-speech.

This package provides the configuration object passed to every speech
output component, persisted across sessions in a JSON settings file.
"""

from assistant_speech.settings.speech_settings import (
    PREFERRED_ENGINES,
    SpeechSettings,
    default_preferred_engine,
)

__all__ = [
    "PREFERRED_ENGINES",
    "SpeechSettings",
    "default_preferred_engine",
]
