"""Spoken output for a voice assistant client.

Chooses between an embedded neural voice and the host's speech engine,
adapts locale and rate to the text, manages embedded model installs and
drives audio playback.
"""

from assistant_speech.version import __version__

__all__ = ["__version__"]
