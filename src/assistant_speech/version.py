"""Version information for assistant-speech.

This module provides version information read from the VERSION file
in the project root, with fallback for packaged distributions.
"""

from pathlib import Path

__version__ = "0.1.0"  # Fallback version
__license__ = "MIT"


def get_version() -> str:
    """Get the current version string.

    Reads from VERSION file in project root or falls back to __version__.

    Returns:
        Version string (e.g., "0.1.0").
    """
    version_paths = [
        Path(__file__).parent.parent.parent / "VERSION",  # src/assistant_speech -> root
        Path("VERSION"),
    ]

    for version_path in version_paths:
        if version_path.is_file():
            try:
                return version_path.read_text(encoding="utf-8").strip() or __version__
            except OSError:
                continue

    return __version__
