"""Background services (model downloads)."""

from assistant_speech.services.model_downloader import (
    DownloadFailed,
    DownloadHandle,
    ModelDownloader,
)

__all__ = ["DownloadFailed", "DownloadHandle", "ModelDownloader"]
