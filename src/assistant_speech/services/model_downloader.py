"""Download service for embedded voice models.

This service fetches every file of a model descriptor with:
- Coarse progress (files completed / files total)
- Cancellation support
- All-or-nothing install (files are staged, then moved into place together)
- One transfer per model at a time; repeated requests join the running one

Typical usage:
    downloader = ModelDownloader(store, executor)

    handle = downloader.download(
        "ja",
        on_progress=lambda fraction: print(f"{fraction:.0%}"),
        on_complete=lambda ok: print("installed" if ok else "failed"),
    )

    # Cancel if needed
    handle.cancel()
"""

import hashlib
import threading
from collections.abc import Callable
from concurrent.futures import Executor, ThreadPoolExecutor
from pathlib import Path

import requests

from assistant_speech.core.locales import Locale
from assistant_speech.core.logging_system import get_logger
from assistant_speech.models.catalog import ModelDescriptor
from assistant_speech.models.store import ModelInstallState, ModelStore, ModelStoreError
from assistant_speech.settings import SpeechSettings

logger = get_logger(__name__)

ProgressCallback = Callable[[float], None]
CompleteCallback = Callable[[bool], None]


class DownloadFailed(Exception):
    """Raised when one model file cannot be fetched.

    Attributes:
        file_name: File that failed.
        cause: Underlying error or description.
    """

    def __init__(self, file_name: str, cause: object) -> None:
        super().__init__(f"{file_name}: {cause}")
        self.file_name = file_name
        self.cause = cause


class DownloadCancelled(Exception):
    """Raised inside the worker when cancellation is observed."""


class DownloadHandle:
    """Handle to an in-flight model download.

    Returned by ModelDownloader.download(). Every caller that requests the
    same model while it is downloading gets the same handle.
    """

    def __init__(self, locale: Locale, descriptor: ModelDescriptor) -> None:
        self.locale = locale
        self.descriptor = descriptor
        self._lock = threading.Lock()
        self._cancel_event = threading.Event()
        self._done_event = threading.Event()
        self._progress = 0.0
        self._succeeded: bool | None = None
        self._cancelled = False
        self._progress_callbacks: list[ProgressCallback] = []
        self._complete_callbacks: list[CompleteCallback] = []

    @property
    def done(self) -> bool:
        """Whether the download has finished (any outcome)."""
        return self._done_event.is_set()

    @property
    def succeeded(self) -> bool | None:
        """True if installed, False if failed or cancelled, None while running."""
        return self._succeeded

    @property
    def cancelled(self) -> bool:
        """Whether the download ended because it was cancelled."""
        return self._cancelled

    @property
    def cancel_requested(self) -> bool:
        """Whether cancel() has been called."""
        return self._cancel_event.is_set()

    @property
    def progress(self) -> float:
        """Fraction of files completed."""
        return self._progress

    def cancel(self) -> bool:
        """Request cancellation.

        Returns:
            True if the download was still running.
        """
        if self._succeeded is not None:
            return False
        self._cancel_event.set()
        logger.info("Cancellation requested for model %s", self.descriptor.storage_folder_name)
        return True

    def wait(self, timeout: float | None = None) -> bool | None:
        """Block until the download finishes.

        Args:
            timeout: Maximum seconds to wait; None waits forever.

        Returns:
            The outcome (see succeeded), or None on timeout.
        """
        self._done_event.wait(timeout)
        return self._succeeded

    def add_callbacks(
        self,
        on_progress: ProgressCallback | None = None,
        on_complete: CompleteCallback | None = None,
    ) -> None:
        """Register callbacks; on_complete fires at once if already finished."""
        with self._lock:
            if on_progress is not None:
                self._progress_callbacks.append(on_progress)
            finished = self._succeeded is not None
            if on_complete is not None and not finished:
                self._complete_callbacks.append(on_complete)

        if on_complete is not None and finished:
            self._invoke(on_complete, bool(self._succeeded))

    def _report_progress(self, fraction: float) -> None:
        with self._lock:
            self._progress = fraction
            callbacks = list(self._progress_callbacks)
        for callback in callbacks:
            self._invoke(callback, fraction)

    def _complete(self, succeeded: bool, cancelled: bool = False) -> None:
        with self._lock:
            self._succeeded = succeeded
            self._cancelled = cancelled
            callbacks = list(self._complete_callbacks)
            self._complete_callbacks.clear()
        for callback in callbacks:
            self._invoke(callback, succeeded)
        self._done_event.set()

    @staticmethod
    def _invoke(callback: Callable[[object], None], value: object) -> None:
        try:
            callback(value)
        except Exception as e:
            logger.error("Error in download callback: %s", e)


class ModelDownloader:
    """Fetches model files into the store in the background."""

    def __init__(
        self,
        store: ModelStore,
        executor: Executor | None = None,
        session: requests.Session | None = None,
        timeout: float = 30.0,
        chunk_size: int = 65536,
    ) -> None:
        """Initialize the downloader.

        Args:
            store: Model store to install into.
            executor: Shared background pool. A private pool is created if None.
            session: HTTP session used for all requests.
            timeout: HTTP connect/read timeout in seconds.
            chunk_size: Bytes per read while streaming a file.
        """
        self._store = store
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=2, thread_name_prefix="ModelDownload"
        )
        self._session = session or requests.Session()
        self._timeout = timeout
        self._chunk_size = chunk_size
        self._lock = threading.Lock()
        self._active: dict[str, DownloadHandle] = {}

    @classmethod
    def from_settings(
        cls, store: ModelStore, settings: SpeechSettings, executor: Executor | None = None
    ) -> "ModelDownloader":
        """Create a downloader using timeout and chunk size from settings."""
        return cls(
            store,
            executor=executor,
            timeout=settings.download_timeout,
            chunk_size=settings.download_chunk_size,
        )

    def active_download(self, locale: Locale | str) -> DownloadHandle | None:
        """Get the running download for a locale's model, if any."""
        key = self._store.descriptor_for(locale).storage_folder_name
        with self._lock:
            return self._active.get(key)

    def download(
        self,
        locale: Locale | str,
        on_progress: ProgressCallback | None = None,
        on_complete: CompleteCallback | None = None,
    ) -> DownloadHandle:
        """Start downloading the model for a locale, or join a running download.

        Args:
            locale: Locale whose model should be installed.
            on_progress: Called with the completed fraction after each file.
            on_complete: Called once with True on install, False otherwise.

        Returns:
            Handle for the (possibly shared) download.

        Raises:
            RuntimeError: If the worker pool has been shut down. The prior
                install state is kept and on_complete is called with False.
        """
        locale = Locale.parse(locale)
        descriptor = self._store.descriptor_for(locale)
        key = descriptor.storage_folder_name

        with self._lock:
            handle = self._active.get(key)
            if handle is not None:
                logger.info("Download of %s already running, joining it", key)
                handle.add_callbacks(on_progress, on_complete)
                return handle

            handle = DownloadHandle(locale, descriptor)
            handle.add_callbacks(on_progress, on_complete)
            prior_state = self._store.state_of(locale)
            self._store.mark_downloading(locale, 0.0)
            self._active[key] = handle

        logger.info("Started download of model %s for %s", key, locale)
        try:
            self._executor.submit(self._download_worker, handle, prior_state)
        except RuntimeError:
            logger.error("Cannot start download of model %s: worker pool is shut down", key)
            with self._lock:
                if self._active.get(key) is handle:
                    del self._active[key]
            self._store.restore_state(locale, prior_state)
            handle._complete(False)
            raise
        return handle

    def cancel(self, locale: Locale | str) -> bool:
        """Cancel the running download for a locale's model.

        Returns:
            True if a running download was asked to stop.
        """
        handle = self.active_download(locale)
        return handle.cancel() if handle is not None else False

    def cancel_all(self) -> None:
        """Cancel every running download."""
        with self._lock:
            handles = list(self._active.values())
        for handle in handles:
            handle.cancel()

    def shutdown(self, wait: bool = True) -> None:
        """Cancel downloads and release the private pool, if any."""
        self.cancel_all()
        if self._owns_executor:
            self._executor.shutdown(wait=wait)

    def _download_worker(self, handle: DownloadHandle, prior_state: ModelInstallState) -> None:
        """Worker for fetching and installing one model."""
        locale = handle.locale
        descriptor = handle.descriptor
        staging: Path | None = None
        succeeded = False
        cancelled = False

        try:
            with self._store.lock_for(locale):
                if handle.cancel_requested:
                    raise DownloadCancelled()

                staging = self._store.create_staging_dir(locale)
                files = sorted(descriptor.required_file_names)
                for index, file_name in enumerate(files, start=1):
                    self._fetch_file(handle, descriptor, file_name, staging / file_name)
                    fraction = index / len(files)
                    self._store.mark_downloading(locale, fraction)
                    handle._report_progress(fraction)

                if handle.cancel_requested:
                    raise DownloadCancelled()

                self._store.install_from(locale, staging)
                staging = None
                succeeded = True
                logger.info("Download completed: %s", descriptor.storage_folder_name)

        except DownloadCancelled:
            cancelled = True
            self._store.restore_state(locale, prior_state)
            logger.info("Download cancelled: %s", descriptor.storage_folder_name)

        except DownloadFailed as e:
            logger.error("Download failed for %s: %s", descriptor.storage_folder_name, e)
            self._store.mark_failed(locale, str(e))

        except (ModelStoreError, OSError) as e:
            logger.error("Install failed for %s: %s", descriptor.storage_folder_name, e)
            self._store.mark_failed(locale, str(e))

        except Exception as e:
            logger.exception("Unexpected download error for %s", descriptor.storage_folder_name)
            self._store.mark_failed(locale, str(e))

        finally:
            if staging is not None:
                self._store.discard_staging(staging)
            with self._lock:
                if self._active.get(descriptor.storage_folder_name) is handle:
                    del self._active[descriptor.storage_folder_name]

        handle._complete(succeeded, cancelled=cancelled)

    def _fetch_file(
        self,
        handle: DownloadHandle,
        descriptor: ModelDescriptor,
        file_name: str,
        dest_path: Path,
    ) -> None:
        """Stream one file to dest_path via a .partial file.

        Raises:
            DownloadCancelled: If cancellation is requested mid-transfer.
            DownloadFailed: On HTTP, disk or checksum errors.
        """
        url = descriptor.source_urls[file_name]
        expected = descriptor.checksums.get(file_name)
        temp_path = dest_path.with_name(dest_path.name + ".partial")
        digest = hashlib.sha256()
        written = 0

        logger.debug("Fetching %s from %s", file_name, url)
        try:
            response = self._session.get(url, stream=True, timeout=self._timeout)
            try:
                response.raise_for_status()
                with open(temp_path, "wb") as f:
                    for chunk in response.iter_content(chunk_size=self._chunk_size):
                        if handle.cancel_requested:
                            raise DownloadCancelled()
                        if chunk:
                            f.write(chunk)
                            digest.update(chunk)
                            written += len(chunk)
            finally:
                response.close()
        except requests.RequestException as e:
            raise DownloadFailed(file_name, e) from e
        except OSError as e:
            raise DownloadFailed(file_name, e) from e

        if written == 0:
            raise DownloadFailed(file_name, "empty response body")
        if expected and digest.hexdigest() != expected.lower():
            raise DownloadFailed(file_name, "checksum mismatch")

        try:
            temp_path.replace(dest_path)
        except OSError as e:
            raise DownloadFailed(file_name, e) from e
