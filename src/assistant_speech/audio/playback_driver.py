"""Audio output for synthesized clips.

Clips are streamed to the output device through a sounddevice
OutputStream. Samples are pulled by the device's own callback thread, so
play() returns at once and the caller keeps control. Completion is
reported by the stream's finished callback, not by timing the clip.

Only one clip plays at a time. play() stops whatever is playing before it
opens the device for the new clip, and stop() aborts the stream and
closes it so the next play() can reopen the device.

Typical usage:
    driver = AudioPlaybackDriver()
    handle = driver.play(clip)
    ...
    driver.stop()          # cancels, handle.cancelled is True
    handle.wait(1.0)
"""

import threading
from collections.abc import Callable
from enum import Enum, auto
from typing import Any

import numpy as np

from assistant_speech.audio.clip import AudioClip
from assistant_speech.core.logging_system import get_logger
from assistant_speech.settings import SpeechSettings

logger = get_logger(__name__)

# fill(outdata, frames) -> True while more samples remain
FillFunction = Callable[[np.ndarray, int], bool]
StreamFactory = Callable[..., Any]


class PlaybackError(Exception):
    """Raised when the output device cannot be opened or started."""


class PlaybackState(Enum):
    """Lifecycle of one play() call."""

    PLAYING = auto()
    COMPLETED = auto()
    CANCELLED = auto()
    FAILED = auto()


class PlaybackHandle:
    """Completion signal for one play() call."""

    def __init__(self, clip: AudioClip) -> None:
        self.clip = clip
        self._lock = threading.Lock()
        self._done_event = threading.Event()
        self._state = PlaybackState.PLAYING
        self._callbacks: list[Callable[["PlaybackHandle"], None]] = []

    @property
    def state(self) -> PlaybackState:
        """Current playback state."""
        return self._state

    @property
    def done(self) -> bool:
        """Whether playback has ended (any outcome)."""
        return self._done_event.is_set()

    @property
    def completed(self) -> bool:
        """Whether the whole clip was played."""
        return self._state is PlaybackState.COMPLETED

    @property
    def cancelled(self) -> bool:
        """Whether playback was stopped early."""
        return self._state is PlaybackState.CANCELLED

    def wait(self, timeout: float | None = None) -> bool:
        """Block until playback ends.

        Args:
            timeout: Maximum seconds to wait; None waits forever.

        Returns:
            True if playback ended within the timeout.
        """
        return self._done_event.wait(timeout)

    def add_done_callback(self, callback: Callable[["PlaybackHandle"], None]) -> None:
        """Call callback(handle) when playback ends (at once if it already has)."""
        with self._lock:
            if not self._done_event.is_set():
                self._callbacks.append(callback)
                return
        self._invoke(callback)

    def _resolve(self, state: PlaybackState) -> bool:
        with self._lock:
            if self._done_event.is_set():
                return False
            self._state = state
            self._done_event.set()
            callbacks = list(self._callbacks)
            self._callbacks.clear()
        for callback in callbacks:
            self._invoke(callback)
        return True

    def _invoke(self, callback: Callable[["PlaybackHandle"], None]) -> None:
        try:
            callback(self)
        except Exception as e:
            logger.error("Error in playback callback: %s", e)


class ClipCursor:
    """Feeds a clip to the device block by block."""

    def __init__(self, clip: AudioClip) -> None:
        self._samples = clip.samples
        self._position = 0

    @property
    def remaining(self) -> int:
        """Samples not yet handed to the device."""
        return self._samples.shape[0] - self._position

    def fill(self, outdata: np.ndarray, frames: int) -> bool:
        """Copy the next block into outdata, zero-padding past the end.

        Args:
            outdata: Device buffer shaped (frames, 1).
            frames: Number of frames requested.

        Returns:
            True if samples remain after this block.
        """
        chunk = self._samples[self._position : self._position + frames]
        count = chunk.shape[0]
        outdata[:count, 0] = chunk
        if count < frames:
            outdata[count:] = 0
        self._position += count
        return self.remaining > 0


def open_output_stream(
    sample_rate: int,
    channels: int,
    blocksize: int,
    device: str | int | None,
    fill: FillFunction,
    on_finished: Callable[[], None],
) -> Any:
    """Open a sounddevice output stream that pulls samples from fill().

    Returns:
        Unstarted sounddevice.OutputStream.
    """
    import sounddevice as sd

    def callback(outdata: np.ndarray, frames: int, time_info: Any, status: Any) -> None:
        if status:
            logger.debug("Output stream status: %s", status)
        if not fill(outdata, frames):
            raise sd.CallbackStop

    return sd.OutputStream(
        samplerate=sample_rate,
        channels=channels,
        dtype="float32",
        blocksize=blocksize,
        device=device,
        callback=callback,
        finished_callback=on_finished,
    )


class AudioPlaybackDriver:
    """Single-owner access to the audio output device."""

    def __init__(
        self,
        stream_factory: StreamFactory | None = None,
        device: str | int | None = None,
        blocksize: int = 1024,
    ) -> None:
        """Initialize the driver (device is opened per clip).

        Args:
            stream_factory: Callable with open_output_stream's signature.
            device: Output device name or index; None for the default device.
            blocksize: Frames per device callback.
        """
        self._stream_factory = stream_factory or open_output_stream
        self._device = device
        self._blocksize = blocksize
        self._lock = threading.Lock()
        self._stream: Any = None
        self._current: PlaybackHandle | None = None

    @classmethod
    def from_settings(cls, settings: SpeechSettings) -> "AudioPlaybackDriver":
        """Create a driver using device options from settings."""
        return cls(device=settings.output_device, blocksize=settings.playback_blocksize)

    @property
    def is_playing(self) -> bool:
        """Whether a clip is currently playing."""
        current = self._current
        return current is not None and not current.done

    def play(self, clip: AudioClip) -> PlaybackHandle:
        """Start playing a clip, stopping any clip already playing.

        Args:
            clip: Clip to play.

        Returns:
            Handle signalled when playback completes or is cancelled.

        Raises:
            PlaybackError: If the device cannot be opened or started.
        """
        handle = PlaybackHandle(clip)
        cursor = ClipCursor(clip)

        with self._lock:
            self._stop_locked()

            stream: Any = None

            def on_finished() -> None:
                self._on_stream_finished(handle, stream)

            try:
                stream = self._stream_factory(
                    sample_rate=clip.sample_rate,
                    channels=clip.channels,
                    blocksize=self._blocksize,
                    device=self._device,
                    fill=cursor.fill,
                    on_finished=on_finished,
                )
                self._stream = stream
                self._current = handle
                stream.start()
            except Exception as e:
                self._stream = None
                self._current = None
                if stream is not None:
                    self._close_quietly(stream)
                handle._resolve(PlaybackState.FAILED)
                raise PlaybackError(f"Cannot start audio output: {e}") from e

        logger.debug("Playing %.2fs clip at %d Hz", clip.duration, clip.sample_rate)
        return handle

    def stop(self) -> bool:
        """Stop the current clip and release the device.

        Returns:
            True if a clip was playing.
        """
        with self._lock:
            return self._stop_locked()

    def close(self) -> None:
        """Stop playback; the driver can still be used afterwards."""
        self.stop()

    def _stop_locked(self) -> bool:
        stream, handle = self._stream, self._current
        self._stream = None
        self._current = None
        if stream is None:
            return False

        was_playing = handle is not None and handle._resolve(PlaybackState.CANCELLED)
        try:
            stream.abort()
        except Exception as e:
            logger.warning("Error aborting output stream: %s", e)
        self._close_quietly(stream)
        if was_playing:
            logger.debug("Playback stopped")
        return was_playing

    def _on_stream_finished(self, handle: PlaybackHandle, stream: Any) -> None:
        # Runs on the audio thread; must not take the driver lock.
        if handle._resolve(PlaybackState.COMPLETED):
            threading.Thread(
                target=self._release_finished,
                args=(handle, stream),
                name="AudioRelease",
                daemon=True,
            ).start()

    def _release_finished(self, handle: PlaybackHandle, stream: Any) -> None:
        with self._lock:
            if self._current is not handle:
                # Already released by stop() or a newer play()
                return
            self._stream = None
            self._current = None
            self._close_quietly(stream)

    @staticmethod
    def _close_quietly(stream: Any) -> None:
        try:
            stream.close()
        except Exception as e:
            logger.warning("Error closing output stream: %s", e)
