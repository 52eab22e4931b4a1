"""In-memory audio produced by the synthesis engine."""

from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True)
class AudioClip:
    """Mono float32 waveform.

    A clip is produced once by the synthesis engine and handed to exactly
    one playback call.

    Attributes:
        samples: 1-D float32 samples in the range -1.0 to 1.0.
        sample_rate: Sample rate in Hz.
        channels: Number of channels (always 1).
    """

    samples: np.ndarray
    sample_rate: int
    channels: int = 1

    def __post_init__(self) -> None:
        if self.sample_rate <= 0:
            raise ValueError(f"sample_rate must be positive, got {self.sample_rate}")
        if self.channels != 1:
            raise ValueError(f"only mono clips are supported, got {self.channels} channels")

        samples = np.asarray(self.samples, dtype=np.float32)
        if samples.ndim == 2:
            # Down-mix (frames, channels) output to mono
            samples = samples.mean(axis=1, dtype=np.float32)
        if samples.ndim != 1:
            raise ValueError(f"samples must be 1-D, got shape {samples.shape}")
        object.__setattr__(self, "samples", np.ascontiguousarray(samples))

    @property
    def num_samples(self) -> int:
        """Get total number of samples."""
        return int(self.samples.shape[0])

    @property
    def duration(self) -> float:
        """Duration in seconds."""
        return self.num_samples / self.sample_rate

    @property
    def is_empty(self) -> bool:
        """Whether the clip holds no samples."""
        return self.num_samples == 0
