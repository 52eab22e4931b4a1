"""Shared fixtures: a small model catalog and fakes for the audio device,
the neural model and the system speech engine."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from pathlib import Path
from types import SimpleNamespace
from typing import Any

import numpy as np
import pytest

from assistant_speech.audio.system_backend import SystemSpeechBackend, VoiceInfo, select_voice
from assistant_speech.core.locales import Locale
from assistant_speech.models.catalog import ModelCatalog, ModelDescriptor
from assistant_speech.models.store import ModelStore

MODEL_FILE = "model.onnx"
VOICES_FILE = "voices.bin"


def make_descriptor(
    language: str,
    folder: str,
    voice: str = "test_voice",
    checksums: dict[str, str] | None = None,
) -> ModelDescriptor:
    """Descriptor with two files served from models.test."""
    files = (MODEL_FILE, VOICES_FILE)
    return ModelDescriptor(
        locale=Locale(language),
        storage_folder_name=folder,
        required_file_names=frozenset(files),
        source_urls={name: f"https://models.test/{folder}/{name}" for name in files},
        voice=voice,
        lang_code=language,
        checksums=checksums or {},
    )


def wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> bool:
    """Poll predicate until it holds or timeout expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return predicate()


@pytest.fixture
def catalog() -> ModelCatalog:
    """Catalog with Japanese and English (default) entries."""
    return ModelCatalog(
        {
            "ja": make_descriptor("ja", "voice-ja", voice="jf_test"),
            "en": make_descriptor("en", "voice-en", voice="af_test"),
        },
        default_language="en",
    )


@pytest.fixture
def store(tmp_path: Path, catalog: ModelCatalog) -> ModelStore:
    """Model store rooted in a temporary directory."""
    return ModelStore(tmp_path / "models", catalog)


@pytest.fixture
def install_model(store: ModelStore) -> Callable[[str], Path]:
    """Write a complete model folder for a locale, bypassing the downloader."""

    def install(locale: str) -> Path:
        folder = store.model_dir(locale)
        folder.mkdir(parents=True, exist_ok=True)
        for name in store.descriptor_for(locale).required_file_names:
            (folder / name).write_bytes(b"model data")
        return folder

    return install


# --- Audio device -----------------------------------------------------------


class FakeOutputStream:
    """Output stream that pulls blocks on its own thread like a device would."""

    def __init__(
        self,
        device: FakeAudioDevice,
        index: int,
        fill: Callable[[np.ndarray, int], bool],
        on_finished: Callable[[], None],
        frames: int,
        block_delay: float,
        fail_start: bool,
    ) -> None:
        self.device = device
        self.index = index
        self.fill = fill
        self.on_finished = on_finished
        self.frames = frames
        self.block_delay = block_delay
        self.fail_start = fail_start
        self.blocks: list[np.ndarray] = []
        self._aborted = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        self.device.events.append(("start", self.index))
        if self.fail_start:
            raise RuntimeError("device busy")
        self._thread = threading.Thread(target=self._run, daemon=True)
        self._thread.start()

    def _run(self) -> None:
        while not self._aborted.is_set():
            block = np.full((self.frames, 1), np.nan, dtype=np.float32)
            more = self.fill(block, self.frames)
            self.blocks.append(block.copy())
            if not more:
                break
            if self.block_delay:
                time.sleep(self.block_delay)
        self.on_finished()

    def abort(self) -> None:
        self.device.events.append(("abort", self.index))
        self._aborted.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=2.0)

    def close(self) -> None:
        self.device.events.append(("close", self.index))

    @property
    def played(self) -> np.ndarray:
        if not self.blocks:
            return np.zeros(0, dtype=np.float32)
        return np.concatenate(self.blocks)[:, 0]


class FakeAudioDevice:
    """Stream factory recording open/start/abort/close order."""

    def __init__(self, frames: int = 256, block_delay: float = 0.0) -> None:
        self.frames = frames
        self.block_delay = block_delay
        self.fail_open = False
        self.fail_start = False
        self.events: list[tuple[str, int]] = []
        self.streams: list[FakeOutputStream] = []
        self.open_args: list[dict[str, Any]] = []

    def open(
        self,
        sample_rate: int,
        channels: int,
        blocksize: int,
        device: str | int | None,
        fill: Callable[[np.ndarray, int], bool],
        on_finished: Callable[[], None],
    ) -> FakeOutputStream:
        if self.fail_open:
            raise RuntimeError("no output device")
        index = len(self.streams) + 1
        self.events.append(("open", index))
        self.open_args.append(
            {"sample_rate": sample_rate, "channels": channels, "blocksize": blocksize, "device": device}
        )
        stream = FakeOutputStream(
            self, index, fill, on_finished, self.frames, self.block_delay, self.fail_start
        )
        self.streams.append(stream)
        return stream


@pytest.fixture
def audio_device() -> FakeAudioDevice:
    """Instant fake output device."""
    return FakeAudioDevice()


# --- Neural model -------------------------------------------------------------


class FakeVoiceModel:
    """Kokoro-compatible model producing a constant tone."""

    def __init__(self, model_path: Path, voices_path: Path, samples_per_char: int = 100) -> None:
        self.model_path = model_path
        self.voices_path = voices_path
        self.samples_per_char = samples_per_char
        self.error: Exception | None = None
        self.output: Any = None
        self.calls: list[dict[str, Any]] = []

    def create(self, text: str, voice: str, speed: float, lang: str) -> tuple[Any, int]:
        self.calls.append({"text": text, "voice": voice, "speed": speed, "lang": lang})
        if self.error is not None:
            raise self.error
        if self.output is not None:
            return self.output
        return np.full(len(text) * self.samples_per_char, 0.25, dtype=np.float32), 24000


class FakeModelFactory:
    """Records every model load."""

    def __init__(self, samples_per_char: int = 100) -> None:
        self.samples_per_char = samples_per_char
        self.error: Exception | None = None
        self.models: list[FakeVoiceModel] = []

    def __call__(self, model_path: Path, voices_path: Path) -> FakeVoiceModel:
        if self.error is not None:
            raise self.error
        model = FakeVoiceModel(model_path, voices_path, self.samples_per_char)
        self.models.append(model)
        return model

    @property
    def last(self) -> FakeVoiceModel:
        return self.models[-1]


@pytest.fixture
def model_factory() -> FakeModelFactory:
    """Fake Kokoro loader."""
    return FakeModelFactory()


# --- System speech -------------------------------------------------------------


class FakeSystemBackend(SystemSpeechBackend):
    """System engine that speaks instantly unless told to block on a text."""

    def __init__(self, voices: list[VoiceInfo] | None = None, engine: str | None = "espeak") -> None:
        self.voices = (
            voices
            if voices is not None
            else [
                VoiceInfo("en", "English", ("en-us",)),
                VoiceInfo("ja", "Japanese", ("ja",)),
            ]
        )
        self.engine = engine
        self.error: Exception | None = None
        self.blocking_texts: set[str] = set()
        self.spoken: list[str] = []
        self.locales: list[Locale] = []
        self.rates: list[float] = []
        self.voice_id: str | None = None
        self.stop_count = 0
        self.speaking = threading.Event()
        self._stop_requested = threading.Event()

    @property
    def engine_name(self) -> str | None:
        return self.engine

    def list_voices(self) -> list[VoiceInfo]:
        return list(self.voices)

    def set_locale(self, locale: Locale) -> bool:
        self.locales.append(locale)
        voice = select_voice(self.voices, locale)
        if voice is None:
            return False
        self.set_voice(voice.id)
        return True

    def set_voice(self, voice_id: str) -> None:
        self.voice_id = voice_id

    def set_rate(self, multiplier: float) -> None:
        self.rates.append(multiplier)

    def speak(self, text: str, cancelled: Callable[[], bool] | None = None) -> bool:
        if self.error is not None:
            raise self.error
        if cancelled is not None and cancelled():
            return False
        stopped = threading.Event()
        self._stop_requested = stopped
        self.spoken.append(text)
        self.speaking.set()
        if text in self.blocking_texts:
            stopped.wait(timeout=5.0)
        return not stopped.is_set()

    def stop(self) -> None:
        self.stop_count += 1
        self._stop_requested.set()


@pytest.fixture
def system_backend() -> FakeSystemBackend:
    """Fake system engine with English and Japanese voices."""
    return FakeSystemBackend()


def pyttsx3_voice(voice_id: str, name: str, languages: list[Any] | None = None) -> SimpleNamespace:
    """pyttsx3 Voice stand-in."""
    return SimpleNamespace(id=voice_id, name=name, languages=languages or [])


class FakePyttsx3Engine:
    """pyttsx3 engine stand-in with a run loop driven by word callbacks.

    Texts in blocking_texts keep the loop emitting "started-word" until a
    callback calls stop(). Setting property_gate makes setProperty() wait
    for it. The names of threads that touch the engine are recorded.
    """

    def __init__(self, voices: list[SimpleNamespace]) -> None:
        self.properties: dict[str, Any] = {"voices": voices, "rate": 200}
        self.said: list[str] = []
        self.run_error: Exception | None = None
        self.voices_error: Exception | None = None
        self.blocking_texts: set[str] = set()
        self.property_gate: threading.Event | None = None
        self.property_waiting = threading.Event()
        self.callbacks: dict[str, list[Callable[..., None]]] = {}
        self.stop_calls = 0
        self.threads: set[str] = set()
        self._pending: list[str] = []
        self._stopped = False

    def connect(self, topic: str, callback: Callable[..., None]) -> None:
        self.callbacks.setdefault(topic, []).append(callback)

    def getProperty(self, name: str) -> Any:  # noqa: N802
        self._touch()
        if name == "voices" and self.voices_error is not None:
            raise self.voices_error
        return self.properties[name]

    def setProperty(self, name: str, value: Any) -> None:  # noqa: N802
        self._touch()
        gate = self.property_gate
        if gate is not None and not gate.is_set():
            self.property_waiting.set()
            gate.wait(timeout=5.0)
        self.properties[name] = value

    def say(self, text: str) -> None:
        self._touch()
        self.said.append(text)
        self._pending.append(text)

    def stop(self) -> None:
        self._touch()
        self.stop_calls += 1
        self._stopped = True

    def runAndWait(self) -> None:  # noqa: N802
        self._touch()
        if self.run_error is not None:
            raise self.run_error
        self._stopped = False
        pending, self._pending = self._pending, []
        for text in pending:
            self._fire("started-utterance", text)
            deadline = time.monotonic() + 5.0
            while not self._stopped:
                self._fire("started-word", text, 0, len(text))
                if text not in self.blocking_texts or time.monotonic() > deadline:
                    break
                time.sleep(0.005)
            if self._stopped:
                break

    def _fire(self, topic: str, *args: Any) -> None:
        for callback in self.callbacks.get(topic, []):
            callback(*args)

    def _touch(self) -> None:
        self.threads.add(threading.current_thread().name)


@pytest.fixture
def pyttsx3_engine() -> FakePyttsx3Engine:
    """Engine with an eSpeak English voice and two Japanese voices."""
    return FakePyttsx3Engine(
        [
            pyttsx3_voice("english", "English", [b"\x05en-us"]),
            pyttsx3_voice("com.apple.voice.compact.ja-JP.Kyoko", "Kyoko"),
            pyttsx3_voice("ja-online", "Japanese Online", ["ja_JP"]),
        ]
    )
