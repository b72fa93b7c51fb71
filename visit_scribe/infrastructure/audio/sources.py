#!/usr/bin/env python3
"""
Visit Scribe - Audio Sources Module
診察音声の入力元（マイク / ファイル / メモリ）
"""

from __future__ import annotations

import queue
import time
from abc import ABC, abstractmethod
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any

import numpy as np
import sounddevice as sd  # type: ignore[import-untyped]
import soundfile as sf  # type: ignore[import-untyped]
from numpy.typing import ArrayLike

from visit_scribe.domain import AudioSettings, CoreSettings, MessageLevel, post_message


@dataclass(frozen=True)
class AudioDevice:
    """入力デバイス"""

    id: int
    name: str
    max_input_channels: int
    is_default: bool = False


def list_input_devices() -> list[AudioDevice]:
    """録音に使える入力デバイスを列挙（入力チャンネルのないデバイスは除外）"""
    devices = sd.query_devices()
    if not isinstance(devices, sd.DeviceList) or len(devices) == 0:
        return []

    default_input = sd.default.device[0]
    inputs = []
    for index, info in enumerate(devices):
        if info["max_input_channels"] <= 0:
            continue
        inputs.append(
            AudioDevice(
                id=index,
                name=info["name"],
                max_input_channels=info["max_input_channels"],
                is_default=index == default_input,
            )
        )
    return inputs


def to_mono(audio: np.ndarray) -> np.ndarray:
    """チャンネル平均でモノラル化"""
    mono = audio.mean(axis=1) if audio.ndim > 1 else audio
    return np.asarray(mono, dtype=np.float32)


def resample_linear(audio: np.ndarray, source_rate: int, target_rate: int) -> np.ndarray:
    """
    線形補間でサンプルレートを変換

    >>> resample_linear(np.array([0.0, 1.0, 2.0, 3.0]), 4, 2).tolist()
    [0.0, 3.0]
    """
    if source_rate == target_rate or audio.size == 0:
        return np.asarray(audio, dtype=np.float32)

    n_in = len(audio)
    n_out = int(round(n_in * target_rate / source_rate))
    positions = np.linspace(0, n_in - 1, n_out)
    return np.interp(positions, np.arange(n_in), audio).astype(np.float32)


class AudioSource(ABC):
    """
    音声入力元の基底クラス

    start() の後、stream() がターゲットサンプルレートの float32 モノラル
    チャンク（長さは任意）を順に返す。
    """

    @abstractmethod
    def stream(self) -> Iterator[np.ndarray]:
        pass

    @abstractmethod
    def start(self) -> None:
        pass

    @abstractmethod
    def stop(self) -> None:
        pass

    @property
    @abstractmethod
    def is_realtime(self) -> bool:
        """マイクのように実時間で届く入力ならTrue"""
        pass


class MicrophoneAudioSource(AudioSource):
    """
    マイク入力

    sounddevice のコールバックで受けたブロックをキューに積み、
    stream() 側で取り出す（コールバックスレッドでは処理しない）。
    """

    list_devices = staticmethod(list_input_devices)

    def __init__(
        self,
        core_settings: CoreSettings,
        audio_settings: AudioSettings,
        device_id: int | None = None,
    ) -> None:
        self.core_settings = core_settings
        self.audio_settings = audio_settings
        self.device_id = device_id
        self._blocks: queue.Queue[np.ndarray] = queue.Queue()
        self._input: sd.InputStream | None = None
        self._capturing = False

    def _on_block(
        self, indata: np.ndarray, _frames: int, _time_info: Any, status: sd.CallbackFlags
    ) -> None:
        if status:
            post_message(self, f"Audio input status: {status}", MessageLevel.WARNING)
        self._blocks.put(indata[:, 0].copy())

    def stream(self) -> Iterator[np.ndarray]:
        timeout = self.audio_settings.queue_get_timeout_sec
        while self._capturing:
            try:
                yield self._blocks.get(timeout=timeout)
            except queue.Empty:
                continue

    def start(self) -> None:
        rate = self.core_settings.sample_rate
        self._input = sd.InputStream(
            device=self.device_id,
            samplerate=rate,
            channels=1,
            dtype=np.float32,
            blocksize=int(rate * self.audio_settings.block_sec),
            callback=self._on_block,
        )
        self._capturing = True
        self._input.start()

    def stop(self) -> None:
        self._capturing = False
        if self._input is None:
            return
        self._input.stop()
        self._input.close()
        self._input = None

    @property
    def is_realtime(self) -> bool:
        return True


class ArrayAudioSource(AudioSource):
    """
    メモリ上のサンプル列を chunk_ms ごとに流す入力

    サンプルはターゲットサンプルレートに揃っている前提。
    組み込み利用とテスト用。
    """

    def __init__(
        self,
        core_settings: CoreSettings,
        audio_settings: AudioSettings,
        samples: ArrayLike,
        realtime_simulation: bool = False,
    ) -> None:
        """
        Args:
            core_settings: サンプルレート
            audio_settings: チャンク長（chunk_ms）
            samples: float32モノラル音声
            realtime_simulation: Trueならチャンクごとに実時間分待つ
        """
        self.core_settings = core_settings
        self.audio_settings = audio_settings
        self.realtime_simulation = realtime_simulation
        self._samples: np.ndarray | None = np.asarray(samples, dtype=np.float32).ravel()
        self._playing: np.ndarray | None = None

    def _load_audio(self) -> np.ndarray:
        assert self._samples is not None
        return self._samples

    @property
    def chunk_size(self) -> int:
        """1チャンクのサンプル数"""
        return max(1, int(self.core_settings.sample_rate * self.audio_settings.chunk_ms / 1000))

    def stream(self) -> Iterator[np.ndarray]:
        audio = self._playing
        if audio is None:
            return

        step = self.chunk_size
        pause_sec = step / self.core_settings.sample_rate
        for offset in range(0, len(audio), step):
            yield audio[offset : offset + step]
            if self.realtime_simulation:
                time.sleep(pause_sec)

    def start(self) -> None:
        self._playing = self._load_audio()

    def stop(self) -> None:
        self._playing = None

    @property
    def is_realtime(self) -> bool:
        return False

    @property
    def duration(self) -> float:
        """音声長（秒、未読み込みのファイルは0）"""
        audio = self._playing if self._playing is not None else self._samples
        return 0.0 if audio is None else len(audio) / self.core_settings.sample_rate


class FileAudioSource(ArrayAudioSource):
    """
    音声ファイル入力（wav/flac/ogg など soundfile が読める形式）

    start() で読み込み、モノラル化とリサンプリングを行う。
    """

    def __init__(
        self,
        core_settings: CoreSettings,
        audio_settings: AudioSettings,
        file_path: str,
        realtime_simulation: bool = False,
    ) -> None:
        super().__init__(
            core_settings, audio_settings, samples=(), realtime_simulation=realtime_simulation
        )
        self.file_path = file_path
        self._samples = None

    def _load_audio(self) -> np.ndarray:
        audio, file_rate = sf.read(self.file_path, dtype="float32")
        return resample_linear(to_mono(audio), file_rate, self.core_settings.sample_rate)
