#!/usr/bin/env python3
"""
Visit Scribe - Segmenter Module
ストリーミング音声を固定長・オーバーラップ付きのセグメントに切り出すモジュール
"""

from collections.abc import Callable
from dataclasses import dataclass

import numpy as np
from numpy.typing import ArrayLike

from visit_scribe.domain import (
    CoreSettings,
    Segment,
    SegmentationConfigError,
    SegmentationSettings,
)


def ms_to_samples(ms: float, sample_rate: int) -> int:
    """ミリ秒をサンプル数に変換（切り捨てではなく丸め、長時間のドリフト防止）"""
    return int(round(ms * sample_rate / 1000))


class SampleBuffer:
    """
    float32 PCMサンプルの可変長バッファ

    任意サイズのpushを受け付ける。容量の上限は設けない
    （速やかに排出するのは呼び出し側の責務）。
    """

    def __init__(self) -> None:
        self._samples: np.ndarray = np.array([], dtype=np.float32)

    def push(self, samples: ArrayLike) -> None:
        """末尾にサンプルを追加"""
        chunk = np.asarray(samples, dtype=np.float32).reshape(-1)
        if chunk.size:
            self._samples = np.concatenate((self._samples, chunk))

    def view(self) -> np.ndarray:
        """読み取り専用ビューを返す"""
        view = self._samples.view()
        view.flags.writeable = False
        return view

    def consume(self, count: int) -> None:
        """先頭からcountサンプルを破棄"""
        if count > 0:
            self._samples = self._samples[count:].copy()

    def clear(self) -> None:
        """バッファを空にする"""
        self._samples = np.array([], dtype=np.float32)

    def __len__(self) -> int:
        return int(self._samples.size)


def drain_segments(
    buffer: SampleBuffer,
    segment_length_samples: int,
    overlap_samples: int,
    consumer: Callable[[np.ndarray], None],
) -> int:
    """
    バッファから取り出せるだけの完全なセグメントを切り出す

    segment_length_samples 以上の未消費サンプルがある限り窓を切り出して
    consumer に渡し、ホップ（segment - overlap）だけ読み出し位置を進める。
    終了後はホップ境界までのサンプルのみ破棄し、オーバーラップ分は
    次のセグメントで再送するためバッファに残す。短い窓は決して出力しない。

    Args:
        buffer: サンプルバッファ
        segment_length_samples: セグメント長（サンプル数、> 0）
        overlap_samples: オーバーラップ（サンプル数、0 <= overlap < segment）
        consumer: 切り出した窓を受け取るコールバック（時刻順に呼ばれる）

    Returns:
        int: 切り出したセグメント数

    Raises:
        SegmentationConfigError: ホップが正にならない設定の場合
    """
    if segment_length_samples <= 0:
        raise SegmentationConfigError(
            f"segment length must be positive (got {segment_length_samples} samples)"
        )
    if overlap_samples < 0 or overlap_samples >= segment_length_samples:
        raise SegmentationConfigError(
            f"overlap ({overlap_samples} samples) must be in "
            f"[0, segment length ({segment_length_samples} samples))"
        )

    hop = segment_length_samples - overlap_samples
    samples = buffer.view()
    cursor = 0
    emitted = 0
    try:
        while samples.size - cursor >= segment_length_samples:
            window = samples[cursor : cursor + segment_length_samples].copy()
            consumer(window)
            cursor += hop
            emitted += 1
    finally:
        # consumerが例外を投げても、渡し済みの窓は再送しない
        buffer.consume(cursor)
    return emitted


@dataclass(frozen=True)
class AudioWindow:
    """切り出された音声窓とそのセグメント情報"""

    samples: np.ndarray
    seq_no: int
    start_ms: int
    end_ms: int
    duration_ms: int
    overlap_ms: int

    def to_segment(self, transcript: str | None = None) -> Segment:
        """ドメインのSegmentに変換"""
        return Segment(
            seq_no=self.seq_no,
            start_ms=self.start_ms,
            end_ms=self.end_ms,
            duration_ms=self.duration_ms,
            overlap_ms=self.overlap_ms,
            transcript=transcript,
        )


class Segmenter:
    """
    セグメント分割器

    責務:
    - ミリ秒設定からの窓長・ホップ長の算出（1回のみ）
    - SampleBufferへの蓄積と排出
    - 連番・時刻情報の付与
    - ストリーム終了時の末尾フラッシュ（呼び出し側が明示的に実行）
    """

    def __init__(
        self,
        core_settings: CoreSettings,
        segmentation_settings: SegmentationSettings,
    ) -> None:
        """
        Args:
            core_settings: コア設定（サンプルレート）
            segmentation_settings: セグメント分割設定

        Raises:
            SegmentationConfigError: サンプル換算後のホップが正にならない場合
        """
        self.sample_rate = core_settings.sample_rate
        self.settings = segmentation_settings
        self.segment_samples = ms_to_samples(
            segmentation_settings.segment_ms, self.sample_rate
        )
        self.overlap_samples = ms_to_samples(
            segmentation_settings.overlap_ms, self.sample_rate
        )
        if self.segment_samples <= 0 or self.overlap_samples >= self.segment_samples:
            raise SegmentationConfigError(
                f"segment={self.segment_samples} / overlap={self.overlap_samples} samples "
                f"at {self.sample_rate} Hz leaves no positive hop"
            )

        self.buffer = SampleBuffer()
        self.next_seq_no = 0

    @property
    def hop_samples(self) -> int:
        """ホップ長（サンプル数）"""
        return self.segment_samples - self.overlap_samples

    def push(self, samples: ArrayLike) -> list[AudioWindow]:
        """サンプルを追加し、完成したセグメントを返す"""
        self.buffer.push(samples)
        return self.drain()

    def drain(self) -> list[AudioWindow]:
        """バッファから完成したセグメントを排出"""
        windows: list[AudioWindow] = []
        drain_segments(
            self.buffer,
            self.segment_samples,
            self.overlap_samples,
            lambda samples: windows.append(
                self._make_window(samples, self.settings.segment_ms)
            ),
        )
        return windows

    def flush(self) -> AudioWindow | None:
        """
        末尾の短いセグメントを出力（ストリーム終了時）

        未送信の音声を含み、かつ min_tail_ms 以上の長さがある場合のみ出力する。
        フラッシュ後のバッファは空になる。

        Returns:
            AudioWindow | None: 末尾セグメント or None
        """
        remainder = self.buffer.view().copy()
        self.buffer.clear()

        # 先頭のオーバーラップ分は直前のセグメントで送信済み
        already_sent = self.overlap_samples if self.next_seq_no > 0 else 0
        new_samples = remainder.size - already_sent
        if new_samples <= 0:
            return None

        if new_samples * 1000 / self.sample_rate < self.settings.min_tail_ms:
            return None
        duration_ms = int(round(remainder.size * 1000 / self.sample_rate))
        return self._make_window(remainder, duration_ms)

    def reset(self) -> None:
        """バッファと連番をリセット"""
        self.buffer.clear()
        self.next_seq_no = 0

    def _make_window(self, samples: np.ndarray, duration_ms: int) -> AudioWindow:
        seq_no = self.next_seq_no
        self.next_seq_no += 1
        start_ms = seq_no * self.settings.hop_ms
        return AudioWindow(
            samples=samples,
            seq_no=seq_no,
            start_ms=start_ms,
            end_ms=start_ms + duration_ms,
            duration_ms=duration_ms,
            overlap_ms=self.settings.overlap_ms if seq_no > 0 else 0,
        )
