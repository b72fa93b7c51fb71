#!/usr/bin/env python3
"""
Visit Scribe - Audio Stream Module
キャプチャスレッド：入力チャンクを Segmenter に渡し、切り出された窓を
segment_captured で送る
"""

import threading
import time
from dataclasses import dataclass

import numpy as np

from visit_scribe.domain import (
    AudioSettings,
    MessageLevel,
    SegmentCapturedEvent,
    post_message,
    segment_captured,
)

from .segmenter import AudioWindow, Segmenter
from .sources import AudioSource


@dataclass
class AudioStreamStatus:
    """ステータスバー用のスナップショット"""

    is_running: bool
    is_paused: bool
    buffered_ms: int  # まだ窓として送っていない音声
    segments_emitted: int
    elapsed_sec: float


class AudioStream:
    """
    1セッション分の録音

    Segmenter はキャプチャスレッドだけが触る。入力が尽きるか stop() されると、
    スレッドは末尾の短い窓を（設定で許されていれば）1度だけ送って終わる。
    一時停止中に届いた音声は窓に入れずに捨てる。
    """

    def __init__(
        self,
        segmenter: Segmenter,
        audio_source: AudioSource,
        audio_settings: AudioSettings,
        keep_recording: bool = False,
    ):
        """
        Args:
            keep_recording: Trueなら取り込んだ音声全体を recorded_audio() 用に保持する
        """
        self.segmenter = segmenter
        self.audio_source = audio_source
        self.audio_settings = audio_settings
        self.keep_recording = keep_recording
        self._recorded: list[np.ndarray] = []

        self.segments_emitted = 0
        self.started_at: float | None = None

        self._running = False
        self._paused = False
        self._tail_done = False
        self._thread: threading.Thread | None = None

    def get_status(self) -> AudioStreamStatus:
        pending = len(self.segmenter.buffer)
        return AudioStreamStatus(
            is_running=self.is_alive(),
            is_paused=self._paused,
            buffered_ms=int(round(pending * 1000 / self.segmenter.sample_rate)),
            segments_emitted=self.segments_emitted,
            elapsed_sec=0.0 if self.started_at is None else time.time() - self.started_at,
        )

    def process_chunk(self, chunk: np.ndarray) -> None:
        """チャンクを取り込み、揃った窓をすべて送る"""
        if self.keep_recording:
            self._recorded.append(np.asarray(chunk, dtype=np.float32).ravel())
        for window in self.segmenter.push(chunk):
            self._publish(window)

    def recorded_audio(self) -> np.ndarray:
        """
        取り込んだ音声全体（一時停止中に捨てた分は含まない）

        keep_recording=False の場合は空配列。
        """
        if not self._recorded:
            return np.array([], dtype=np.float32)
        return np.concatenate(self._recorded)

    def _publish(self, window: AudioWindow) -> None:
        self.segments_emitted += 1
        segment_captured.send(
            self, event=SegmentCapturedEvent(audio=window.samples, segment=window.to_segment())
        )

    def _finish(self) -> None:
        if self._tail_done:
            return
        self._tail_done = True

        if not self.segmenter.settings.flush_tail:
            self.segmenter.buffer.clear()
        elif (tail := self.segmenter.flush()) is not None:
            self._publish(tail)

    def _capture(self) -> None:
        try:
            for chunk in self.audio_source.stream():
                if not self._running:
                    break
                if not self._paused:
                    self.process_chunk(chunk)
        except Exception as e:
            post_message(self, f"Audio capture failed: {e}", MessageLevel.ERROR)
        self._finish()

    def start(self) -> None:
        if self.is_alive():
            return

        self._running = True
        self._paused = False
        self._tail_done = False
        self.started_at = time.time()
        self.audio_source.start()

        self._thread = threading.Thread(target=self._capture, daemon=True, name="CaptureThread")
        self._thread.start()

    def pause(self) -> None:
        self._paused = True

    def resume(self) -> None:
        self._paused = False

    def stop(self) -> None:
        """キャプチャを止め、末尾の送信が終わるまで待ってから入力元を閉じる"""
        self._running = False
        if self.is_alive():
            assert self._thread is not None
            self._thread.join(timeout=self.audio_settings.stream_shutdown_timeout_sec)
        self.audio_source.stop()

    def wait_until_finished(self, timeout: float | None = None) -> bool:
        """
        有限の入力（ファイル/配列）を最後まで処理し終えるのを待つ

        Returns:
            bool: キャプチャスレッドが終了していればTrue
        """
        if self._thread:
            self._thread.join(timeout=timeout)
        return not self.is_alive()

    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()
