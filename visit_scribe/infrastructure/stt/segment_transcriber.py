#!/usr/bin/env python3
"""
Visit Scribe - Segment Transcriber Module
セグメント音声を並行して文字起こしし、セッションストアに登録するモジュール
"""

import queue
import threading
import time

import numpy as np

from visit_scribe.domain import (
    CoreSettings,
    MessageLevel,
    MessagePostedEvent,
    Segment,
    TranscriptionFailedError,
    TranscriptionSettings,
    message_posted,
)
from visit_scribe.infrastructure.audio import encode_wav
from visit_scribe.infrastructure.session import SessionStore

from .transcription_client import TranscriptionClient


class SegmentTranscriber:
    """
    セグメント文字起こしワーカープール

    機能:
    - キューベースの非同期処理（max_concurrency 本のスレッドで共有）
    - 完了順は不定（順序の復元は SessionStore が担う）

    失敗したセグメントは空の書き起こしとして登録し、
    後続セグメントが保留され続けないようにする。
    """

    def __init__(
        self,
        client: TranscriptionClient,
        store: SessionStore,
        session_id: str,
        core_settings: CoreSettings,
        settings: TranscriptionSettings,
    ) -> None:
        self.client = client
        self.store = store
        self.session_id = session_id
        self.core_settings = core_settings
        self.settings = settings

        self.queue: queue.Queue[tuple[np.ndarray, Segment]] = queue.Queue()
        self.running = True
        self._workers = [
            threading.Thread(
                target=self._worker_loop,
                daemon=True,
                name=f"SegmentTranscriber-{i}",
            )
            for i in range(settings.max_concurrency)
        ]

    def start(self) -> None:
        """ワーカースレッドを起動"""
        for worker in self._workers:
            if not worker.is_alive():
                worker.start()

    def add_window(self, audio: np.ndarray, segment: Segment) -> None:
        """セグメント音声をキューに追加"""
        if self.running:
            self.queue.put((audio, segment))

    def _worker_loop(self) -> None:
        """文字起こしループ"""
        while self.running or not self.queue.empty():
            try:
                audio, segment = self.queue.get(timeout=self.settings.queue_get_timeout_sec)
            except queue.Empty:
                continue

            try:
                self._process_segment(audio, segment)
            finally:
                self.queue.task_done()

    def _process_segment(self, audio: np.ndarray, segment: Segment) -> None:
        """
        1セグメント分の文字起こしと登録

        Args:
            audio: セグメント音声（float32）
            segment: 連番と時刻情報
        """
        processing_start = time.time()
        filename = f"segment-{segment.seq_no:05d}.wav"

        try:
            wav_bytes = encode_wav(audio, self.core_settings.sample_rate)
            text = self.client.transcribe(wav_bytes, filename)
        except TranscriptionFailedError as e:
            self._report_failure(segment, str(e))
            text = ""
        except Exception as e:
            self._report_failure(segment, f"Transcription failed: {e}")
            text = ""
        else:
            if text:
                processing_time = time.time() - processing_start
                message_posted.send(
                    self,
                    event=MessagePostedEvent(
                        message=f"Segment {segment.seq_no} transcribed "
                        f"({processing_time:.1f}s)",
                        level=MessageLevel.INFO,
                    ),
                )

        self.store.add_segment(self.session_id, segment.with_transcript(text))

    def _report_failure(self, segment: Segment, reason: str) -> None:
        event = MessagePostedEvent(
            message=f"Segment {segment.seq_no} "
            f"({segment.start_ms}-{segment.end_ms} ms): {reason}",
            level=MessageLevel.ERROR,
        )
        message_posted.send(self, event=event)

    @property
    def pending(self) -> int:
        """未完了のセグメント数（キュー待ち + 処理中）"""
        # task_done() は処理完了後に呼ばれるため、処理中の分も含まれる
        return self.queue.unfinished_tasks

    @property
    def is_transcribing(self) -> bool:
        """
        文字起こし中かどうか（キュー待ち + 処理中）

        Returns:
            bool: キューにタスクがあるか、処理中の場合True
        """
        return self.pending > 0

    def is_alive(self) -> bool:
        """いずれかのワーカーが実行中かどうか"""
        return any(worker.is_alive() for worker in self._workers)

    def stop(self, wait_for_queue: bool = False) -> None:
        """
        ワーカー停止

        Args:
            wait_for_queue: Trueの場合、キューが空になるまで処理を続ける
        """
        # 停止フラグを立てる（新規追加を防ぐ）
        self.running = False

        if not wait_for_queue:
            # キューをクリアして残タスクを破棄
            try:
                while True:
                    self.queue.get_nowait()
                    self.queue.task_done()
            except queue.Empty:
                pass

    def join(self, timeout: float | None = None) -> None:
        """全ワーカーの終了を待つ（timeoutは全体での上限）"""
        deadline = None if timeout is None else time.monotonic() + timeout
        for worker in self._workers:
            if not worker.is_alive():
                continue
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            worker.join(timeout=remaining)
