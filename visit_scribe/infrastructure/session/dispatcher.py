#!/usr/bin/env python3
"""
Visit Scribe - Event Dispatcher Module
セッションイベントを専用スレッドで順番に配信するモジュール
"""

import queue
import threading
from collections.abc import Callable

from visit_scribe.domain import MessageLevel, MessagePostedEvent, message_posted


class EventDispatcher(threading.Thread):
    """
    イベント配信スレッド

    機能:
    - FIFOキューによる配信順序の保証（投入順 = 配信順）
    - 購読者の処理時間をスティッチ処理から切り離す

    配信関数が例外を投げてもスレッドは停止しない。
    """

    def __init__(self, queue_get_timeout_sec: float = 0.5) -> None:
        super().__init__(daemon=True, name="EventDispatcherThread")
        self.queue: queue.Queue[Callable[[], None]] = queue.Queue()
        self.running = True
        self._queue_get_timeout_sec = queue_get_timeout_sec

    def submit(self, delivery: Callable[[], None]) -> None:
        """配信関数をキューに追加"""
        if self.running:
            self.queue.put(delivery)

    def run(self) -> None:
        """配信ループ"""
        while self.running or not self.queue.empty():
            try:
                delivery = self.queue.get(timeout=self._queue_get_timeout_sec)
            except queue.Empty:
                continue

            try:
                delivery()
            except Exception as e:
                message_posted.send(
                    self,
                    event=MessagePostedEvent(
                        message=f"Event delivery failed: {e}",
                        level=MessageLevel.ERROR,
                    ),
                )
            finally:
                self.queue.task_done()

    @property
    def pending(self) -> int:
        """未配信のイベント数"""
        return self.queue.unfinished_tasks

    def stop(self, wait_for_queue: bool = True) -> None:
        """
        スレッド停止

        Args:
            wait_for_queue: Trueの場合、キューが空になるまで配信を続ける
        """
        # 新規追加を防ぐ
        self.running = False

        if not wait_for_queue:
            # 残りの配信を破棄
            try:
                while True:
                    self.queue.get_nowait()
                    self.queue.task_done()
            except queue.Empty:
                pass
