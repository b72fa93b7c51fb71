#!/usr/bin/env python3
"""
Visit Scribe - Session Store Module
セッションごとの台帳管理とイベント配信（Pub/Sub）を提供するモジュール
"""

import threading
import time
from collections import OrderedDict
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

from blinker import Signal

from visit_scribe.domain import (
    FinalTranscriptEvent,
    MessageLevel,
    MessagePostedEvent,
    Segment,
    SegmentStitchedEvent,
    SessionEvent,
    SessionLedger,
    SessionSnapshot,
    SessionStoreSettings,
    StitchSettings,
    message_posted,
)

from .dispatcher import EventDispatcher

# 購読者のシグネチャ: receiver(session_id, event=SessionEvent)
SessionReceiver = Callable[..., None]


@dataclass
class _SessionEntry:
    """
    セッション1件分の台帳・ロック・購読者

    購読者はエントリ専用の Signal に強参照で接続する。エントリを捨てれば
    購読者への参照も消える。
    """

    ledger: SessionLedger
    lock: threading.RLock = field(default_factory=threading.RLock)
    signal: Signal = field(default_factory=lambda: Signal("session_event"))
    finalized_at: float | None = None  # time.monotonic() ベース
    closed: bool = False


class Subscription:
    """購読ハンドル（cancel() は冪等）"""

    def __init__(
        self, store: "SessionStore", session_id: str, receiver: SessionReceiver
    ) -> None:
        self.store = store
        self.session_id = session_id
        self.receiver = receiver
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        """購読を解除"""
        if self._cancelled:
            return
        self._cancelled = True
        self.store.unsubscribe(self.session_id, self.receiver)


class SessionStore:
    """
    セッションストア

    責務:
    - セッションIDごとの SessionLedger の生成・保持・解放
    - セッション単位の直列化（エントリごとのRLock）
    - "segment" / "final" イベントの購読者への配信

    排他制御:
    - マップ用ロックはエントリの検索/生成/削除の間だけ保持する
    - スティッチはエントリのロック内で行い、異なるセッションは並行に進む

    イベント配信:
    - 購読者はセッションごとの blinker Signal に接続し、session_id を sender に受け取る
    - 購読者集合は発行時点のものを使う（過去イベントの再送はしない）
    - 購読者ごとに例外を隔離し、失敗は message_posted (ERROR) で通知する
    - dispatcher 指定時は配信スレッド経由、未指定時はロック内で同期配信

    解放:
    - close() で台帳と購読者を破棄する
    - final から final_ttl_sec を過ぎたセッションは add_segment / subscribe /
      set_final_transcript の呼び出し時に解放される（evict_expired() の直接呼び出しも可）
    """

    def __init__(
        self,
        settings: SessionStoreSettings | None = None,
        stitch_settings: StitchSettings | None = None,
        dispatcher: EventDispatcher | None = None,
    ) -> None:
        self.settings = settings or SessionStoreSettings()
        self.stitch_settings = stitch_settings or StitchSettings()
        self.dispatcher = dispatcher

        self._entries: dict[str, _SessionEntry] = {}
        self._closed_ids: OrderedDict[str, None] = OrderedDict()
        self._map_lock = threading.Lock()

    # ========== エントリ管理 ==========

    def _get_entry(self, session_id: str) -> _SessionEntry | None:
        """エントリを取得（未登録なら生成、クローズ済みならNone）"""
        with self._map_lock:
            entry = self._entries.get(session_id)
            if entry is None:
                if session_id in self._closed_ids:
                    return None
                entry = _SessionEntry(ledger=SessionLedger(self.stitch_settings))
                self._entries[session_id] = entry
            return entry

    def _find_entry(self, session_id: str) -> _SessionEntry | None:
        with self._map_lock:
            return self._entries.get(session_id)

    def session_ids(self) -> list[str]:
        """保持中のセッションID一覧"""
        with self._map_lock:
            return list(self._entries)

    def is_closed(self, session_id: str) -> bool:
        """クローズ済み（として記憶されている）セッションかどうか"""
        with self._map_lock:
            return session_id in self._closed_ids

    # ========== 台帳操作 ==========

    def add_segment(self, session_id: str, segment: Segment) -> list[int]:
        """
        セグメントを登録し、スティッチされた分の "segment" イベントを発行

        Args:
            session_id: セッションID
            segment: 書き起こし済みセグメント

        Returns:
            list[int]: 今回スティッチ・発行されたseq_no（順序通り）
                クローズ済みセッションの場合は空リスト
        """
        self.evict_expired()
        entry = self._get_entry(session_id)
        if entry is None:
            return []

        with entry.lock:
            if entry.closed:
                return []

            results = entry.ledger.add_segment(segment)
            for result in results:
                self._publish(
                    session_id,
                    entry,
                    SegmentStitchedEvent(
                        session_id=session_id,
                        segment=result.segment,
                        stitched_text=result.stitched_text,
                    ),
                )
            return [result.segment.seq_no for result in results]

    def set_final_transcript(self, session_id: str, text: str) -> bool:
        """
        最終トランスクリプトを設定し、"final" イベントを1回発行

        Returns:
            bool: 設定された場合True（クローズ済みセッションはFalse）
        """
        entry = self._get_entry(session_id)
        if entry is None:
            return False

        with entry.lock:
            if entry.closed:
                return False
            entry.ledger.set_final_transcript(text)
            entry.finalized_at = time.monotonic()
            self._publish(
                session_id,
                entry,
                FinalTranscriptEvent(session_id=session_id, final_transcript=text),
            )

        self.evict_expired()
        return True

    def get_snapshot(self, session_id: str) -> SessionSnapshot | None:
        """セッションのスナップショットを取得（未登録ならNone）"""
        entry = self._find_entry(session_id)
        if entry is None:
            return None
        with entry.lock:
            if entry.closed:
                return None
            return entry.ledger.snapshot(session_id)

    # ========== 購読 ==========

    def subscribe(self, session_id: str, receiver: SessionReceiver) -> Subscription:
        """
        セッションイベントを購読

        Args:
            session_id: セッションID
            receiver: receiver(session_id, event=SessionEvent) 形式の呼び出し可能オブジェクト

        Returns:
            Subscription: 購読ハンドル
        """
        self.evict_expired()
        subscription = Subscription(self, session_id, receiver)
        entry = self._get_entry(session_id)
        if entry is None:
            # クローズ済みセッションにはイベントが発行されない
            subscription._cancelled = True
            return subscription

        with entry.lock:
            if entry.closed:
                subscription._cancelled = True
                return subscription
            # 同じ receiver の再接続は1件として扱われる
            entry.signal.connect(receiver, weak=False)
        return subscription

    def unsubscribe(self, session_id: str, receiver: SessionReceiver) -> None:
        """購読解除（未登録なら何もしない）"""
        entry = self._find_entry(session_id)
        if entry is None:
            return
        with entry.lock:
            entry.signal.disconnect(receiver)

    # ========== ライフサイクル ==========

    def close(self, session_id: str) -> bool:
        """
        セッションを解放（台帳と購読者を破棄）

        以降の add_segment / set_final_transcript は無視される。
        進行中の書き起こしを中断する必要はない。

        Returns:
            bool: 保持中のセッションを解放した場合True
        """
        with self._map_lock:
            entry = self._entries.pop(session_id, None)
            self._closed_ids[session_id] = None
            self._closed_ids.move_to_end(session_id)
            while len(self._closed_ids) > self.settings.closed_session_memory:
                self._closed_ids.popitem(last=False)

        if entry is None:
            return False

        with entry.lock:
            entry.closed = True
            for receiver in list(entry.signal.receivers_for(session_id)):
                entry.signal.disconnect(receiver)
        return True

    def evict_expired(self, now: float | None = None) -> list[str]:
        """
        final 設定から final_ttl_sec を超えたセッションを解放

        Args:
            now: 現在時刻（time.monotonic() ベース、テスト用）

        Returns:
            list[str]: 解放したセッションID
        """
        now = time.monotonic() if now is None else now
        ttl = self.settings.final_ttl_sec
        with self._map_lock:
            expired = [
                session_id
                for session_id, entry in self._entries.items()
                if entry.finalized_at is not None and now - entry.finalized_at > ttl
            ]

        return [session_id for session_id in expired if self.close(session_id)]

    # ========== 配信 ==========

    def _publish(
        self, session_id: str, entry: _SessionEntry, event: SessionEvent
    ) -> None:
        """イベントを発行（エントリのロック内で呼ばれる）"""
        receivers = list(entry.signal.receivers_for(session_id))
        if not receivers:
            return

        if self.dispatcher is not None:
            self.dispatcher.submit(
                lambda: self._deliver(session_id, event, receivers)
            )
        else:
            self._deliver(session_id, event, receivers)

    def _deliver(
        self,
        session_id: str,
        event: SessionEvent,
        receivers: Iterable[SessionReceiver],
    ) -> None:
        """購読者ごとに例外を隔離して配信"""
        for receiver in receivers:
            try:
                receiver(session_id, event=event)
            except Exception as e:
                message_posted.send(
                    self,
                    event=MessagePostedEvent(
                        message=f"Subscriber failed on '{event.event}' event "
                        f"(session {session_id}): {e}",
                        level=MessageLevel.ERROR,
                    ),
                )
