"""SessionStore（セッション管理とイベント配信）のテスト"""

import gc
import random
import sys
import threading
import time
import weakref
from unittest.mock import MagicMock

import pytest

# sounddevice が利用できない環境（Linux CI等）ではモックする
if "sounddevice" not in sys.modules:
    sys.modules["sounddevice"] = MagicMock()

from visit_scribe.domain import (
    FinalTranscriptEvent,
    MessageLevel,
    Segment,
    SegmentStitchedEvent,
    SessionState,
    SessionStoreSettings,
    message_posted,
)
from visit_scribe.infrastructure.session import EventDispatcher, SessionStore


def make_segment(seq_no: int, transcript: str) -> Segment:
    return Segment(
        seq_no=seq_no,
        start_ms=seq_no * 9750,
        end_ms=seq_no * 9750 + 10000,
        duration_ms=10000,
        overlap_ms=0 if seq_no == 0 else 250,
        transcript=transcript,
    )


class Recorder:
    """受信したセッションイベントを記録する購読者"""

    def __init__(self) -> None:
        self.events: list[tuple[str, object]] = []
        self.lock = threading.Lock()

    def __call__(self, session_id: str, event: object) -> None:
        with self.lock:
            self.events.append((session_id, event))

    @property
    def seq_nos(self) -> list[int]:
        return [
            e.segment.seq_no for _, e in self.events if isinstance(e, SegmentStitchedEvent)
        ]

    @property
    def finals(self) -> list[FinalTranscriptEvent]:
        return [e for _, e in self.events if isinstance(e, FinalTranscriptEvent)]


@pytest.fixture
def store() -> SessionStore:
    """同期配信のストア"""
    return SessionStore(SessionStoreSettings(async_dispatch=False))


@pytest.fixture
def errors(store: SessionStore):
    """ストアが投稿したERRORメッセージを集める"""
    messages: list[str] = []

    def receiver(sender: object, event) -> None:
        if event.level == MessageLevel.ERROR:
            messages.append(event.message)

    with message_posted.connected_to(receiver, sender=store):
        yield messages


class TestSegmentEvents:
    def test_events_in_seq_order(self, store: SessionStore) -> None:
        recorder = Recorder()
        store.subscribe("visit-1", recorder)

        assert store.add_segment("visit-1", make_segment(1, "brings you in today")) == []
        assert recorder.events == []

        assert store.add_segment("visit-1", make_segment(0, "what brings you in")) == [0, 1]
        assert recorder.seq_nos == [0, 1]

        _, last = recorder.events[-1]
        assert last.session_id == "visit-1"
        assert last.stitched_text == "what brings you in today"
        assert last.event == "segment"
        assert last.data["seq_no"] == 1
        assert last.data["stitched_text"] == "what brings you in today"

    def test_duplicate_produces_no_event(self, store: SessionStore) -> None:
        recorder = Recorder()
        store.subscribe("visit-1", recorder)
        store.add_segment("visit-1", make_segment(0, "hello"))
        store.add_segment("visit-1", make_segment(0, "hello again"))
        assert recorder.seq_nos == [0]

    def test_no_replay_for_late_subscriber(self, store: SessionStore) -> None:
        """購読前に発行されたイベントは届かない"""
        store.add_segment("visit-1", make_segment(0, "hello"))
        recorder = Recorder()
        store.subscribe("visit-1", recorder)
        store.add_segment("visit-1", make_segment(1, "world"))
        assert recorder.seq_nos == [1]

    def test_sessions_are_isolated(self, store: SessionStore) -> None:
        first, second = Recorder(), Recorder()
        store.subscribe("visit-1", first)
        store.subscribe("visit-2", second)

        store.add_segment("visit-1", make_segment(0, "alpha"))
        store.add_segment("visit-2", make_segment(0, "beta"))

        assert [sid for sid, _ in first.events] == ["visit-1"]
        assert [sid for sid, _ in second.events] == ["visit-2"]
        assert store.get_snapshot("visit-1").stitched_text == "alpha"
        assert store.get_snapshot("visit-2").stitched_text == "beta"

    def test_same_receiver_on_two_sessions(self, store: SessionStore) -> None:
        recorder = Recorder()
        store.subscribe("visit-1", recorder)
        store.subscribe("visit-2", recorder)

        store.add_segment("visit-1", make_segment(0, "alpha"))
        store.add_segment("visit-2", make_segment(0, "beta"))

        assert [sid for sid, _ in recorder.events] == ["visit-1", "visit-2"]

    def test_failing_subscriber_is_isolated(
        self, store: SessionStore, errors: list[str]
    ) -> None:
        """購読者の例外は他の購読者やスティッチに影響しない"""

        def broken(session_id: str, event: object) -> None:
            raise RuntimeError("sink offline")

        recorder = Recorder()
        store.subscribe("visit-1", broken)
        store.subscribe("visit-1", recorder)

        assert store.add_segment("visit-1", make_segment(0, "hello")) == [0]
        assert store.add_segment("visit-1", make_segment(1, "world")) == [1]

        assert recorder.seq_nos == [0, 1]
        assert store.get_snapshot("visit-1").stitched_text == "hello world"
        assert len(errors) == 2
        assert "sink offline" in errors[0]
        assert "'segment'" in errors[0]


class TestSubscription:
    def test_cancel_stops_delivery(self, store: SessionStore) -> None:
        recorder = Recorder()
        subscription = store.subscribe("visit-1", recorder)
        store.add_segment("visit-1", make_segment(0, "hello"))

        subscription.cancel()
        subscription.cancel()  # 冪等
        store.add_segment("visit-1", make_segment(1, "world"))

        assert subscription.cancelled
        assert recorder.seq_nos == [0]

    def test_unsubscribe_unknown_is_noop(self, store: SessionStore) -> None:
        store.unsubscribe("missing", Recorder())

    def test_subscribe_twice_delivers_once(self, store: SessionStore) -> None:
        recorder = Recorder()
        store.subscribe("visit-1", recorder)
        store.subscribe("visit-1", recorder)
        store.add_segment("visit-1", make_segment(0, "hello"))
        assert recorder.seq_nos == [0]


class TestFinalTranscript:
    def test_final_event_emitted_once(self, store: SessionStore) -> None:
        recorder = Recorder()
        store.subscribe("visit-1", recorder)
        store.add_segment("visit-1", make_segment(0, "hello"))

        assert store.set_final_transcript("visit-1", "Hello.") is True

        assert len(recorder.finals) == 1
        final = recorder.finals[0]
        assert final.final_transcript == "Hello."
        assert final.event == "final"
        assert final.data == {"final_transcript": "Hello."}

        snapshot = store.get_snapshot("visit-1")
        assert snapshot.state == SessionState.FINALIZED
        assert snapshot.final_transcript == "Hello."

    def test_final_on_unknown_session_creates_it(self, store: SessionStore) -> None:
        assert store.set_final_transcript("visit-9", "") is True
        assert store.get_snapshot("visit-9").final_transcript == ""


class TestLifecycle:
    def test_snapshot_of_unknown_session(self, store: SessionStore) -> None:
        assert store.get_snapshot("missing") is None

    def test_close_discards_session(self, store: SessionStore) -> None:
        recorder = Recorder()
        store.subscribe("visit-1", recorder)
        store.add_segment("visit-1", make_segment(0, "hello"))

        assert store.close("visit-1") is True
        assert store.get_snapshot("visit-1") is None
        assert store.is_closed("visit-1")
        assert "visit-1" not in store.session_ids()

        # 遅着セグメントは無視され、再生成もされない
        assert store.add_segment("visit-1", make_segment(1, "world")) == []
        assert store.set_final_transcript("visit-1", "late") is False
        assert store.get_snapshot("visit-1") is None
        assert recorder.seq_nos == [0]

    def test_subscribe_to_closed_session(self, store: SessionStore) -> None:
        store.close("visit-1")
        subscription = store.subscribe("visit-1", Recorder())
        assert subscription.cancelled

    def test_close_unknown_session(self, store: SessionStore) -> None:
        assert store.close("never-seen") is False
        assert store.is_closed("never-seen")

    def test_closed_session_memory_is_bounded(self) -> None:
        store = SessionStore(
            SessionStoreSettings(closed_session_memory=2, async_dispatch=False)
        )
        for session_id in ("a", "b", "c"):
            store.add_segment(session_id, make_segment(0, session_id))
            store.close(session_id)

        assert not store.is_closed("a")
        assert store.is_closed("b")
        assert store.is_closed("c")

        # 忘れられたIDは新しいセッションとして扱われる
        assert store.add_segment("a", make_segment(0, "again")) == [0]
        assert store.get_snapshot("a").stitched_text == "again"

    def test_evict_expired(self) -> None:
        store = SessionStore(SessionStoreSettings(final_ttl_sec=10, async_dispatch=False))
        store.add_segment("done", make_segment(0, "hello"))
        store.set_final_transcript("done", "hello")
        store.add_segment("active", make_segment(0, "still talking"))

        assert store.evict_expired() == []
        assert store.evict_expired(now=time.monotonic() + 11) == ["done"]
        assert store.get_snapshot("done") is None
        assert store.get_snapshot("active") is not None

    @pytest.mark.parametrize("trigger", ["add_segment", "subscribe"])
    def test_expired_session_is_evicted_by_later_calls(self, trigger: str) -> None:
        """最後に確定したセッションも、他セッションへの操作で期限切れ解放される"""
        store = SessionStore(SessionStoreSettings(final_ttl_sec=0.01, async_dispatch=False))
        store.add_segment("done", make_segment(0, "hello"))
        store.set_final_transcript("done", "hello")
        assert store.get_snapshot("done") is not None

        time.sleep(0.05)
        if trigger == "add_segment":
            store.add_segment("next", make_segment(0, "good morning"))
        else:
            store.subscribe("next", Recorder())

        assert store.is_closed("done")
        assert store.session_ids() == ["next"]

    @pytest.mark.parametrize("release", ["close", "evict"])
    def test_released_session_drops_subscribers(self, release: str) -> None:
        """解放したセッションの購読者はストアから参照されない"""
        store = SessionStore(SessionStoreSettings(final_ttl_sec=10, async_dispatch=False))
        refs = []
        for i in range(20):
            session_id = f"visit-{i}"
            recorder = Recorder()
            store.subscribe(session_id, recorder)
            store.add_segment(session_id, make_segment(0, "hello"))
            store.set_final_transcript(session_id, "hello")
            refs.append(weakref.ref(recorder))
        del recorder

        if release == "close":
            for i in range(20):
                store.close(f"visit-{i}")
        else:
            assert len(store.evict_expired(now=time.monotonic() + 11)) == 20
        gc.collect()

        assert [ref for ref in refs if ref() is not None] == []
        assert store.session_ids() == []

    def test_unsubscribed_receiver_is_collectable(self, store: SessionStore) -> None:
        recorder = Recorder()
        subscription = store.subscribe("visit-1", recorder)
        ref = weakref.ref(recorder)

        subscription.cancel()
        del recorder, subscription
        gc.collect()

        assert ref() is None


class TestConcurrency:
    def test_parallel_adds_to_one_session(self, store: SessionStore) -> None:
        """並行に届いても、結果は順番通りに追加した場合と同じ"""
        words = [f"word{i}" for i in range(40)]
        segments = [make_segment(i, w) for i, w in enumerate(words)]
        random.Random(7).shuffle(segments)
        recorder = Recorder()
        store.subscribe("visit-1", recorder)

        def worker(chunk: list[Segment]) -> None:
            for segment in chunk:
                store.add_segment("visit-1", segment)

        threads = [
            threading.Thread(target=worker, args=(segments[i::4],)) for i in range(4)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=5)

        assert store.get_snapshot("visit-1").stitched_text == " ".join(words)
        assert recorder.seq_nos == list(range(40))

    def test_parallel_sessions(self, store: SessionStore) -> None:
        def worker(session_id: str) -> None:
            for i in range(20):
                store.add_segment(session_id, make_segment(i, f"{session_id}-{i}"))

        threads = [
            threading.Thread(target=worker, args=(f"visit-{n}",)) for n in range(5)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=5)

        for n in range(5):
            snapshot = store.get_snapshot(f"visit-{n}")
            assert snapshot.cursor == 19
            assert snapshot.stitched_text.split()[-1] == f"visit-{n}-19"


class TestEventDispatcher:
    def test_async_delivery_preserves_order(self) -> None:
        dispatcher = EventDispatcher(queue_get_timeout_sec=0.05)
        store = SessionStore(dispatcher=dispatcher)
        recorder = Recorder()
        store.subscribe("visit-1", recorder)
        dispatcher.start()

        for seq_no in (2, 1, 0, 3):
            store.add_segment("visit-1", make_segment(seq_no, f"w{seq_no}"))
        store.set_final_transcript("visit-1", "w0 w1 w2 w3")

        dispatcher.stop(wait_for_queue=True)
        dispatcher.join(timeout=5)

        assert recorder.seq_nos == [0, 1, 2, 3]
        assert isinstance(recorder.events[-1][1], FinalTranscriptEvent)

    def test_failed_delivery_does_not_stop_thread(self) -> None:
        dispatcher = EventDispatcher(queue_get_timeout_sec=0.05)
        delivered: list[str] = []
        messages: list[str] = []

        def boom() -> None:
            raise RuntimeError("boom")

        def receiver(sender: object, event) -> None:
            messages.append(event.message)

        with message_posted.connected_to(receiver, sender=dispatcher):
            dispatcher.start()
            dispatcher.submit(boom)
            dispatcher.submit(lambda: delivered.append("ok"))
            dispatcher.stop(wait_for_queue=True)
            dispatcher.join(timeout=5)

        assert delivered == ["ok"]
        assert messages == ["Event delivery failed: boom"]
        assert dispatcher.pending == 0

    def test_submit_after_stop_is_ignored(self) -> None:
        dispatcher = EventDispatcher(queue_get_timeout_sec=0.05)
        dispatcher.stop()
        dispatcher.submit(lambda: None)
        assert dispatcher.pending == 0
