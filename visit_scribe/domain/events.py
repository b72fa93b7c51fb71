#!/usr/bin/env python3
"""
Visit Scribe - Events (Pub/Sub)
パイプライン内のイベントと blinker シグナル

- segment_captured: 音声窓の切り出し（AudioStream → SegmentTranscriber）
- "segment" / "final": セッション購読者向け（SessionStore がセッションIDを sender に送る）
- note_generated: 臨床ノートの下書き完成
- message_posted: 利用者向けメッセージ（ログの代わり）
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

import numpy as np
from blinker import Signal

from .models import Segment

EVENT_SEGMENT = "segment"
EVENT_FINAL = "final"


class MessageLevel(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class SegmentCapturedEvent:
    """切り出されたばかりの音声窓（segment.transcript は None）"""

    audio: np.ndarray  # float32 モノラル、CoreSettings.sample_rate
    segment: Segment


@dataclass(frozen=True)
class SegmentStitchedEvent:
    """
    "segment" イベント

    seq_no 順に結合が進むたびに1件ずつ届く。stitched_text はその時点の
    結合済みテキスト全体。
    """

    session_id: str
    segment: Segment
    stitched_text: str

    @property
    def event(self) -> str:
        return EVENT_SEGMENT

    @property
    def data(self) -> dict[str, Any]:
        seg = self.segment
        return {
            "seq_no": seg.seq_no,
            "stitched_text": self.stitched_text,
            "start_ms": seg.start_ms,
            "end_ms": seg.end_ms,
            "duration_ms": seg.duration_ms,
            "overlap_ms": seg.overlap_ms,
            "transcript": seg.transcript,
        }


@dataclass(frozen=True)
class FinalTranscriptEvent:
    """確定トランスクリプト（"final" イベント）"""

    session_id: str
    final_transcript: str

    @property
    def event(self) -> str:
        return EVENT_FINAL

    @property
    def data(self) -> dict[str, Any]:
        return {"final_transcript": self.final_transcript}


@dataclass(frozen=True)
class NoteGeneratedEvent:
    note: str  # 臨床ノートの下書き（プレーンテキスト）


@dataclass(frozen=True)
class MessagePostedEvent:
    """表示・記録用のメッセージ（ERROR は診察記録の errors にも残る）"""

    message: str
    level: MessageLevel
    timestamp: datetime = field(default_factory=datetime.now)


SessionEvent = SegmentStitchedEvent | FinalTranscriptEvent


segment_captured = Signal("segment_captured")
note_generated = Signal("note_generated")
message_posted = Signal("message_posted")


def post_message(sender: object, message: str, level: MessageLevel) -> None:
    message_posted.send(sender, event=MessagePostedEvent(message=message, level=level))
