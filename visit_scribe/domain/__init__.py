#!/usr/bin/env python3
"""
Visit Scribe - Domain Layer
ドメイン層：ビジネスロジック、エンティティ、設定
"""

# モデルとデータ構造
from .models import (
    Segment,
    SessionSnapshot,
    SessionState,
    StitchResult,
    TranscriptionError,
    VisitRecord,
    WavInfo,
)

# 例外
from .errors import (
    NoteGenerationError,
    ScribeError,
    SegmentationConfigError,
    TranscriptionConfigError,
    TranscriptionFailedError,
    TranscriptionRejectedError,
    TranscriptionTransportError,
    WavFormatError,
)

# スティッチ
from .stitching import find_overlap, normalize_token, stitch
from .ledger import SessionLedger

# イベント（Pub/Sub）
from .events import (
    FinalTranscriptEvent,
    MessageLevel,
    MessagePostedEvent,
    NoteGeneratedEvent,
    SegmentCapturedEvent,
    SegmentStitchedEvent,
    SessionEvent,
    message_posted,
    note_generated,
    post_message,
    segment_captured,
)

# 設定スキーマ（Pydantic）
from .settings import (
    AppSettings,
    AudioSettings,
    CoreSettings,
    LLMBackend,
    NoteSettings,
    SegmentationSettings,
    SessionStoreSettings,
    Settings,
    StitchSettings,
    TranscriptionSettings,
)

__all__ = [
    # モデル
    "Segment",
    "SessionSnapshot",
    "SessionState",
    "StitchResult",
    "TranscriptionError",
    "VisitRecord",
    "WavInfo",
    # 例外
    "NoteGenerationError",
    "ScribeError",
    "SegmentationConfigError",
    "TranscriptionConfigError",
    "TranscriptionFailedError",
    "TranscriptionRejectedError",
    "TranscriptionTransportError",
    "WavFormatError",
    # スティッチ
    "find_overlap",
    "normalize_token",
    "stitch",
    "SessionLedger",
    # イベント
    "FinalTranscriptEvent",
    "MessageLevel",
    "MessagePostedEvent",
    "NoteGeneratedEvent",
    "SegmentCapturedEvent",
    "SegmentStitchedEvent",
    "SessionEvent",
    "message_posted",
    "note_generated",
    "post_message",
    "segment_captured",
    # 設定
    "AppSettings",
    "AudioSettings",
    "CoreSettings",
    "LLMBackend",
    "NoteSettings",
    "SegmentationSettings",
    "SessionStoreSettings",
    "Settings",
    "StitchSettings",
    "TranscriptionSettings",
]
