#!/usr/bin/env python3
"""
Visit Scribe - Domain Models
ドメイン層：ビジネスエンティティとルール（外部依存なし）
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum


@dataclass(frozen=True)
class Segment:
    """
    文字起こし対象の音声セグメント（不変値）

    時刻はすべてセッション開始からの相対ミリ秒。
    セグメントnのstart_msは、セグメントn-1のstart_ms + (duration_ms - overlap_ms)。
    """

    seq_no: int  # 0始まりの連番
    start_ms: int
    end_ms: int
    duration_ms: int
    overlap_ms: int  # 直前のセグメントと共有する音声の長さ
    transcript: str | None = None  # 文字起こし後に設定（失敗時はNoneまたは空文字）

    def with_transcript(self, transcript: str | None) -> "Segment":
        """書き起こしを設定した新しいSegmentを返す"""
        return replace(self, transcript=transcript)


@dataclass(frozen=True)
class WavInfo:
    """WAVヘッダから得られるメタデータ（読み取り専用）"""

    sample_rate: int
    num_channels: int
    bit_depth: int
    duration_ms: int
    data_bytes: int


class SessionState(str, Enum):
    """セッションの状態"""

    EMPTY = "empty"  # セグメント未受信
    ASSEMBLING = "assembling"  # セグメント受信中（順不同の可能性あり）
    FINALIZED = "finalized"  # 最終トランスクリプト設定済み


@dataclass(frozen=True)
class StitchResult:
    """1セグメント分のスティッチ結果"""

    segment: Segment
    stitched_text: str  # このセグメントを結合した後の累積テキスト


@dataclass(frozen=True)
class SessionSnapshot:
    """セッション台帳のスナップショット（エクスポート・表示用）"""

    session_id: str
    state: SessionState
    cursor: int  # -1 は未スティッチ
    stitched_text: str
    final_transcript: str | None
    segments: tuple[Segment, ...]  # seq_no順
    pending_seq_nos: tuple[int, ...]  # ギャップ待ちで保留中のseq_no
    created_at: datetime


@dataclass
class TranscriptionError:
    """文字起こしエラー/品質問題の記録"""

    timestamp: datetime
    message: str


@dataclass
class VisitRecord:
    """
    1回の診察記録（エクスポート用の集約）

    Note: 永続化ロジックは infrastructure/persistence に分離
    """

    snapshot: SessionSnapshot
    clinical_note: str | None = None
    patient_name: str | None = None
    visit_reason: str | None = None
    errors: list[TranscriptionError] = field(default_factory=list)
