#!/usr/bin/env python3
"""
Visit Scribe - Session Ledger
ドメイン層：1セッション分のセグメント台帳とスティッチ状態遷移（スレッド非安全）

排他制御は infrastructure/session の SessionStore が担う。
"""

from datetime import datetime

from .models import Segment, SessionSnapshot, SessionState, StitchResult
from .settings import StitchSettings
from .stitching import stitch


class SessionLedger:
    """
    セッション台帳（ドメインエンティティ）

    状態遷移: EMPTY → ASSEMBLING → FINALIZED

    不変条件:
    - stitched_text は常にセグメント 0..cursor を順に結合した結果
    - cursor+1 より先のセグメントはギャップが埋まるまで保留
    - 同じseq_noは最後に受信した値を採用（スティッチ済みのものは再結合しない）
    """

    def __init__(self, stitch_settings: StitchSettings | None = None) -> None:
        self.stitch_settings = stitch_settings or StitchSettings()
        self.segments: dict[int, Segment] = {}
        self.cursor = -1
        self.stitched_text = ""
        self.final_transcript: str | None = None
        self.created_at = datetime.now()

    @property
    def state(self) -> SessionState:
        """現在の状態"""
        if self.final_transcript is not None:
            return SessionState.FINALIZED
        if self.segments:
            return SessionState.ASSEMBLING
        return SessionState.EMPTY

    @property
    def pending_seq_nos(self) -> list[int]:
        """ギャップ待ちで保留中のseq_no（昇順）"""
        return sorted(seq for seq in self.segments if seq > self.cursor)

    def add_segment(self, segment: Segment) -> list[StitchResult]:
        """
        セグメントを登録し、連続した分だけスティッチする

        Args:
            segment: 登録するセグメント

        Returns:
            list[StitchResult]: 今回新たにスティッチされたセグメント（seq_no順）
                重複/遅着（seq_no <= cursor）や保留の場合は空リスト
        """
        if segment.seq_no < 0:
            raise ValueError(f"seq_no must be non-negative (got {segment.seq_no})")

        self.segments[segment.seq_no] = segment

        # スティッチ済み範囲内の再送は保存のみ（冪等）
        if segment.seq_no <= self.cursor:
            return []

        results: list[StitchResult] = []
        # ギャップが埋まった分を順に排出
        while (next_segment := self.segments.get(self.cursor + 1)) is not None:
            self.stitched_text = stitch(
                self.stitched_text, next_segment.transcript, self.stitch_settings
            )
            self.cursor = next_segment.seq_no
            results.append(
                StitchResult(segment=next_segment, stitched_text=self.stitched_text)
            )
        return results

    def set_final_transcript(self, text: str) -> None:
        """
        最終トランスクリプトを無条件に設定

        cursorの状態とは独立。以降のセグメントは受け付けるが、
        設定済みの最終トランスクリプトは変更しない。
        """
        self.final_transcript = text

    def snapshot(self, session_id: str) -> SessionSnapshot:
        """現在の状態のスナップショットを返す"""
        return SessionSnapshot(
            session_id=session_id,
            state=self.state,
            cursor=self.cursor,
            stitched_text=self.stitched_text,
            final_transcript=self.final_transcript,
            segments=tuple(self.segments[seq] for seq in sorted(self.segments)),
            pending_seq_nos=tuple(self.pending_seq_nos),
            created_at=self.created_at,
        )
