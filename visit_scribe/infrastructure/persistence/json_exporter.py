#!/usr/bin/env python3
"""
Visit Scribe - JSON Exporter
インフラ層：診察記録のJSON永続化
"""

import json
import re
from datetime import datetime
from pathlib import Path
from typing import Any

from visit_scribe.domain.models import Segment, VisitRecord

# ファイル名に使えない文字の置換用
_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9_.-]+")


class SessionJsonExporter:
    """
    VisitRecordをJSON形式で永続化

    責務:
    - セグメント、累積テキスト、最終トランスクリプト、臨床ノートのシリアライズ
    - ファイルシステムへの保存
    """

    @staticmethod
    def default_filename(record: VisitRecord) -> str:
        """
        デフォルトファイル名: visit_<session>_YYYYMMDD_HHMMSS.json

        >>> from visit_scribe.domain import SessionSnapshot, SessionState
        >>> snapshot = SessionSnapshot(
        ...     "room 1/a", SessionState.EMPTY, -1, "", None, (), (),
        ...     datetime(2024, 5, 1, 9, 30, 0),
        ... )
        >>> SessionJsonExporter.default_filename(VisitRecord(snapshot=snapshot))
        'visit_room_1_a_20240501_093000.json'
        """
        session = _UNSAFE_FILENAME_CHARS.sub("_", record.snapshot.session_id)
        timestamp = record.snapshot.created_at.strftime("%Y%m%d_%H%M%S")
        return f"visit_{session}_{timestamp}.json"

    @staticmethod
    def _segment_to_dict(segment: Segment) -> dict[str, Any]:
        return {
            "seq_no": segment.seq_no,
            "start_ms": segment.start_ms,
            "end_ms": segment.end_ms,
            "duration_ms": segment.duration_ms,
            "overlap_ms": segment.overlap_ms,
            "transcript": segment.transcript,
        }

    @classmethod
    def to_dict(cls, record: VisitRecord) -> dict[str, Any]:
        """VisitRecordをJSON互換のdictに変換"""
        snapshot = record.snapshot
        output_data: dict[str, Any] = {
            "session_id": snapshot.session_id,
            "session_start": snapshot.created_at.isoformat(),
            "session_end": datetime.now().isoformat(),
            "state": snapshot.state.value,
            "total_segments": len(snapshot.segments),
            "total_errors": len(record.errors),
            "pending_seq_nos": list(snapshot.pending_seq_nos),
            "stitched_text": snapshot.stitched_text,
            "final_transcript": snapshot.final_transcript,
            "segments": [cls._segment_to_dict(seg) for seg in snapshot.segments],
            "errors": [
                {"timestamp": err.timestamp.isoformat(), "message": err.message}
                for err in record.errors
            ],
        }

        # 参考情報とノートは存在する場合のみ追加
        if record.patient_name:
            output_data["patient_name"] = record.patient_name
        if record.visit_reason:
            output_data["visit_reason"] = record.visit_reason
        if record.clinical_note:
            output_data["clinical_note"] = record.clinical_note

        return output_data

    @classmethod
    def save_to_file(
        cls,
        record: VisitRecord,
        output_path: Path | None = None,
        output_dir: Path | str = ".",
    ) -> Path:
        """
        診察記録をJSONファイルに保存

        Args:
            record: 保存する診察記録
            output_path: 出力先パス（Noneの場合は output_dir 配下に自動生成）
            output_dir: 自動生成時の出力先ディレクトリ

        Returns:
            Path: 保存されたファイルのパス
        """
        if output_path is None:
            directory = Path(output_dir)
            directory.mkdir(parents=True, exist_ok=True)
            output_path = directory / cls.default_filename(record)

        with open(output_path, "w", encoding="utf-8") as f:
            json.dump(cls.to_dict(record), f, ensure_ascii=False, indent=2)

        return output_path
