#!/usr/bin/env python3
"""
Visit Scribe - Constants
フォーマット上の固定値と既定値を管理するモジュール
"""

# ========================================
# 基礎パラメータ
# ========================================
TARGET_SAMPLE_RATE = 16000  # 文字起こしAPIに送る標準サンプルレート

# ========================================
# セグメント分割の既定値
# ========================================
DEFAULT_SEGMENT_MS = 10000  # セグメント長（10秒）
DEFAULT_OVERLAP_MS = 250  # 直前セグメントとのオーバーラップ（250ミリ秒）

# ========================================
# WAV（RIFF）フォーマット
# ========================================
WAV_HEADER_SIZE = 44  # 正準ヘッダのバイト数
WAV_FMT_CHUNK_SIZE = 16  # PCMのfmtチャンク本体サイズ
WAV_PCM_FORMAT = 1  # PCMフォーマットコード
WAV_BIT_DEPTH = 16  # 符号付き16bit
WAV_CHANNELS = 1  # モノラル
WAV_MIME_TYPE = "audio/wav"

# ========================================
# 臨床ノート
# ========================================
CLINICAL_NOTE_SECTIONS = (
    "Chief Complaint",
    "HPI",
    "ROS",
    "Physical Exam",
    "Assessment",
    "Plan",
)
