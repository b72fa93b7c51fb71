#!/usr/bin/env python3
"""
Visit Scribe - Speech-to-Text Infrastructure
文字起こしAPIクライアントとワーカー
"""

from .transcription_client import (
    OpenAITranscriptionClient,
    TranscriptionClient,
    create_transcription_client,
)
from .segment_transcriber import SegmentTranscriber

__all__ = [
    "OpenAITranscriptionClient",
    "SegmentTranscriber",
    "TranscriptionClient",
    "create_transcription_client",
]
