#!/usr/bin/env python3
"""
Visit Scribe - WAV Codec Module
モノラル16bit PCM WAVのエンコードとヘッダ解析を提供するモジュール
"""

import struct

import numpy as np
from numpy.typing import ArrayLike

from visit_scribe.domain import WavFormatError, WavInfo
from visit_scribe.domain.constants import (
    WAV_BIT_DEPTH,
    WAV_CHANNELS,
    WAV_FMT_CHUNK_SIZE,
    WAV_HEADER_SIZE,
    WAV_PCM_FORMAT,
)

# RIFF/WAVE 正準ヘッダ（リトルエンディアン、44バイト）
_HEADER_STRUCT = struct.Struct("<4sI4s4sIHHIIHH4sI")
# fmtチャンク本体（先頭16バイト）
_FMT_STRUCT = struct.Struct("<HHIIHH")
# チャンクヘッダ（ID + サイズ）
_CHUNK_HEADER_STRUCT = struct.Struct("<4sI")


def float_to_pcm16(samples: ArrayLike) -> np.ndarray:
    """
    float サンプルを符号付き16bitに変換

    [-1, 1] にクランプしたうえで、負値は32768倍、正値は32767倍する。
    """
    clipped = np.clip(np.asarray(samples, dtype=np.float32).reshape(-1), -1.0, 1.0)
    scaled = np.where(clipped < 0, clipped * 32768.0, clipped * 32767.0)
    return scaled.astype("<i2")


def encode_wav(samples: ArrayLike, sample_rate: int) -> bytes:
    """
    サンプル列をモノラル16bit PCM WAVにエンコード

    Args:
        samples: float サンプル（名目範囲 [-1, 1]）
        sample_rate: サンプルレート（Hz）

    Returns:
        bytes: 44バイトヘッダ + 2バイト × サンプル数
    """
    if sample_rate <= 0:
        raise ValueError(f"sample_rate must be positive (got {sample_rate})")

    pcm = float_to_pcm16(samples).tobytes()
    block_align = WAV_CHANNELS * WAV_BIT_DEPTH // 8
    header = _HEADER_STRUCT.pack(
        b"RIFF",
        WAV_HEADER_SIZE - 8 + len(pcm),
        b"WAVE",
        b"fmt ",
        WAV_FMT_CHUNK_SIZE,
        WAV_PCM_FORMAT,
        WAV_CHANNELS,
        sample_rate,
        sample_rate * block_align,
        block_align,
        WAV_BIT_DEPTH,
        b"data",
        len(pcm),
    )
    return header + pcm


def parse_wav_header(data: bytes) -> WavInfo:
    """
    WAVヘッダを解析してメタデータを返す

    RIFFチャンクを順に走査するため、data の前に LIST 等のチャンクがあっても読める。

    Args:
        data: WAVファイルのバイト列

    Returns:
        WavInfo: サンプルレート、チャンネル数、ビット深度、長さ（ミリ秒）

    Raises:
        WavFormatError: マーカーの欠落やフィールド値が不正な場合
    """
    if len(data) < 12 or data[0:4] != b"RIFF":
        raise WavFormatError("RIFF", "missing RIFF marker")
    if data[8:12] != b"WAVE":
        raise WavFormatError("WAVE", "missing WAVE marker")

    fmt: tuple[int, int, int, int, int, int] | None = None
    data_bytes: int | None = None
    offset = 12
    while offset + _CHUNK_HEADER_STRUCT.size <= len(data):
        chunk_id, chunk_size = _CHUNK_HEADER_STRUCT.unpack_from(data, offset)
        body = offset + _CHUNK_HEADER_STRUCT.size

        if chunk_id == b"fmt ":
            if chunk_size < _FMT_STRUCT.size or body + _FMT_STRUCT.size > len(data):
                raise WavFormatError("fmt ", f"fmt chunk too short ({chunk_size} bytes)")
            fmt = _FMT_STRUCT.unpack_from(data, body)
        elif chunk_id == b"data":
            if fmt is None:
                raise WavFormatError("fmt ", "data chunk appears before fmt chunk")
            # ストリーミング書き出し等でサイズが実データを超える場合は実データに合わせる
            data_bytes = min(chunk_size, len(data) - body)
            break

        # チャンクは2バイト境界に揃えられる
        offset = body + chunk_size + (chunk_size & 1)

    if fmt is None:
        raise WavFormatError("fmt ", "missing fmt chunk")
    if data_bytes is None:
        raise WavFormatError("data", "missing data chunk")

    audio_format, num_channels, sample_rate, _byte_rate, _block_align, bit_depth = fmt
    if audio_format != WAV_PCM_FORMAT:
        raise WavFormatError(
            "audio_format", f"unsupported format code {audio_format} (PCM only)"
        )
    if num_channels <= 0:
        raise WavFormatError("num_channels", f"invalid channel count {num_channels}")
    if sample_rate <= 0:
        raise WavFormatError("sample_rate", f"invalid sample rate {sample_rate}")
    if bit_depth <= 0 or bit_depth % 8:
        raise WavFormatError("bit_depth", f"invalid bit depth {bit_depth}")

    bytes_per_frame = num_channels * bit_depth // 8
    duration_ms = int(round(data_bytes / bytes_per_frame / sample_rate * 1000))
    return WavInfo(
        sample_rate=sample_rate,
        num_channels=num_channels,
        bit_depth=bit_depth,
        duration_ms=duration_ms,
        data_bytes=data_bytes,
    )
