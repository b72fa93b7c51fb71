#!/usr/bin/env python3
"""
Visit Scribe - Audio Infrastructure
オーディオ関連のインフラストラクチャ層
"""

# 音声ソース
from .sources import (
    ArrayAudioSource,
    AudioDevice,
    AudioSource,
    FileAudioSource,
    MicrophoneAudioSource,
)

# セグメント分割とWAV
from .segmenter import AudioWindow, SampleBuffer, Segmenter, drain_segments, ms_to_samples
from .wav_codec import encode_wav, float_to_pcm16, parse_wav_header

# 音声ストリーム
from .audio_stream import AudioStream, AudioStreamStatus

__all__ = [
    # 音声ソース
    "ArrayAudioSource",
    "AudioDevice",
    "AudioSource",
    "FileAudioSource",
    "MicrophoneAudioSource",
    # セグメント分割
    "AudioWindow",
    "SampleBuffer",
    "Segmenter",
    "drain_segments",
    "ms_to_samples",
    # WAV
    "encode_wav",
    "float_to_pcm16",
    "parse_wav_header",
    # 音声ストリーム
    "AudioStream",
    "AudioStreamStatus",
]
