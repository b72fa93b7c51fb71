"""SampleBuffer / drain_segments / Segmenter のテスト"""

import sys
from unittest.mock import MagicMock

import numpy as np
import pytest

# sounddevice が利用できない環境（Linux CI等）ではモックする
if "sounddevice" not in sys.modules:
    sys.modules["sounddevice"] = MagicMock()

from visit_scribe.domain import (
    CoreSettings,
    SegmentationConfigError,
    SegmentationSettings,
)
from visit_scribe.infrastructure.audio.segmenter import (
    SampleBuffer,
    Segmenter,
    drain_segments,
    ms_to_samples,
)

# 1000Hz: 1サンプル = 1ミリ秒で計算しやすくする
SAMPLE_RATE = 1000
SEGMENT_MS = 100
OVERLAP_MS = 20
HOP = SEGMENT_MS - OVERLAP_MS


@pytest.fixture
def core_settings() -> CoreSettings:
    return CoreSettings(sample_rate=SAMPLE_RATE)


@pytest.fixture
def segmenter(core_settings: CoreSettings) -> Segmenter:
    """100ms窓 / 20msオーバーラップ / 末尾フラッシュ閾値なし"""
    return Segmenter(
        core_settings,
        SegmentationSettings(segment_ms=SEGMENT_MS, overlap_ms=OVERLAP_MS, min_tail_ms=0),
    )


def ramp(n: int, start: int = 0) -> np.ndarray:
    """サンプル位置がそのまま値になる信号"""
    return np.arange(start, start + n, dtype=np.float32)


class TestSampleBuffer:
    """SampleBufferのテスト"""

    def test_push_appends_any_length(self) -> None:
        """任意長のpushを受け付ける（空も可）"""
        buffer = SampleBuffer()
        buffer.push(ramp(3))
        buffer.push([])
        buffer.push(ramp(2, start=3))
        assert len(buffer) == 5
        np.testing.assert_array_equal(buffer.view(), ramp(5))

    def test_view_is_read_only(self) -> None:
        """viewへの書き込みは失敗する"""
        buffer = SampleBuffer()
        buffer.push(ramp(4))
        with pytest.raises(ValueError):
            buffer.view()[0] = 1.0

    def test_consume_drops_head(self) -> None:
        buffer = SampleBuffer()
        buffer.push(ramp(10))
        buffer.consume(4)
        np.testing.assert_array_equal(buffer.view(), ramp(6, start=4))

    def test_clear(self) -> None:
        buffer = SampleBuffer()
        buffer.push(ramp(10))
        buffer.clear()
        assert len(buffer) == 0


class TestDrainSegments:
    """drain_segmentsのテスト"""

    def test_emits_expected_number_of_windows(self) -> None:
        """N >= segment のとき floor((N - segment) / hop) + 1 個の窓を出す"""
        buffer = SampleBuffer()
        buffer.push(ramp(260))
        windows: list[np.ndarray] = []

        emitted = drain_segments(buffer, SEGMENT_MS, OVERLAP_MS, windows.append)

        assert emitted == (260 - SEGMENT_MS) // HOP + 1 == 3
        assert [w[0] for w in windows] == [0, 80, 160]
        assert all(len(w) == SEGMENT_MS for w in windows)

    def test_consecutive_windows_share_overlap(self) -> None:
        """前の窓の末尾 overlap サンプルが次の窓の先頭と一致する"""
        buffer = SampleBuffer()
        buffer.push(ramp(260))
        windows: list[np.ndarray] = []
        drain_segments(buffer, SEGMENT_MS, OVERLAP_MS, windows.append)

        for prev, nxt in zip(windows, windows[1:]):
            np.testing.assert_array_equal(prev[-OVERLAP_MS:], nxt[:OVERLAP_MS])

    def test_retains_overlap_tail_after_drain(self) -> None:
        """ホップ境界までしか破棄せず、残りは次回のために保持する"""
        buffer = SampleBuffer()
        buffer.push(ramp(260))
        drain_segments(buffer, SEGMENT_MS, OVERLAP_MS, lambda w: None)

        assert len(buffer) == 260 - 3 * HOP
        assert buffer.view()[0] == 240

    def test_never_emits_short_window(self) -> None:
        """セグメント長未満では何も出さない"""
        buffer = SampleBuffer()
        buffer.push(ramp(SEGMENT_MS - 1))
        windows: list[np.ndarray] = []

        assert drain_segments(buffer, SEGMENT_MS, OVERLAP_MS, windows.append) == 0
        assert windows == []
        assert len(buffer) == SEGMENT_MS - 1

    def test_repeated_drain_is_idempotent(self) -> None:
        """新しいpushなしに再度drainしても何も出さない"""
        buffer = SampleBuffer()
        buffer.push(ramp(260))
        drain_segments(buffer, SEGMENT_MS, OVERLAP_MS, lambda w: None)

        windows: list[np.ndarray] = []
        assert drain_segments(buffer, SEGMENT_MS, OVERLAP_MS, windows.append) == 0
        assert windows == []

    def test_incremental_pushes_match_single_push(self) -> None:
        """小刻みなpushと一括pushで同じ窓列になる"""
        signal = ramp(500)

        single = SampleBuffer()
        single.push(signal)
        expected: list[np.ndarray] = []
        drain_segments(single, SEGMENT_MS, OVERLAP_MS, expected.append)

        chunked = SampleBuffer()
        actual: list[np.ndarray] = []
        for start in range(0, len(signal), 37):
            chunked.push(signal[start : start + 37])
            drain_segments(chunked, SEGMENT_MS, OVERLAP_MS, actual.append)

        assert len(actual) == len(expected)
        for a, e in zip(actual, expected):
            np.testing.assert_array_equal(a, e)

    @pytest.mark.parametrize(
        ("segment", "overlap"),
        [(0, 0), (-10, 0), (100, 100), (100, 150), (100, -1)],
    )
    def test_invalid_configuration_raises_before_touching_buffer(
        self, segment: int, overlap: int
    ) -> None:
        """ホップが正にならない設定はエラー（バッファは変更しない）"""
        buffer = SampleBuffer()
        buffer.push(ramp(300))

        with pytest.raises(SegmentationConfigError):
            drain_segments(buffer, segment, overlap, lambda w: None)
        assert len(buffer) == 300

    def test_consumer_error_keeps_delivered_windows_consumed(self) -> None:
        """consumerが例外を投げても、渡し済みの窓は再送しない"""
        buffer = SampleBuffer()
        buffer.push(ramp(260))
        delivered: list[np.ndarray] = []

        def consumer(window: np.ndarray) -> None:
            delivered.append(window)
            if len(delivered) == 2:
                raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            drain_segments(buffer, SEGMENT_MS, OVERLAP_MS, consumer)

        # 2つ目の窓は渡し済みだがカーソルは進んでいない
        assert buffer.view()[0] == HOP


class TestSegmenter:
    """Segmenterのテスト"""

    def test_ms_to_samples_rounds(self) -> None:
        """切り捨てではなく丸める"""
        assert ms_to_samples(250, 16000) == 4000
        assert ms_to_samples(0.6, 1000) == 1
        assert ms_to_samples(10000, 44100) == 441000

    def test_default_sizes_at_16khz(self) -> None:
        segmenter = Segmenter(CoreSettings(), SegmentationSettings())
        assert segmenter.segment_samples == 160000
        assert segmenter.overlap_samples == 4000
        assert segmenter.hop_samples == 156000

    def test_windows_carry_sequence_and_timing(self, segmenter: Segmenter) -> None:
        """連番と時刻情報（segment 0 のオーバーラップは0）"""
        windows = segmenter.push(ramp(260))

        assert [w.seq_no for w in windows] == [0, 1, 2]
        assert [w.start_ms for w in windows] == [0, 80, 160]
        assert [w.end_ms for w in windows] == [100, 180, 260]
        assert [w.overlap_ms for w in windows] == [0, OVERLAP_MS, OVERLAP_MS]
        assert all(w.duration_ms == SEGMENT_MS for w in windows)

    def test_to_segment(self, segmenter: Segmenter) -> None:
        window = segmenter.push(ramp(100))[0]
        segment = window.to_segment("hello")
        assert (segment.seq_no, segment.start_ms, segment.end_ms) == (0, 0, 100)
        assert segment.transcript == "hello"

    def test_sequence_continues_across_pushes(self, segmenter: Segmenter) -> None:
        first = segmenter.push(ramp(150))
        second = segmenter.push(ramp(110, start=150))
        assert [w.seq_no for w in first + second] == [0, 1, 2]
        assert second[-1].samples[0] == 160

    def test_flush_emits_remaining_new_audio(self, segmenter: Segmenter) -> None:
        """末尾フラッシュは残り全体を短いセグメントとして出す"""
        segmenter.push(ramp(310))  # 窓: 0, 80, 160 → 残り 70 サンプル（新規 50）
        tail = segmenter.flush()

        assert tail is not None
        assert tail.seq_no == 3
        assert tail.start_ms == 240
        assert tail.duration_ms == 70
        assert tail.end_ms == 310
        assert tail.overlap_ms == OVERLAP_MS
        assert len(segmenter.buffer) == 0

    def test_flush_skips_already_sent_overlap(self, segmenter: Segmenter) -> None:
        """オーバーラップ分しか残っていなければ何も出さない"""
        segmenter.push(ramp(260))
        assert segmenter.flush() is None

    def test_flush_respects_min_tail(self, core_settings: CoreSettings) -> None:
        segmenter = Segmenter(
            core_settings,
            SegmentationSettings(segment_ms=SEGMENT_MS, overlap_ms=OVERLAP_MS, min_tail_ms=60),
        )
        segmenter.push(ramp(310))  # 新規 50ms
        assert segmenter.flush() is None

    def test_flush_on_short_stream(self, segmenter: Segmenter) -> None:
        """1窓に満たない録音も末尾として出す"""
        segmenter.push(ramp(40))
        tail = segmenter.flush()
        assert tail is not None
        assert (tail.seq_no, tail.start_ms, tail.duration_ms, tail.overlap_ms) == (
            0,
            0,
            40,
            0,
        )

    def test_reset(self, segmenter: Segmenter) -> None:
        segmenter.push(ramp(260))
        segmenter.reset()
        assert segmenter.next_seq_no == 0
        assert len(segmenter.buffer) == 0

    def test_sample_level_invalid_configuration(self) -> None:
        """ミリ秒では有効でもサンプル換算でホップが0になる設定は構築時にエラー"""
        with pytest.raises(SegmentationConfigError):
            Segmenter(
                CoreSettings(sample_rate=10),
                SegmentationSettings(segment_ms=100, overlap_ms=60),
            )
