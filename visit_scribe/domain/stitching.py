#!/usr/bin/env python3
"""
Visit Scribe - Transcript Stitching
ドメイン層：オーバーラップ区間の重複除去によるトランスクリプト結合

文字起こしAPIはタイムスタンプのないプレーンテキストを返すため、
音声上の正確な位置合わせはできない。代わりに「累積テキストの末尾」と
「新しいセグメントの先頭」で一致する最長の語列を探し、重複分を落として結合する。
言い換えられた境界は検出できない近似であり、一致しない場合は全文を追加する
（内容の欠落よりも重複を許容する）。
"""

import re
from difflib import SequenceMatcher

from .settings import StitchSettings

# 比較時に語の前後から取り除く記号
_EDGE_PUNCTUATION = "\"'“”‘’()[]{}<>,.;:!?¡¿…-–—"
# 空白区切りの語
_WORD_PATTERN = re.compile(r"\S+")


def normalize_token(token: str) -> str:
    """比較用に語を正規化（大文字小文字・前後の句読点を無視）"""
    return token.strip(_EDGE_PUNCTUATION).casefold()


def _tokens_match(left: str, right: str, settings: StitchSettings) -> bool:
    if left == right:
        return True
    if settings.fuzzy_threshold is None:
        return False
    if min(len(left), len(right)) < settings.fuzzy_min_token_length:
        return False
    return SequenceMatcher(None, left, right).ratio() >= settings.fuzzy_threshold


def find_overlap(
    accumulated_words: list[str],
    transcript_words: list[str],
    settings: StitchSettings | None = None,
) -> int:
    """
    累積テキスト末尾と新しいテキスト先頭の重複語数を求める

    まず max_overlap_words 語までの範囲で最長一致を探し、見つからなければ
    それより長い重複（長い言い直しなど）を両テキストの全長まで探す。

    Args:
        accumulated_words: 正規化済みの累積テキストの語リスト
        transcript_words: 正規化済みの新しいセグメントの語リスト
        settings: 結合設定（Noneの場合は既定値）

    Returns:
        int: 新しいテキストの先頭から取り除くべき語数（一致なしは0）
    """
    settings = settings or StitchSettings()
    full = min(len(accumulated_words), len(transcript_words))
    capped = min(full, settings.max_overlap_words)

    size = _longest_match(
        accumulated_words, transcript_words, capped, settings.min_overlap_words, settings
    )
    if size == 0 and full > capped:
        shortest = max(capped + 1, settings.min_overlap_words)
        size = _longest_match(accumulated_words, transcript_words, full, shortest, settings)
    return size


def _longest_match(
    accumulated_words: list[str],
    transcript_words: list[str],
    longest: int,
    shortest: int,
    settings: StitchSettings,
) -> int:
    # 長い候補から順に試す（最長一致を優先）
    for size in range(longest, shortest - 1, -1):
        suffix = accumulated_words[-size:]
        prefix = transcript_words[:size]
        # 句読点だけの語は正規化で空になるため、中身のある語を含む場合のみ一致とみなす
        if not any(suffix):
            continue
        if all(_tokens_match(a, b, settings) for a, b in zip(suffix, prefix)):
            return size
    return 0


def stitch(
    accumulated: str, transcript: str | None, settings: StitchSettings | None = None
) -> str:
    """
    新しいセグメントの書き起こしを累積テキストに結合

    Args:
        accumulated: これまでの累積テキスト
        transcript: 新しいセグメントの書き起こし（Noneや空文字は追加なし）
        settings: 結合設定

    Returns:
        str: 結合後の累積テキスト

    Examples:
        >>> stitch("the patient reports a headache", "a headache that started yesterday")
        'the patient reports a headache that started yesterday'
        >>> stitch("patient is stable", "vitals within normal limits")
        'patient is stable vitals within normal limits'
    """
    text = (transcript or "").strip()
    base = accumulated.strip()
    if not text:
        return base
    if not base:
        return text

    matches = list(_WORD_PATTERN.finditer(text))
    accumulated_words = [normalize_token(w) for w in base.split()]
    transcript_words = [normalize_token(m.group(0)) for m in matches]

    overlap = find_overlap(accumulated_words, transcript_words, settings)
    if overlap == 0:
        return f"{base} {text}"

    # 重複した語の直後から元の文字列を切り出す（書式はそのまま維持）
    remainder = text[matches[overlap - 1].end() :].strip()
    if not remainder:
        return base
    return f"{base} {remainder}"
