#  Copyright (c) 2025, Anemll  All rights reserved.
#
#  Use of this source code is governed by a MIT license that can be
#  found in the LICENSE.txt file or at https://opensource.org/license/mit

"""Benchmark corpus: kana prompts, marker handling and output matching."""

import logging
import unicodedata
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

import yaml

logger = logging.getLogger(__name__)

# Private-use code points zenz_v1 expects around the kana input.
KANA_START = "\uEE00"
KANA_END = "\uEE01"

DEFAULT_LABEL = "[Custom]"
SHORT_CASE_COUNT = 6


@dataclass(frozen=True)
class BenchmarkCase:
    label: str
    prompt: str
    expected_output: str = ""

    @property
    def encoded_prompt(self) -> str:
        return encoded_prompt(self.prompt)


def remove_kana_markers(text: str) -> str:
    return text.replace(KANA_START, "").replace(KANA_END, "")


def encoded_prompt(prompt: str) -> str:
    """Wrap the trimmed kana prompt in the start/end markers."""
    trimmed = prompt.strip()
    if not trimmed:
        return ""
    return f"{KANA_START}{trimmed}{KANA_END}"


def sanitize_case(label: str, prompt: str, expected: str = "") -> Optional[BenchmarkCase]:
    """Normalize a user supplied case, or None when the prompt is empty."""
    trimmed_prompt = remove_kana_markers(prompt or "").strip()
    if not trimmed_prompt:
        return None
    trimmed_label = (label or "").strip() or DEFAULT_LABEL
    return BenchmarkCase(trimmed_label, trimmed_prompt, (expected or "").strip())


_SEEDS = [
    ("[ニホンゴ]", "ニホンゴ"),
    ("[カンコクゴ]", "カンコクゴヲベンキョウスル"),
    ("[LongJP]", "ワタシハイマニホンゴノベンキョウヲシテイテ、スマートフォンノキーボードデヘンカンセイドヲアゲタイトオモッテイマス"),
    ("[Greet1]", "オハヨウゴザイマス"),
    ("[Greet2]", "ハジメマシテ、ワタシハスカイラインデス"),
    ("[ShortQ]", "ゲンキデスカ"),
    ("[Weather]", "キョウハトテモアツイデスネ"),
    ("[Meetup]", "アシタノゴゴサンジニエキデアイマショウ"),
    ("[Dinner]", "キョウノバンナニヲタベタイデスカ"),
    ("[Culture]", "ニホンノブンカニキョウミガアリマス"),
    ("[KoreanSkill]", "カンコクゴヲモットジョウズニハナセルヨウニナリタイデス"),
    ("[HobbyMovie]", "ヒマナトキハヨクエイガヲミマス"),
    ("[HobbyBook]", "ワタシノシュミハホンヲヨムコトデス"),
    ("[PCFreeze]", "コンピュータノガメンガフリーズシテシマイマシタ"),
    ("[Battery]", "スマホノバッテリーガスグニナクナッテコマッテイマス"),
    ("[Keyboard]", "キーボードノヘンカンセイドガアガルトモットハヤクウテマス"),
    ("[Cafe]", "キノウハトモダチトエキマエノカフェデコーヒーヲノミマシタ"),
    ("[TimeMeet]", "サンジニシゴトガオワルノデヨジニアエマス"),
    ("[NextHoliday]", "ツギノヤスミハドコニイキマショウカ"),
    ("[LongJP2]", "ワタシノシュミハホンヲヨムコトデ、トクニミステリーショウセツガスキデス"),
    ("[LongJP3]", "マイニチシゴトノマエニコーヒーヲイッパイノムノガナンタノシミデス"),
    ("[LongJP4]", "ワタシハマイニチネルトキニニジカンホドニホンゴノベンキョウヲシテイマス"),
    ("[LongJPKeyboard]", "イツモスマートフォンノキーボードデニホンゴヲウツノデ、ヘンカンセイドガタカイトホントウニタスカリマス"),
]

DEFAULT_CASES: List[BenchmarkCase] = [BenchmarkCase(label, prompt) for label, prompt in _SEEDS]


def short_subset(cases: List[BenchmarkCase], count: int = SHORT_CASE_COUNT) -> List[BenchmarkCase]:
    return list(cases[:count])


def load_cases(path) -> List[BenchmarkCase]:
    """Load a YAML list of {label, prompt, expected} entries.

    Entries without a usable prompt are skipped. A file that is not a YAML
    list raises ValueError.
    """
    path = Path(path)
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise ValueError(f"Error loading cases file {path}: {e}") from e

    if data is None:
        return []
    if isinstance(data, dict):
        data = data.get("cases", [])
    if not isinstance(data, list):
        raise ValueError(f"Cases file {path} must contain a list of cases")

    cases = []
    for index, entry in enumerate(data):
        if not isinstance(entry, dict):
            logger.warning("[Cases] Skipping entry %d: expected a mapping, got %r", index, entry)
            continue
        case = sanitize_case(
            str(entry.get("label", "") or ""),
            str(entry.get("prompt", "") or ""),
            str(entry.get("expected", "") or ""),
        )
        if case is None:
            logger.warning("[Cases] Skipping entry %d: empty prompt", index)
            continue
        cases.append(case)
    return cases


def normalized_comparison_text(text: str) -> str:
    """Marker-free, diacritic and case folded text with all whitespace removed."""
    text = remove_kana_markers(text)
    decomposed = unicodedata.normalize("NFKD", text)
    folded = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    folded = unicodedata.normalize("NFC", folded).casefold()
    return "".join(folded.split())


def output_matches_expected(output: str, expected: str) -> bool:
    normalized_output = normalized_comparison_text(output)
    normalized_expected = normalized_comparison_text(expected)
    if not normalized_output or not normalized_expected:
        return False
    return normalized_output in normalized_expected or normalized_expected in normalized_output
