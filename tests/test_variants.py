#  Copyright (c) 2025, Anemll  All rights reserved.
#
#  Use of this source code is governed by a MIT license that can be
#  found in the LICENSE.txt file or at https://opensource.org/license/mit

import pytest

from zenzbench.variants import (
    BenchmarkPlanEntry,
    ExecutionMode,
    StatefulVariant,
    StatelessVariant,
    parse_variant,
)


def test_default_order_is_stateless_then_stateful_fp16_first():
    order = BenchmarkPlanEntry.default_order()
    assert [(e.mode, e.variant) for e in order] == [
        (ExecutionMode.STATELESS, StatelessVariant.STANDARD_FP16),
        (ExecutionMode.STATELESS, StatelessVariant.COMPRESSED_8BIT),
        (ExecutionMode.STATEFUL, StatefulVariant.STANDARD_FP16),
        (ExecutionMode.STATEFUL, StatefulVariant.COMPRESSED_8BIT),
    ]


def test_label_suffixes_and_debug_names_are_distinct():
    entries = BenchmarkPlanEntry.default_order()
    assert [e.label_suffix for e in entries] == [
        " [FP16]", " [8-bit]", " [Stateful FP16]", " [Stateful 8-bit]",
    ]
    assert len({e.debug_name for e in entries}) == 4


def test_parse_variant_aliases():
    assert parse_variant(StatelessVariant, "fp16") is StatelessVariant.STANDARD_FP16
    assert parse_variant(StatelessVariant, " 8-bit ") is StatelessVariant.COMPRESSED_8BIT
    assert parse_variant(StatefulVariant, "INT8") is StatefulVariant.COMPRESSED_8BIT
    assert parse_variant(StatefulVariant, "standard_fp16") is StatefulVariant.STANDARD_FP16


def test_parse_variant_rejects_unknown():
    with pytest.raises(ValueError):
        parse_variant(StatelessVariant, "bf16")
