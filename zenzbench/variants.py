#  Copyright (c) 2025, Anemll  All rights reserved.
#
#  Use of this source code is governed by a MIT license that can be
#  found in the LICENSE.txt file or at https://opensource.org/license/mit

from dataclasses import dataclass
from enum import Enum
from typing import List, Union


class ExecutionMode(Enum):
    STATELESS = "stateless"
    STATEFUL = "stateful"


class StatelessVariant(Enum):
    """Precision tiers of the stateless zenz_v1 graph."""
    STANDARD_FP16 = "fp16"
    COMPRESSED_8BIT = "8bit"

    @property
    def is_fp16(self) -> bool:
        return self is StatelessVariant.STANDARD_FP16

    @property
    def label_suffix(self) -> str:
        return " [FP16]" if self.is_fp16 else " [8-bit]"

    @property
    def debug_name(self) -> str:
        return "zenz_v1" if self.is_fp16 else "zenz_v1-8bit"

    @property
    def ui_title(self) -> str:
        return "zenz_v1 (FP16 stateless)" if self.is_fp16 else "zenz_v1 (8-bit stateless)"

    @property
    def ui_description(self) -> str:
        if self.is_fp16:
            return "Highest fidelity logits with the largest memory footprint."
        return "Quantized for lower RAM/GPU demand at the cost of precision."


class StatefulVariant(Enum):
    """Precision tiers of the stateful (KV cache) zenz_v1 graph."""
    STANDARD_FP16 = "fp16"
    COMPRESSED_8BIT = "8bit"

    @property
    def is_fp16(self) -> bool:
        return self is StatefulVariant.STANDARD_FP16

    @property
    def label_suffix(self) -> str:
        return " [Stateful FP16]" if self.is_fp16 else " [Stateful 8-bit]"

    @property
    def debug_name(self) -> str:
        return "zenz_v1_stateful" if self.is_fp16 else "zenz_v1_stateful-8bit"

    @property
    def ui_title(self) -> str:
        return "zenz_v1_stateful (FP16)" if self.is_fp16 else "zenz_v1_stateful (8-bit)"

    @property
    def ui_description(self) -> str:
        if self.is_fp16:
            return "Streaming Core ML graph with full precision states."
        return "Smaller recurrent weights for lower-latency streaming."


Variant = Union[StatelessVariant, StatefulVariant]

_VARIANT_ALIASES = {
    "fp16": "fp16",
    "standard_fp16": "fp16",
    "8bit": "8bit",
    "8-bit": "8bit",
    "int8": "8bit",
    "compressed_8bit": "8bit",
}


def parse_variant(variant_cls, text: str):
    """Parse 'fp16' / '8bit' (or an enum member name) into a variant of variant_cls."""
    key = _VARIANT_ALIASES.get(str(text).strip().lower())
    if key is None:
        raise ValueError(f"Unknown {variant_cls.__name__} '{text}' (expected fp16 or 8bit)")
    return variant_cls(key)


@dataclass(frozen=True)
class BenchmarkPlanEntry:
    mode: ExecutionMode
    variant: Variant

    @property
    def label_suffix(self) -> str:
        return self.variant.label_suffix

    @property
    def debug_name(self) -> str:
        return self.variant.debug_name

    @staticmethod
    def default_order() -> List["BenchmarkPlanEntry"]:
        return [
            BenchmarkPlanEntry(ExecutionMode.STATELESS, StatelessVariant.STANDARD_FP16),
            BenchmarkPlanEntry(ExecutionMode.STATELESS, StatelessVariant.COMPRESSED_8BIT),
            BenchmarkPlanEntry(ExecutionMode.STATEFUL, StatefulVariant.STANDARD_FP16),
            BenchmarkPlanEntry(ExecutionMode.STATEFUL, StatefulVariant.COMPRESSED_8BIT),
        ]
