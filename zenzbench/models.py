#  Copyright (c) 2025, Anemll  All rights reserved.
#
#  Use of this source code is governed by a MIT license that can be
#  found in the LICENSE.txt file or at https://opensource.org/license/mit

"""Core ML engine adapters, artifact loaders and variant resolution.

Resolution always tries the loader matching the requested precision first
and falls back to the other precision once. A loader that fails returns
None; resolution never retries beyond that single fallback and never
caches a failure.
"""

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, TypeVar

from .variants import StatefulVariant, StatelessVariant

logger = logging.getLogger(__name__)

T = TypeVar("T")

COMPUTE_UNITS = ("all", "cpu_only", "cpu_and_gpu", "cpu_and_ne")


class CoreMLStatelessModel:
    """Stateless zenz graph: input_ids -> logits[batch, time, vocab]."""

    def __init__(self, model, name: str = "zenz_v1"):
        self.model = model
        self.name = name

    def logits(self, input_ids):
        return self.model.predict({"input_ids": input_ids})["logits"]

    async def logits_async(self, input_ids):
        return await asyncio.to_thread(self.logits, input_ids)


class CoreMLStatefulModel:
    """Stateful zenz graph carrying its KV cache in an MLState session."""

    def __init__(self, model, name: str = "zenz_v1_stateful"):
        self.model = model
        self.name = name

    def make_state(self):
        return self.model.make_state()

    def logits(self, input_ids, attention_mask, state):
        inputs = {"input_ids": input_ids, "attention_mask": attention_mask}
        return self.model.predict(inputs, state)["logits"]

    async def logits_async(self, input_ids, attention_mask, state):
        return await asyncio.to_thread(self.logits, input_ids, attention_mask, state)


@dataclass(frozen=True)
class StatefulModelHandle:
    """A stateful engine tagged with the precision that was actually loaded."""
    variant: StatefulVariant
    model: Any

    @classmethod
    def fp16(cls, model) -> "StatefulModelHandle":
        return cls(StatefulVariant.STANDARD_FP16, model)

    @classmethod
    def compressed_8bit(cls, model) -> "StatefulModelHandle":
        return cls(StatefulVariant.COMPRESSED_8BIT, model)

    def with_model(self, fp16: Callable[[Any], T], bit8: Callable[[Any], T]) -> T:
        if self.variant is StatefulVariant.STANDARD_FP16:
            return fp16(self.model)
        return bit8(self.model)

    async def with_model_async(self, fp16: Callable[[Any], Awaitable[T]],
                               bit8: Callable[[Any], Awaitable[T]]) -> T:
        if self.variant is StatefulVariant.STANDARD_FP16:
            return await fp16(self.model)
        return await bit8(self.model)


def _compute_unit(name: str):
    import coremltools as ct

    mapping = {
        "all": ct.ComputeUnit.ALL,
        "cpu_only": ct.ComputeUnit.CPU_ONLY,
        "cpu_and_gpu": ct.ComputeUnit.CPU_AND_GPU,
        "cpu_and_ne": ct.ComputeUnit.CPU_AND_NE,
    }
    if name not in mapping:
        raise ValueError(f"Unknown compute units '{name}', expected one of {', '.join(COMPUTE_UNITS)}")
    return mapping[name]


def load_coreml_model(path, compute_units: str = "cpu_and_gpu", stateful: bool = False):
    """Load a CoreML model, handling both .mlmodelc and .mlpackage formats.

    Returns None instead of raising when the artifact is missing or fails to load.
    """
    path = Path(path)
    if not path.exists():
        logger.warning("[ModelLoad] Artifact not found: %s", path)
        return None

    try:
        import coremltools as ct

        compute_unit = _compute_unit(compute_units)
        if path.suffix == ".mlmodelc":
            return ct.models.CompiledMLModel(str(path), compute_unit)
        if stateful:
            # Don't specify compute_units to allow make_state() to work
            return ct.models.MLModel(str(path))
        return ct.models.MLModel(str(path), compute_units=compute_unit)
    except Exception as e:
        logger.warning("[ModelLoad] Failed to load %s: %s", path.name, e)
        return None


def make_stateless_loader(path, compute_units: str = "cpu_and_gpu",
                          name: str = "zenz_v1") -> Callable[[], Optional[CoreMLStatelessModel]]:
    def load():
        model = load_coreml_model(path, compute_units)
        return CoreMLStatelessModel(model, name) if model is not None else None
    return load


def make_stateful_loader(path, compute_units: str = "cpu_and_gpu",
                         name: str = "zenz_v1_stateful") -> Callable[[], Optional[CoreMLStatefulModel]]:
    def load():
        model = load_coreml_model(path, compute_units, stateful=True)
        return CoreMLStatefulModel(model, name) if model is not None else None
    return load


def make_async_loader(load: Callable[[], Optional[T]]) -> Callable[[], Awaitable[Optional[T]]]:
    """Run a blocking loader off the event loop."""
    async def load_async():
        return await asyncio.to_thread(load)
    return load_async


def resolve_stateless_model(variant: StatelessVariant, load_fp16, load_8bit):
    """Load the requested stateless precision, falling back to the other one.

    Args:
        variant: Requested precision
        load_fp16: Loader for the FP16 artifact, returns a model or None
        load_8bit: Loader for the 8-bit artifact, returns a model or None

    Returns:
        The first model that loaded, or None when both loaders fail
    """
    if variant is StatelessVariant.STANDARD_FP16:
        model = load_fp16()
        if model is not None:
            return model
        return load_8bit()

    model = load_8bit()
    if model is not None:
        return model
    return load_fp16()


async def resolve_stateless_model_async(variant: StatelessVariant, load_fp16, load_8bit):
    if variant is StatelessVariant.STANDARD_FP16:
        model = await load_fp16()
        if model is not None:
            return model
        return await load_8bit()

    model = await load_8bit()
    if model is not None:
        return model
    return await load_fp16()


def resolve_stateful_model(variant: StatefulVariant, load_fp16,
                           load_8bit) -> Optional[StatefulModelHandle]:
    """Same fallback order as resolve_stateless_model, tagging the loaded precision."""
    if variant is StatefulVariant.STANDARD_FP16:
        model = load_fp16()
        if model is not None:
            return StatefulModelHandle.fp16(model)
        model = load_8bit()
        if model is not None:
            return StatefulModelHandle.compressed_8bit(model)
        return None

    model = load_8bit()
    if model is not None:
        return StatefulModelHandle.compressed_8bit(model)
    model = load_fp16()
    if model is not None:
        return StatefulModelHandle.fp16(model)
    return None


async def resolve_stateful_model_async(variant: StatefulVariant, load_fp16,
                                       load_8bit) -> Optional[StatefulModelHandle]:
    if variant is StatefulVariant.STANDARD_FP16:
        model = await load_fp16()
        if model is not None:
            return StatefulModelHandle.fp16(model)
        fallback = await load_8bit()
        if fallback is not None:
            return StatefulModelHandle.compressed_8bit(fallback)
        return None

    model = await load_8bit()
    if model is not None:
        return StatefulModelHandle.compressed_8bit(model)
    fallback = await load_fp16()
    if fallback is not None:
        return StatefulModelHandle.fp16(fallback)
    return None
