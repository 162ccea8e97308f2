#  Copyright (c) 2025, Anemll  All rights reserved.
#
#  Use of this source code is governed by a MIT license that can be
#  found in the LICENSE.txt file or at https://opensource.org/license/mit

"""Assembly of the tokenizer and every selected engine variant."""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, FrozenSet, List, Optional

from .models import (
    make_async_loader,
    make_stateful_loader,
    make_stateless_loader,
    resolve_stateful_model_async,
    resolve_stateless_model_async,
)
from .variants import StatefulVariant, StatelessVariant

logger = logging.getLogger(__name__)

AsyncLoader = Callable[[], Awaitable[Optional[Any]]]


def _variant_names(variants) -> str:
    if not variants:
        return "none"
    variant_cls = type(next(iter(variants)))
    return ", ".join(v.value for v in variant_cls if v in variants)


@dataclass(frozen=True)
class ModelLoadConfiguration:
    stateless: FrozenSet[StatelessVariant] = frozenset()
    stateful: FrozenSet[StatefulVariant] = frozenset()

    @classmethod
    def empty(cls) -> "ModelLoadConfiguration":
        return cls(frozenset(), frozenset())

    @classmethod
    def all_variants(cls) -> "ModelLoadConfiguration":
        return cls(frozenset(StatelessVariant), frozenset(StatefulVariant))

    @property
    def is_empty(self) -> bool:
        return not self.stateless and not self.stateful

    @property
    def summary_description(self) -> str:
        return f"stateless: {_variant_names(self.stateless)} | stateful: {_variant_names(self.stateful)}"


def load_tokenizer(path):
    """Load a HuggingFace tokenizer, using EOS as the padding token when none is set."""
    from transformers import AutoTokenizer

    tokenizer = AutoTokenizer.from_pretrained(str(path), use_fast=False, trust_remote_code=True)
    if tokenizer.pad_token is None:
        tokenizer.pad_token = tokenizer.eos_token
        tokenizer.pad_token_id = tokenizer.eos_token_id
    return tokenizer


@dataclass
class EngineLoaders:
    """Async loaders for the four model artifacts and the tokenizer."""
    stateless_fp16: AsyncLoader
    stateless_8bit: AsyncLoader
    stateful_fp16: AsyncLoader
    stateful_8bit: AsyncLoader
    tokenizer: AsyncLoader

    @classmethod
    def from_settings(cls, settings) -> "EngineLoaders":
        units = settings.compute_units
        tokenizer_path = settings.tokenizer

        async def tokenizer():
            return await asyncio.to_thread(load_tokenizer, tokenizer_path)

        return cls(
            stateless_fp16=make_async_loader(make_stateless_loader(
                settings.artifact_path(settings.stateless_fp16), units, StatelessVariant.STANDARD_FP16.debug_name)),
            stateless_8bit=make_async_loader(make_stateless_loader(
                settings.artifact_path(settings.stateless_8bit), units, StatelessVariant.COMPRESSED_8BIT.debug_name)),
            stateful_fp16=make_async_loader(make_stateful_loader(
                settings.artifact_path(settings.stateful_fp16), units, StatefulVariant.STANDARD_FP16.debug_name)),
            stateful_8bit=make_async_loader(make_stateful_loader(
                settings.artifact_path(settings.stateful_8bit), units, StatefulVariant.COMPRESSED_8BIT.debug_name)),
            tokenizer=tokenizer,
        )


@dataclass
class BenchmarkEnvironment:
    tokenizer: Any
    stateless_models: Dict[StatelessVariant, Any] = field(default_factory=dict)
    stateful_models: Dict[StatefulVariant, Any] = field(default_factory=dict)
    missing: List[str] = field(default_factory=list)

    @property
    def has_models(self) -> bool:
        return bool(self.stateless_models or self.stateful_models)


async def make_benchmark_environment(config: ModelLoadConfiguration,
                                     loaders: EngineLoaders) -> Optional[BenchmarkEnvironment]:
    """Load the tokenizer and every selected variant.

    Returns None when nothing is selected or nothing could be loaded.
    Raises RuntimeError when the tokenizer cannot be loaded.
    """
    if config.is_empty:
        logger.warning("[BenchmarkEnvironment] Skipped loading: empty configuration.")
        return None

    try:
        tokenizer = await loaders.tokenizer()
    except Exception as e:
        raise RuntimeError(f"Failed to load tokenizer: {e}") from e
    if tokenizer is None:
        raise RuntimeError("Failed to load tokenizer")

    stateless_models = {}
    stateful_models = {}
    missing = []

    # Stable order keeps the load log deterministic
    for variant in StatelessVariant:
        if variant not in config.stateless:
            continue
        model = await resolve_stateless_model_async(variant, loaders.stateless_fp16, loaders.stateless_8bit)
        if model is None:
            missing.append(variant.debug_name)
            logger.warning("[BenchmarkEnvironment] Missing stateless model %s.", variant.debug_name)
        else:
            stateless_models[variant] = model

    for variant in StatefulVariant:
        if variant not in config.stateful:
            continue
        handle = await resolve_stateful_model_async(variant, loaders.stateful_fp16, loaders.stateful_8bit)
        if handle is None:
            missing.append(variant.debug_name)
            logger.warning("[BenchmarkEnvironment] Missing stateful model %s.", variant.debug_name)
        else:
            if handle.variant is not variant:
                logger.info("[BenchmarkEnvironment] %s resolved to %s.",
                            variant.debug_name, handle.variant.debug_name)
            stateful_models[variant] = handle

    if not stateless_models and not stateful_models:
        logger.error("[BenchmarkEnvironment] Failed to load any selected models.")
        return None

    return BenchmarkEnvironment(tokenizer, stateless_models, stateful_models, missing)
