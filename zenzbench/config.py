#  Copyright (c) 2025, Anemll  All rights reserved.
#
#  Use of this source code is governed by a MIT license that can be
#  found in the LICENSE.txt file or at https://opensource.org/license/mit

"""Benchmark settings from a YAML file plus command-line overrides.

Example bench.yaml:

    benchmark:
      model_dir: ./models
      tokenizer: ./models/tokenizer
      compute_units: cpu_and_gpu
      stateless: [fp16, 8bit]
      stateful: [fp16]
      include_sync: true
"""

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import FrozenSet, Iterable, Optional

import yaml

from .models import COMPUTE_UNITS
from .variants import StatefulVariant, StatelessVariant, parse_variant


@dataclass
class BenchmarkSettings:
    model_dir: str = "."
    tokenizer_path: Optional[str] = None
    compute_units: str = "cpu_and_gpu"
    stateless_fp16: str = "zenz_v1.mlpackage"
    stateless_8bit: str = "zenz_v1_8bit.mlpackage"
    stateful_fp16: str = "zenz_v1_stateful.mlpackage"
    stateful_8bit: str = "zenz_v1_stateful_8bit.mlpackage"
    stateless: FrozenSet[StatelessVariant] = field(
        default_factory=lambda: frozenset(StatelessVariant))
    stateful: FrozenSet[StatefulVariant] = field(
        default_factory=lambda: frozenset(StatefulVariant))
    include_sync: bool = False
    short: bool = False
    verbose: bool = False
    cases_file: Optional[str] = None

    def artifact_path(self, name: str) -> str:
        return os.path.join(self.model_dir, name)

    @property
    def tokenizer(self) -> str:
        # Tokenizer files usually ship next to the converted models
        return self.tokenizer_path or self.model_dir


def parse_variant_list(variant_cls, value) -> FrozenSet:
    """Accept 'fp16,8bit', a YAML list, or 'none' / empty for no variants."""
    if value is None:
        return frozenset()
    if isinstance(value, str):
        items: Iterable = [v for v in value.split(",")]
    else:
        items = value
    variants = set()
    for item in items:
        text = str(item).strip()
        if not text or text.lower() == "none":
            continue
        variants.add(parse_variant(variant_cls, text))
    return frozenset(variants)


def _check_compute_units(value: str) -> str:
    value = str(value).strip().lower()
    if value not in COMPUTE_UNITS:
        raise ValueError(f"Unknown compute_units '{value}', expected one of {', '.join(COMPUTE_UNITS)}")
    return value


def load_settings(path) -> BenchmarkSettings:
    """Read the 'benchmark:' section of a YAML file. Unknown keys are ignored."""
    path = Path(path)
    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ValueError(f"Error loading config {path}: {e}") from e

    if not isinstance(data, dict):
        raise ValueError(f"Config {path} must be a mapping")
    params = data.get("benchmark", {}) or {}
    if not isinstance(params, dict):
        raise ValueError(f"'benchmark' section of {path} must be a mapping")

    settings = BenchmarkSettings()
    # Relative model_dir is resolved against the config file location
    model_dir = params.get("model_dir")
    if model_dir is not None:
        settings.model_dir = str(path.parent / os.path.expanduser(str(model_dir)))
    else:
        settings.model_dir = str(path.parent)
    if params.get("tokenizer"):
        tokenizer = os.path.expanduser(str(params["tokenizer"]))
        # Relative paths follow the config file; other names may be hub model ids
        candidate = path.parent / tokenizer
        if tokenizer.startswith(".") or candidate.exists():
            tokenizer = str(candidate)
        settings.tokenizer_path = tokenizer
    if "compute_units" in params:
        settings.compute_units = _check_compute_units(params["compute_units"])

    artifacts = params.get("artifacts", {}) or {}
    for key in ("stateless_fp16", "stateless_8bit", "stateful_fp16", "stateful_8bit"):
        if artifacts.get(key):
            setattr(settings, key, str(artifacts[key]))

    if "stateless" in params:
        settings.stateless = parse_variant_list(StatelessVariant, params["stateless"])
    if "stateful" in params:
        settings.stateful = parse_variant_list(StatefulVariant, params["stateful"])
    for key in ("include_sync", "short", "verbose"):
        if key in params:
            setattr(settings, key, bool(params[key]))
    if params.get("cases"):
        settings.cases_file = str(path.parent / os.path.expanduser(str(params["cases"])))
    return settings


def apply_overrides(settings: BenchmarkSettings, args) -> BenchmarkSettings:
    """Return a copy of settings with every explicitly given command-line value applied."""
    updates = {}
    if getattr(args, "model_dir", None):
        updates["model_dir"] = os.path.expanduser(args.model_dir)
    if getattr(args, "tokenizer", None):
        updates["tokenizer_path"] = os.path.expanduser(args.tokenizer)
    if getattr(args, "compute_units", None):
        updates["compute_units"] = _check_compute_units(args.compute_units)
    if getattr(args, "stateless", None) is not None:
        updates["stateless"] = parse_variant_list(StatelessVariant, args.stateless)
    if getattr(args, "stateful", None) is not None:
        updates["stateful"] = parse_variant_list(StatefulVariant, args.stateful)
    if getattr(args, "cases", None):
        updates["cases_file"] = args.cases
    for key in ("include_sync", "short", "verbose"):
        if getattr(args, key, False):
            updates[key] = True
    return replace(settings, **updates)
