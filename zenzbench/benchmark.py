#  Copyright (c) 2025, Anemll  All rights reserved.
#
#  Use of this source code is governed by a MIT license that can be
#  found in the LICENSE.txt file or at https://opensource.org/license/mit

"""Timed greedy generation across every loaded variant, with rankings and averages."""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from tqdm import tqdm

from .cases import BenchmarkCase, output_matches_expected
from .generation import (
    GenerationResult,
    generate,
    generate_async,
    generate_stateful,
    generate_stateful_async,
    warmup_stateful_model,
    warmup_stateful_model_async,
)
from .variants import BenchmarkPlanEntry, ExecutionMode

logger = logging.getLogger(__name__)

ASYNC_TAG = "[Async global]"
SYNC_TAG = "[Sync main]"


@dataclass(frozen=True)
class BenchmarkResult:
    label: str
    duration: float
    input: str
    output: str


@dataclass
class BenchmarkAverage:
    variant: str
    total: float = 0.0
    samples: int = 0

    @property
    def average(self) -> float:
        return self.total / self.samples if self.samples else 0.0


def variant_key(label: str, case_label: str) -> str:
    """Result label with the case tag removed, e.g. '[Stateful Greedy][Sync main] [Stateful FP16]'."""
    if case_label and label.endswith(case_label):
        label = label[:-len(case_label)]
    return label.strip()


class BenchmarkAggregator:
    """Per-variant running totals across cases."""

    def __init__(self):
        self._averages: Dict[str, BenchmarkAverage] = {}

    def add(self, result: BenchmarkResult, case_label: str):
        key = variant_key(result.label, case_label)
        entry = self._averages.setdefault(key, BenchmarkAverage(key))
        entry.total += result.duration
        entry.samples += 1

    def averages(self) -> List[BenchmarkAverage]:
        return sorted(self._averages.values(), key=lambda a: a.average)


def format_ranking(group_tag: str, results: Sequence[BenchmarkResult]) -> Optional[str]:
    """Ranking block for one case, fastest first; None when no result carries the tag."""
    filtered = [r for r in results if group_tag in r.label]
    if not filtered:
        return None
    lines = [f"===== Benchmark Ranking for {group_tag} (fast → slow) ====="]
    for i, r in enumerate(sorted(filtered, key=lambda r: r.duration), start=1):
        lines.append(f"{i}. {r.label}: {r.duration:.4f} s {r.input}, {r.output}")
    return "\n".join(lines)


def check_fidelity(results: Sequence[BenchmarkResult],
                   expected: Mapping[str, str]) -> List[Tuple[str, bool]]:
    """Compare outputs against expected conversions keyed by case label.

    Results whose case has no expected text are left out.
    """
    checks = []
    for result in results:
        for case_label, expected_text in expected.items():
            if not expected_text or not result.label.endswith(case_label):
                continue
            checks.append((result.label, output_matches_expected(result.output, expected_text)))
            break
    return checks


class BenchmarkRunner:
    """Runs the plan for each case against a loaded BenchmarkEnvironment.

    Ranking and case lines go to log_sink; diagnostics go to the module logger.
    """

    def __init__(self, environment, log_sink: Callable[[str], None] = print,
                 clock: Callable[[], float] = time.perf_counter):
        self.environment = environment
        self.log_sink = log_sink
        self.clock = clock
        self.results: List[BenchmarkResult] = []
        self.aggregator = BenchmarkAggregator()

    def averages(self) -> List[BenchmarkAverage]:
        return self.aggregator.averages()

    def _record(self, label: str, elapsed: float, prompt: str,
                generation: GenerationResult, group_tag: str,
                case_results: List[BenchmarkResult]):
        if not generation.ok:
            logger.warning("[Benchmarks] %s failed after %d steps; omitted from ranking.",
                           label, generation.steps)
            return
        result = BenchmarkResult(label, elapsed, prompt, generation.text)
        case_results.append(result)
        self.results.append(result)
        self.aggregator.add(result, group_tag)

    async def _run_stateless(self, entry: BenchmarkPlanEntry, model, group_tag: str,
                             prompt: str, include_sync: bool, case_results):
        tokenizer = self.environment.tokenizer
        tag = f"[Stateless Greedy][{entry.debug_name}]"

        label = f"[Stateless Greedy]{ASYNC_TAG}{entry.label_suffix}{group_tag}"
        start = self.clock()
        generation = await generate_async(prompt, model, tokenizer, tag=tag)
        self._record(label, self.clock() - start, prompt, generation, group_tag, case_results)

        if include_sync:
            label = f"[Stateless Greedy]{SYNC_TAG}{entry.label_suffix}{group_tag}"
            start = self.clock()
            generation = generate(prompt, model, tokenizer, tag=tag)
            self._record(label, self.clock() - start, prompt, generation, group_tag, case_results)

    async def _run_stateful(self, entry: BenchmarkPlanEntry, handle, group_tag: str,
                            prompt: str, include_sync: bool, case_results):
        tokenizer = self.environment.tokenizer
        tag = f"[Stateful Greedy][{handle.variant.debug_name}]"

        async def timed_async(model):
            await warmup_stateful_model_async(model, tag=f"[Stateful Warmup][{handle.variant.debug_name}]")
            start = self.clock()
            generation = await generate_stateful_async(prompt, model, tokenizer, tag=tag)
            return self.clock() - start, generation

        def timed_sync(model):
            warmup_stateful_model(model, tag=f"[Stateful Warmup][{handle.variant.debug_name}]")
            start = self.clock()
            generation = generate_stateful(prompt, model, tokenizer, tag=tag)
            return self.clock() - start, generation

        label = f"[Stateful Greedy]{ASYNC_TAG}{entry.label_suffix}{group_tag}"
        elapsed, generation = await handle.with_model_async(fp16=timed_async, bit8=timed_async)
        self._record(label, elapsed, prompt, generation, group_tag, case_results)

        if include_sync:
            label = f"[Stateful Greedy]{SYNC_TAG}{entry.label_suffix}{group_tag}"
            elapsed, generation = handle.with_model(fp16=timed_sync, bit8=timed_sync)
            self._record(label, elapsed, prompt, generation, group_tag, case_results)

    async def run_case(self, group_tag: str, prompt: str,
                       include_sync: bool = False) -> List[BenchmarkResult]:
        """Time every loaded variant on one prompt and emit its ranking block."""
        env = self.environment
        if env is None or not (env.stateless_models or env.stateful_models):
            self.log_sink(f"[Benchmarks] Skipped: No Core ML models loaded for {group_tag}.")
            return []

        case_results: List[BenchmarkResult] = []
        for entry in BenchmarkPlanEntry.default_order():
            if entry.mode is ExecutionMode.STATELESS:
                model = env.stateless_models.get(entry.variant)
                if model is None:
                    logger.info("[Benchmarks] %s not loaded, skipping for %s.", entry.debug_name, group_tag)
                    continue
                await self._run_stateless(entry, model, group_tag, prompt, include_sync, case_results)
            else:
                handle = env.stateful_models.get(entry.variant)
                if handle is None:
                    logger.info("[Benchmarks] %s not loaded, skipping for %s.", entry.debug_name, group_tag)
                    continue
                await self._run_stateful(entry, handle, group_tag, prompt, include_sync, case_results)

        ranking = format_ranking(group_tag, case_results)
        if ranking is not None:
            self.log_sink(ranking)
        return case_results

    async def run_suite(self, cases: Sequence[BenchmarkCase], include_sync: bool = False,
                        progress: bool = True) -> List[BenchmarkResult]:
        """Run cases in order; cases whose encoded prompt is empty are skipped."""
        for case in tqdm(cases, desc="Cases", disable=not progress):
            prompt = case.encoded_prompt
            if not prompt:
                logger.warning("[Benchmarks] Skipping %s: empty prompt.", case.label)
                continue
            self.log_sink(f"[Case] {case.label}")
            await self.run_case(case.label, prompt, include_sync)
        return list(self.results)
