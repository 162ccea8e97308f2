#  Copyright (c) 2025, Anemll  All rights reserved.
#
#  Use of this source code is governed by a MIT license that can be
#  found in the LICENSE.txt file or at https://opensource.org/license/mit

import argparse
import asyncio
import logging
import sys
from datetime import datetime

from .benchmark import BenchmarkRunner, check_fidelity
from .cases import DEFAULT_CASES, load_cases, short_subset
from .config import BenchmarkSettings, apply_overrides, load_settings
from .environment import EngineLoaders, ModelLoadConfiguration, make_benchmark_environment
from .models import COMPUTE_UNITS

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="zenzbench",
        description="Benchmark greedy decoding of zenz Core ML models (c) 2025 Anemll")

    parser.add_argument('--config', type=str,
                        help='Path to a YAML file with a "benchmark:" section')
    parser.add_argument('--model-dir', type=str,
                        help='Directory containing the .mlpackage/.mlmodelc artifacts')
    parser.add_argument('--tokenizer', type=str,
                        help='Path to tokenizer (defaults to the model directory)')
    parser.add_argument('--stateless', type=str,
                        help='Stateless variants to load, e.g. "fp16,8bit" or "none"')
    parser.add_argument('--stateful', type=str,
                        help='Stateful variants to load, e.g. "fp16,8bit" or "none"')
    parser.add_argument('--include-sync', action='store_true',
                        help='Also time a directly blocking run per variant')
    parser.add_argument('--short', action='store_true',
                        help='Run only the first 6 cases')
    parser.add_argument('--cases', type=str,
                        help='YAML list of {label, prompt, expected} cases')
    parser.add_argument('--compute-units', type=str, choices=COMPUTE_UNITS,
                        help='Core ML compute units (default: cpu_and_gpu)')
    parser.add_argument('--verbose', action='store_true',
                        help='Log every decoding step')
    parser.add_argument('--no-progress', action='store_true',
                        help='Disable the progress bar')
    return parser


def resolve_settings(args) -> BenchmarkSettings:
    settings = load_settings(args.config) if args.config else BenchmarkSettings()
    return apply_overrides(settings, args)


def format_averages(averages) -> str:
    lines = ["===== Average Duration per Variant (fast → slow) ====="]
    for i, entry in enumerate(averages, start=1):
        lines.append(f"{i}. {entry.variant}: {entry.average:.4f} s ({entry.samples} samples)")
    return "\n".join(lines)


def _timestamp() -> str:
    return datetime.now().strftime("%Y-%m-%d %H:%M:%S")


async def run_benchmarks(settings: BenchmarkSettings, cases, loaders=None,
                         log_sink=print, progress: bool = True) -> int:
    """Assemble the environment and run every case. Returns the process exit code."""
    config = ModelLoadConfiguration(settings.stateless, settings.stateful)
    if loaders is None:
        loaders = EngineLoaders.from_settings(settings)

    log_sink(f"[Init] Loading models ({config.summary_description})")
    try:
        environment = await make_benchmark_environment(config, loaders)
    except RuntimeError as e:
        logger.error("[Init] %s", e)
        return 1
    if environment is None:
        log_sink("[Init] No models available, aborting.")
        return 1
    if environment.missing:
        log_sink(f"[Init] Missing: {', '.join(environment.missing)}")
    log_sink("[Init] Models ready.")

    run_tag = "[RunShort]" if settings.short else "[RunAll]"
    if settings.short:
        cases = short_subset(cases)

    runner = BenchmarkRunner(environment, log_sink=log_sink)
    log_sink(f"{run_tag} Started at {_timestamp()}")
    await runner.run_suite(cases, include_sync=settings.include_sync, progress=progress)
    log_sink(f"{run_tag} Finished at {_timestamp()}")

    averages = runner.averages()
    if averages:
        log_sink(format_averages(averages))

    expected = {case.label: case.expected_output for case in cases if case.expected_output}
    if expected:
        checks = check_fidelity(runner.results, expected)
        matched = sum(1 for _, ok in checks if ok)
        log_sink(f"===== Output Fidelity: {matched}/{len(checks)} matched =====")
        for label, ok in checks:
            if not ok:
                log_sink(f"  mismatch: {label}")
    return 0


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        settings = resolve_settings(args)
        cases = load_cases(settings.cases_file) if settings.cases_file else list(DEFAULT_CASES)
    except ValueError as e:
        logger.error("%s", e)
        return 1

    if settings.verbose and not args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    return asyncio.run(run_benchmarks(settings, cases, progress=not args.no_progress))


if __name__ == "__main__":
    sys.exit(main())
