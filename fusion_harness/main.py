import argparse
import re
import sys

from .config import HarnessConfig
from .harness import ALL_CASES, ELEMENT_TYPES, FaultIsolationHarness, GroupNormFusionCase, TestOutcome
from .utils.logger import add_file_handler, set_log_level, logger as custom_logger


def build_cases(element_types, report_stages=False, name_filter=None):
    pattern = re.compile(name_filter) if name_filter else None
    cases = []
    for element_type in element_types:
        for params in ALL_CASES:
            case = GroupNormFusionCase(params, element_type, report_stages=report_stages)
            if pattern is None or pattern.search(case.name):
                cases.append(case)
    return cases


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="GroupNormalization fusion equivalence harness",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run every case for every element type, each in its own process
  python -m fusion_harness.main

  # Only float32, in-process, with a config file
  python -m fusion_harness.main --config harness.json --types float32 --no-isolation

  # Only the positive cases, with a shorter deadline
  python -m fusion_harness.main --filter "PositiveTest=true" --timeout 60

Config file format (JSON): see fusion_harness.config.HarnessConfig
        """,
    )
    parser.add_argument("--config", help="Path to JSON configuration file")
    parser.add_argument(
        "--types",
        help=f"Comma-separated element types (default: {','.join(ELEMENT_TYPES)})",
    )
    parser.add_argument(
        "--no-isolation",
        action="store_true",
        help="Run cases in this process (no crash/hang detection)",
    )
    parser.add_argument("--timeout", type=float, help="Seconds a single case may run")
    parser.add_argument("--filter", help="Regex; only cases whose name matches are run")
    parser.add_argument("--log-file", help="Path to log file")
    args = parser.parse_args(argv)

    try:
        config = HarnessConfig.from_json(
            args.config,
            timeout=args.timeout,
            log_file=args.log_file,
            isolate=False if args.no_isolation else None,
        )
    except Exception as e:
        custom_logger.error(f"Failed to load config file: {e}")
        return 1

    set_log_level(config.log_level)
    if config.log_file:
        add_file_handler(config.log_file)

    element_types = ELEMENT_TYPES
    if args.types:
        element_types = [t.strip() for t in args.types.split(",") if t.strip()]

    harness = FaultIsolationHarness(
        timeout=config.timeout,
        startup_timeout=config.startup_timeout,
        isolate=config.isolate,
        disabled_patterns=config.disabled_patterns,
        log_level=config.log_level,
        log_file=config.log_file,
    )
    cases = build_cases(element_types, config.report_stages, args.filter)
    custom_logger.info(f"Running {len(cases)} case(s), isolation={'on' if config.isolate else 'off'}")

    results = [harness.run(case) for case in cases]

    harness.summary.log_summary()
    if config.summary_path:
        harness.summary.save(config.summary_path)

    failed = [r for r in results if r.outcome not in (TestOutcome.PASSED, TestOutcome.SKIPPED)]
    for result in failed:
        custom_logger.error(f"{result.outcome.value.upper()}: {result.name}: {result.message}")
    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(main())
