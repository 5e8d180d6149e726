#!/usr/bin/env python3

"""
PSI Tests - Main Entry Point
Runs PageSpeed Insights several times per page and reports mean, deviation,
confidence interval and median per metric
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional, Sequence

from aggregation import InsufficientDataError, summarize
from batch_runner import BatchRunner, load_urls
from collector import AuditCollector
from config_loader import DEFAULT_CONFIG_PATH, TOKEN_ENV_VAR, ConfigValidationError, load_config
from models import BatchRow, PageSummary, Strategy
from output_writer import BatchCsvWriter, OutputWriter, format_failed_report
from run_metrics import RunMetrics

__version__ = "0.3.0"


def setup_logging(config) -> None:
    """Configure logging for the application"""
    log_file = config.get_log_file()
    log_file.parent.mkdir(parents=True, exist_ok=True)

    log_level = getattr(logging, config.get_log_level(), logging.INFO)

    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(log_file),
            logging.StreamHandler()
        ]
    )

    logger = logging.getLogger(__name__)
    logger.info(f"Logging initialized: {log_file}")


def display_settings(args: argparse.Namespace, runs: int, config) -> None:
    """Display run settings (stderr, so stdout stays a clean report)"""
    out = sys.stderr
    print("\n" + "=" * 60, file=out)
    print(f"⚡ PSI TESTS v{__version__}", file=out)
    print("=" * 60, file=out)
    if args.batch_file:
        print(f"\n📄 Batch file: {args.batch_file}", file=out)
        print(f"🔁 Retry passes: {config.get_retry_passes()}", file=out)
    else:
        print(f"\n🌐 Page: {args.page_url}", file=out)
        print(f"📱 Strategy: {args.strategy}", file=out)
    print(f"📊 Runs per page: {runs}", file=out)
    print(f"🚦 Max concurrent requests: {config.get_max_concurrency()}", file=out)
    print(f"⏱️  Request timeout: {config.get_timeout():.0f}s", file=out)
    print("\n" + "=" * 60 + "\n", file=out)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="psi-tests",
        description=(
            "Run multiple PageSpeed Insights tests and get the mean, standard deviation, "
            "confidence interval and median of the main Lighthouse metrics."
        ),
        epilog="Example: psi-tests --token=<TOKEN_VALUE> --number-of-runs=10 https://www.google.com",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "-T", "--token",
        default=None,
        help=f"Google Cloud API key for PageSpeed Insights (falls back to ${TOKEN_ENV_VAR})",
    )
    parser.add_argument(
        "-N", "--number-of-runs",
        type=int,
        default=None,
        help="Number of PSI tests for each page (default: 20)",
    )
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument("page_url", nargs="?", help="Page URL")
    target.add_argument("-B", "--batch-file", type=Path, help="Text file with one URL per line")
    parser.add_argument(
        "-S", "--strategy",
        choices=[s.value for s in Strategy],
        default=Strategy.MOBILE.value,
        help="Device strategy for single page runs",
    )
    parser.add_argument(
        "-O", "--output-format",
        choices=["md", "json"],
        default="json",
        help="Single page output format",
    )
    parser.add_argument(
        "--output-file",
        type=Path,
        default=None,
        help="Batch CSV output path (default: output.csv)",
    )
    parser.add_argument(
        "--config",
        default=DEFAULT_CONFIG_PATH,
        help="Path to config YAML",
    )
    return parser


async def run_single_page(config, token: str, url: str, strategy: Strategy, runs: int) -> PageSummary:
    collector = AuditCollector(config, token)
    result = await collector.collect(url, strategy, runs)
    return summarize(result.metric_set, url, strategy, runs)


def single_page(config, token: str, args: argparse.Namespace, runs: int) -> int:
    logger = logging.getLogger(__name__)
    strategy = Strategy(args.strategy)

    try:
        summary = asyncio.run(run_single_page(config, token, args.page_url, strategy, runs))
    except InsufficientDataError as e:
        print(f"❌ Error: {e}. Check the token and the URL, or try again later.", file=sys.stderr)
        logger.error(str(e))
        return 1
    except ValueError as e:
        print(f"❌ Error: {e}", file=sys.stderr)
        return 1

    if summary.failed_runs:
        logger.warning(f"{summary.failed_runs} of {runs} runs failed and were left out")

    print(OutputWriter().render(summary, args.output_format))
    return 0


def batch(config, token: str, args: argparse.Namespace, runs: int) -> int:
    logger = logging.getLogger(__name__)

    try:
        urls = load_urls(args.batch_file)
    except (OSError, UnicodeDecodeError) as e:
        print(f"❌ Cannot read batch file: {e}", file=sys.stderr)
        return 1

    if not urls:
        print(f"⚠️  No URLs found in {args.batch_file}", file=sys.stderr)
        return 1

    metrics = RunMetrics(mode="batch")
    output_file = args.output_file or config.get_batch_output_file()

    with BatchCsvWriter(output_file) as csv_writer:
        print(f"💾 Writing results to {csv_writer.path}\n")

        def on_row(row: BatchRow) -> None:
            csv_writer.write_row(row)
            print(f"{'❌' if row.failed else '✓'} {row}")

        runner = BatchRunner(
            AuditCollector(config, token),
            runs=runs,
            retry_passes=config.get_retry_passes(),
            on_row=on_row,
            metrics=metrics,
        )
        report = asyncio.run(runner.run(urls))

    print("\n" + format_failed_report(report.failed))
    logger.info(f"Batch complete: {len(report.succeeded)}/{len(urls)} URLs succeeded")

    metrics.finish()
    if config.is_run_metrics_enabled():
        path = metrics.write_json(config.get_run_metrics_template())
        logger.info(f"Run metrics written: {path}")

    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main execution function"""
    parser = build_parser()
    args = parser.parse_args(argv)

    # Load configuration
    try:
        config = load_config(args.config, required=args.config != DEFAULT_CONFIG_PATH)
    except (FileNotFoundError, ConfigValidationError) as e:
        print(f"❌ Error: {e}", file=sys.stderr)
        return 1
    except Exception as e:
        print(f"❌ Error loading config: {e}", file=sys.stderr)
        return 1

    token = args.token or config.get_token()
    if not token:
        parser.error(f"--token is required (or set {TOKEN_ENV_VAR})")

    runs = args.number_of_runs if args.number_of_runs is not None else config.get_number_of_runs()
    if runs < 1:
        parser.error("--number-of-runs must be positive")

    setup_logging(config)
    display_settings(args, runs, config)

    if args.batch_file:
        return batch(config, token, args, runs)
    return single_page(config, token, args, runs)


if __name__ == "__main__":
    sys.exit(main())
