"""Command-line interface for pagepulse."""

import asyncio
import json
import sys
from dataclasses import replace
from typing import Optional

from pagepulse.config import OrchestratorConfig, PerformanceThresholds, settings
from pagepulse.exceptions import InternalError, PagePulseError, RateLimited, SiteProtectionActive
from pagepulse.logging_config import get_logger, setup_logging
from pagepulse.models import AnalysisResult, AnalysisSource, CATEGORIES
from pagepulse.orchestrator import Orchestrator

logger = get_logger(__name__)


def print_result(result: AnalysisResult):
    """Print an analysis result in a formatted way.

    Args:
        result: AnalysisResult from the orchestrator
    """
    print(f"\n{'=' * 60}")
    print(f"Page Analysis for: {result.url}")
    print(f"{'=' * 60}")

    if result.source is AnalysisSource.HEURISTIC:
        print("\n⚠️  Browser analysis unavailable; showing heuristic results")
        print(f"   Reason: {result.fallback_reason}")

    print(f"\n📊 Scores:")
    for category in CATEGORIES:
        value = getattr(result.scores, category)
        label = category.replace("_", " ").title()
        print(f"  • {label}: {value if value is not None else 'n/a'}")

    for device, vitals in result.core_web_vitals.items():
        if vitals.is_empty():
            continue
        print(f"\n⏱️  Core Web Vitals ({device.value}):")
        for metric, value in vitals.to_dict().items():
            if value is not None:
                print(f"  • {metric.upper()}: {value:.3f}" if metric == "cls" else f"  • {metric.upper()}: {value:.0f} ms")

    if result.waterfall:
        summary = result.waterfall.summary
        print(f"\n🌊 Waterfall:")
        print(f"  • Resources: {summary.total_resources} ({summary.total_size / 1024:.0f} KB)")
        print(f"  • Max parallel requests: {summary.max_parallelism}")
        print(f"  • Cache hit rate: {summary.cache_hit_rate:.1f}%")
        print(f"  • Estimated compression savings: {summary.compression_savings_pct:.1f}%")

    if result.degraded_artifacts:
        print(f"\n⚠️  Missing artifacts: {', '.join(result.degraded_artifacts)}")

    actionable = [r for r in result.recommendations if r.type != "success"]
    if actionable:
        print(f"\n💡 Recommendations:")
        for rec in actionable:
            print(f"  • [{rec.priority}] {rec.title}: {rec.description}")

    print(f"\n{'=' * 60}\n")


async def _analyze_all(urls: list[str], config: OrchestratorConfig) -> list[tuple[str, object]]:
    """Analyze urls concurrently through one orchestrator.

    Returns:
        (url, AnalysisResult or exception) pairs in input order
    """
    async with Orchestrator(config=config, thresholds=PerformanceThresholds.from_env()) as orchestrator:
        outcomes = await asyncio.gather(
            *(orchestrator.analyze(url) for url in urls),
            return_exceptions=True,
        )
    return list(zip(urls, outcomes))


def analyze_command(args):
    """Handle the 'analyze' command."""
    config = OrchestratorConfig.from_env()
    overrides = {}
    if args.headed:
        overrides["headless"] = False
    if args.no_lighthouse:
        overrides["use_lighthouse"] = False
    if args.max_concurrent is not None:
        overrides["max_concurrent_analyses"] = args.max_concurrent
    config = replace(config, **overrides)

    outcomes = asyncio.run(_analyze_all(args.urls, config))

    failed = False
    json_results = {}
    for url, outcome in outcomes:
        if isinstance(outcome, AnalysisResult):
            json_results[url] = outcome.to_dict()
            if args.output == "text":
                print_result(outcome)
            continue

        failed = True
        if isinstance(outcome, RateLimited):
            message = f"Rate limited: {outcome.message}"
        elif isinstance(outcome, SiteProtectionActive):
            message = f"{outcome.message}\n   {outcome.REMEDIATION}"
        elif isinstance(outcome, PagePulseError):
            message = f"Analysis failed: {outcome.message}"
        else:
            logger.error(f"Unexpected error for {url}: {outcome!r}")
            outcome = InternalError(str(outcome))
            message = f"Unexpected error: {outcome.message}"

        json_results[url] = {"error": outcome.to_dict()}

        if args.output == "text":
            print(f"\n❌ {url}: {message}", file=sys.stderr)

    if args.output == "json":
        output = json.dumps(json_results, indent=2)
        if args.output_file:
            with open(args.output_file, "w") as f:
                f.write(output)
            print(f"Results written to {args.output_file}")
        else:
            print(output)

    if failed:
        sys.exit(1)


def main(argv: Optional[list[str]] = None):
    """Main CLI entry point."""
    import argparse

    parser = argparse.ArgumentParser(
        description="pagepulse - Measure page performance, accessibility and SEO on mobile and desktop"
    )

    # Global flags (before subcommands)
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=settings.LOG_LEVEL.upper(),
        help="Set logging verbosity (default: INFO)",
    )
    parser.add_argument(
        "--log-file",
        default=settings.LOG_FILE,
        help="Write logs to file in addition to console",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    analyze_parser = subparsers.add_parser(
        "analyze", help="Analyze one or more URLs."
    )
    analyze_parser.add_argument(
        "urls", nargs="+", help="URLs to analyze (one or more)"
    )
    analyze_parser.add_argument(
        "--output",
        "-o",
        choices=["text", "json"],
        default="text",
        help="Output format (default: text)",
    )
    analyze_parser.add_argument(
        "--output-file",
        "-f",
        help="Write output to file (only for json format)",
    )
    analyze_parser.add_argument(
        "--headed",
        action="store_true",
        help="Show the browser window",
    )
    analyze_parser.add_argument(
        "--no-lighthouse",
        action="store_true",
        help="Score from browser metrics even if Lighthouse is installed",
    )
    analyze_parser.add_argument(
        "--max-concurrent",
        type=int,
        help="Maximum analyses running at once (default: 20)",
    )
    analyze_parser.set_defaults(func=analyze_command)

    args = parser.parse_args(argv)

    setup_logging(
        level=args.log_level,
        log_file=args.log_file,
    )

    if hasattr(args, "func"):
        args.func(args)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
