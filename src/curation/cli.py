"""Command-line interface for curation, gap analysis and liveness sweeps."""

import argparse
import asyncio

from src.utils.logging import get_logger

from .config import get_config
from .gap_analyzer import GapAnalyzer
from .liveness import LivenessSweep
from .pipeline import CurationPipeline
from .quota import QuotaGovernor
from .schemas import CurationResult, CurationTarget
from .storage_service import KnowledgeStore
from .youtube_service import YouTubeService, instructor_queries

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="BJJ video curation - discover, gate and rank instructional videos",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Curate the current gap-analysis priorities
  python -m src.curation.cli curate

  # Curate specific techniques with a 2,000 unit cap
  python -m src.curation.cli curate --technique "triangle choke" --budget 2000

  # Curate one instructor
  python -m src.curation.cli curate --instructor "Lachlan Giles"

  # Recompute technique priorities
  python -m src.curation.cli gap-analysis

  # Retire videos that no longer resolve
  python -m src.curation.cli sweep
        """,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    curate = sub.add_parser("curate", help="Run one curation pass")
    curate.add_argument(
        "--technique",
        action="append",
        default=[],
        help="Technique to search for (repeatable)",
    )
    curate.add_argument(
        "--instructor",
        action="append",
        default=[],
        help="Instructor to search for (repeatable)",
    )
    curate.add_argument("--budget", type=int, help="Max quota units this run may spend")
    curate.add_argument(
        "--quota-used",
        type=int,
        default=0,
        help="Units already spent today by other processes",
    )

    sub.add_parser("gap-analysis", help="Recompute technique meta status and priorities")
    sub.add_parser("sweep", help="Mark videos that no longer resolve as unavailable")
    return parser


def targets_from_args(args: argparse.Namespace) -> list[CurationTarget] | None:
    targets = [
        CurationTarget(name=name, kind="technique", queries=[f"{name} bjj technique", f"{name} tutorial"])
        for name in args.technique
    ]
    targets += [
        CurationTarget(name=name, kind="instructor", queries=instructor_queries(name))
        for name in args.instructor
    ]
    return targets or None


def print_curation_result(result: CurationResult) -> None:
    print("\n" + "=" * 60)
    print("Curation Results")
    print("=" * 60)
    print(f"Targets processed: {result.targets_processed}")
    print(f"Searches performed: {result.searches_performed}")
    print(f"Videos analyzed: {result.videos_analyzed}")
    print(f"Videos added: {result.videos_added}")
    print(f"Videos rejected: {result.videos_rejected}")
    print(f"Duplicates: {result.duplicates}")
    print(f"Quota used: {result.quota_used}")
    if result.quota_exhausted:
        print("\n⏸️  Quota exhausted - run paused, resumes after the daily reset")
    if result.aborted_reason:
        print(f"\n❌ Run aborted: {result.aborted_reason}")

    if result.errors:
        print("\nErrors encountered:")
        for error in result.errors:
            print(f"  ❌ {error}")
    else:
        print("\n✅ No errors encountered")
    print("=" * 60 + "\n")


async def main() -> None:
    """CLI entry point."""
    args = build_parser().parse_args()
    config = get_config()
    store = KnowledgeStore(config)

    logger.info("cli_started", command=args.command)

    if args.command == "gap-analysis":
        statuses = await GapAnalyzer(config, store).run()
        print(f"\nAnalyzed {len(statuses)} techniques")
        for status in sorted(statuses, key=lambda s: -s.curation_priority)[:10]:
            print(
                f"  {status.curation_priority:>2}  {status.technique_name} "
                f"({status.videos_in_library} videos, {status.meta_status.value})"
            )
        return

    quota = QuotaGovernor.from_config(config)
    youtube = YouTubeService(config, quota)

    try:
        if args.command == "sweep":
            sweep = await LivenessSweep(config, store, youtube).run()
            print(
                f"\nChecked {sweep.checked} videos, "
                f"marked {sweep.marked_unavailable} unavailable"
            )
            return

        if args.quota_used:
            quota.record_usage(args.quota_used)

        print("\n" + "=" * 60)
        print("BJJ Video Curation")
        print("=" * 60)
        print(f"Daily quota: {config.daily_quota_budget} (remaining {quota.remaining()})")
        print(f"Run budget: {args.budget or 'unbounded'}")
        print(f"Accepts per target: {config.accepts_per_target}")
        print("=" * 60 + "\n")

        pipeline = CurationPipeline(config, quota=quota, store=store, youtube=youtube)
        result = await pipeline.run_curation(targets_from_args(args), args.budget)
        print_curation_result(result)

        logger.info(
            "cli_completed",
            videos_added=result.videos_added,
            quota_used=result.quota_used,
        )
    finally:
        await youtube.aclose()


if __name__ == "__main__":
    asyncio.run(main())
