"""Gap analysis: decides which techniques the next curation run should search for.

For every technique that users have asked about or that appears in recent
external trend snapshots, the analyzer blends a demand score with a trend
score, classifies the trend direction against the previous run, measures
library coverage and derives a 0-10 curation priority plus the search
queries the Candidate Source should try.
"""

from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from src.utils.logging import get_logger

from .config import CurationConfig
from .schemas import CurationTarget, MetaStatus, TechniqueMetaStatus
from .storage_service import KnowledgeStore

logger = get_logger(__name__)

HOT_THRESHOLD = 8.0
DIRECTION_DELTA = 2.0
SHORTFALL_WEIGHT = 7.0
DEMAND_WEIGHT = 3.0
MIN_PRIORITY_WHEN_SHORT = 1


def _round_half_up(value: float) -> int:
    return int(value + 0.5)


def demand_score(recent_7d: int, monthly_30d: int) -> float:
    """Recency-weighted 0-10 demand: last week dominates, the month adds up to 3."""
    return min(min(recent_7d * 1.5, 7.0) + min(monthly_30d * 0.3, 3.0), 10.0)


def trend_score(mentions: int) -> float:
    """Two points per recent trend snapshot that lists the technique as hot."""
    return min(mentions * 2.0, 10.0)


def classify_status(current: float, previous: float) -> MetaStatus:
    if current >= HOT_THRESHOLD:
        return MetaStatus.HOT
    change = current - previous
    if change >= DIRECTION_DELTA:
        return MetaStatus.RISING
    if change <= -DIRECTION_DELTA:
        return MetaStatus.COOLING
    return MetaStatus.STABLE


def assess_coverage(
    videos_in_library: int, highest_quality: float | None, target: int, quality_floor: float
) -> bool:
    """Coverage is adequate only with enough videos and at least one above the floor."""
    return (
        videos_in_library >= target
        and highest_quality is not None
        and highest_quality >= quality_floor
    )


def curation_priority(
    meta_score: float, videos_in_library: int, coverage_adequate: bool, target: int
) -> int:
    """0-10 priority driven by the shortfall against target and by demand.

    Zero videos always yields the maximum priority.
    """
    if coverage_adequate:
        return 0
    if videos_in_library == 0:
        return 10

    shortfall = max(0, target - videos_in_library)
    gap = SHORTFALL_WEIGHT * min(1.0, shortfall / target) if target > 0 else 0.0
    demand = DEMAND_WEIGHT * min(1.0, max(0.0, meta_score) / 10)

    priority = max(MIN_PRIORITY_WHEN_SHORT, _round_half_up(gap + demand))
    return min(10, priority)


def suggested_searches(technique: str, videos_in_library: int) -> list[str]:
    """Ordered queries: fundamentals for thin coverage, depth once basics exist."""
    queries = [f"{technique} bjj technique"]
    if videos_in_library < 2:
        queries += [
            f"{technique} tutorial",
            f"how to do {technique}",
            f"{technique} step by step",
        ]
    else:
        queries += [
            f"{technique} advanced details",
            f"{technique} common mistakes",
            f"{technique} variations",
        ]
    queries += [f"{technique} gi", f"{technique} no gi"]
    return queries


class GapAnalyzer:
    """Scheduled job that recomputes TechniqueMetaStatus for every known technique."""

    def __init__(
        self,
        config: CurationConfig,
        store: KnowledgeStore,
        clock: Callable[[], datetime] | None = None,
    ):
        self.config = config
        self.store = store
        self._clock = clock or (lambda: datetime.now(UTC))

    def combine(self, demand: float, trend: float) -> float:
        return demand * self.config.demand_weight + trend * self.config.trend_weight

    async def known_techniques(self, snapshots: list[list[str]]) -> list[str]:
        techniques = await self.store.requested_techniques()
        for hot in snapshots:
            techniques.update(name.strip().lower() for name in hot if name and name.strip())
        return sorted(techniques)

    async def analyze_technique(
        self, technique: str, snapshots: list[list[str]]
    ) -> TechniqueMetaStatus:
        """Compute, persist and return the snapshot for one technique."""
        now = self._clock()
        recent = await self.store.count_requests(technique, now - timedelta(days=7))
        monthly = await self.store.count_requests(technique, now - timedelta(days=30))

        mentions = sum(
            1 for hot in snapshots if any(technique in name.lower() for name in hot)
        )

        demand = demand_score(recent, monthly)
        trend = trend_score(mentions)
        meta = round(self.combine(demand, trend), 2)

        previous = await self.store.get_meta_status(technique)
        status = classify_status(meta, previous.overall_meta_score if previous else 0.0)

        count, highest = await self.store.technique_coverage(technique)
        adequate = assess_coverage(
            count,
            highest,
            self.config.target_videos_per_technique,
            self.config.coverage_quality_floor,
        )
        priority = curation_priority(
            meta, count, adequate, self.config.target_videos_per_technique
        )

        snapshot = TechniqueMetaStatus(
            technique_name=technique,
            user_request_score=round(demand, 2),
            trend_score=round(trend, 2),
            overall_meta_score=meta,
            meta_status=status,
            videos_in_library=count,
            highest_quality_score=highest,
            coverage_adequate=adequate,
            needs_curation=not adequate,
            curation_priority=priority,
            suggested_searches=[] if adequate else suggested_searches(technique, count),
            analyzed_at=now,
        )
        await self.store.upsert_meta_status(snapshot)

        logger.info(
            "technique_analyzed",
            technique=technique,
            meta_score=meta,
            status=status.value,
            videos=count,
            priority=priority,
        )
        return snapshot

    async def run(self) -> list[TechniqueMetaStatus]:
        """Recompute every known technique. A failing technique is skipped, not fatal."""
        snapshots = await self.store.recent_trend_snapshots(self.config.trend_snapshot_window)
        techniques = await self.known_techniques(snapshots)
        logger.info("gap_analysis_started", techniques=len(techniques))

        results = []
        for technique in techniques:
            try:
                results.append(await self.analyze_technique(technique, snapshots))
            except Exception as e:
                logger.exception(
                    "technique_analysis_failed",
                    technique=technique,
                    error_type=type(e).__name__,
                )

        logger.info(
            "gap_analysis_completed",
            analyzed=len(results),
            needing_curation=sum(1 for r in results if r.needs_curation),
        )
        return results

    async def curation_targets(self, limit: int) -> list[CurationTarget]:
        """Turn the highest stored priorities into targets for the next curation run."""
        statuses = await self.store.top_curation_priorities(limit)
        return [
            CurationTarget(
                name=status.technique_name,
                kind="technique",
                queries=status.suggested_searches or suggested_searches(
                    status.technique_name, status.videos_in_library
                ),
                priority=status.curation_priority,
            )
            for status in statuses
        ]
