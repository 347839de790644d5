"""Main pipeline orchestrator for video curation runs."""

import asyncio
from collections.abc import Callable
from datetime import UTC, datetime

from pydantic import ValidationError

from src.utils.logging import get_logger

from .classifier_service import ContentClassifier
from .config import CurationConfig, get_config
from .errors import ContractViolation, ExhaustedSignal, TransientExternalError
from .gap_analyzer import GapAnalyzer
from .quality_gate import QualityGate
from .quota import QuotaGovernor, RunBudget
from .schemas import Candidate, CurationResult, CurationTarget, RejectCategory
from .storage_service import KnowledgeStore
from .transcript_service import TranscriptService
from .youtube_service import YouTubeService, instructor_queries

logger = get_logger(__name__)

ADDED = "added"
REJECTED = "rejected"
DUPLICATE = "duplicate"
FAILED = "failed"


class CurationPipeline:
    """Orchestrates discover, gate and persist for a list of curation targets.

    Targets are processed in priority order and each stops issuing query
    variants once enough candidates were accepted for it. Candidates are
    evaluated in small bounded batches with a fixed delay between batches.
    Quota exhaustion ends the whole run; every other failure is isolated to
    one query or one candidate. A CurationResult is returned however the run
    ends.
    """

    def __init__(
        self,
        config: CurationConfig | None = None,
        quota: QuotaGovernor | None = None,
        store: KnowledgeStore | None = None,
        youtube: YouTubeService | None = None,
        gate: QualityGate | None = None,
        gap_analyzer: GapAnalyzer | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        """Initialize pipeline with all required services.

        Args:
            config: Configuration object. If None, loads from environment.
            quota: Shared quota governor. Built from config when omitted.
            store: Knowledge Store.
            youtube: Candidate Source.
            gate: Quality gate.
            gap_analyzer: Source of default targets.
            clock: Returns the current aware datetime.
        """
        self.config = config or get_config()
        self.quota = quota or QuotaGovernor.from_config(self.config)
        self.store = store or KnowledgeStore(self.config)
        self.youtube = youtube or YouTubeService(self.config, self.quota)
        self.gate = gate or QualityGate(
            self.config,
            self.store,
            ContentClassifier(self.config),
            transcripts=TranscriptService(self.config),
        )
        self.gap_analyzer = gap_analyzer or GapAnalyzer(self.config, self.store)
        self._clock = clock or (lambda: datetime.now(UTC))

        logger.info(
            "pipeline_initialized",
            daily_budget=self.config.daily_quota_budget,
            accepts_per_target=self.config.accepts_per_target,
            batch_size=self.config.batch_size,
        )

    async def default_targets(self) -> list[CurationTarget]:
        """Gap-analysis priorities first, trusted instructors when none are stored."""
        targets = await self.gap_analyzer.curation_targets(self.config.max_targets_per_run)
        if targets:
            return targets
        return [
            CurationTarget(name=name, kind="instructor", queries=instructor_queries(name))
            for name in self.config.trusted_instructors
        ]

    async def run_curation(
        self,
        targets: list[CurationTarget] | None = None,
        budget_units: int | None = None,
    ) -> CurationResult:
        """Run one curation pass.

        Args:
            targets: Instructors/techniques to search for. Defaults to the gap
                analyzer's current priorities.
            budget_units: Optional cap on quota units this run may spend.

        Returns:
            CurationResult with counts, quota used and the first errors seen.
        """
        result = CurationResult(started_at=self._clock())
        budget = RunBudget(self.quota, budget_units)
        youtube = self.youtube.with_quota(budget)

        logger.info("curation_started", budget_units=budget_units, quota_remaining=self.quota.remaining())

        try:
            if targets is None:
                targets = await self.default_targets()
            ordered = sorted(targets, key=lambda t: -t.priority)[: self.config.max_targets_per_run]
            seen: set[str] = set()

            for target in ordered:
                await self._curate_target(target, youtube, seen, result)
                result.targets_processed += 1

        except ExhaustedSignal as e:
            result.quota_exhausted = True
            logger.warning(
                "curation_paused_quota_exhausted",
                reason=str(e),
                targets_processed=result.targets_processed,
                videos_added=result.videos_added,
            )
        except Exception as e:
            result.aborted_reason = f"{type(e).__name__}: {e}"
            self._record_error(result, f"run aborted: {result.aborted_reason}")
            logger.exception(
                "curation_aborted",
                error_type=type(e).__name__,
                videos_added=result.videos_added,
            )

        result.quota_used = budget.spent
        result.finished_at = self._clock()

        logger.info(
            "curation_completed",
            videos_analyzed=result.videos_analyzed,
            videos_added=result.videos_added,
            videos_rejected=result.videos_rejected,
            duplicates=result.duplicates,
            quota_used=result.quota_used,
            quota_exhausted=result.quota_exhausted,
        )
        return result

    async def _curate_target(
        self,
        target: CurationTarget,
        youtube: YouTubeService,
        seen: set[str],
        result: CurationResult,
    ) -> None:
        queries = target.queries or (
            instructor_queries(target.name)
            if target.kind == "instructor"
            else [f"{target.name} bjj technique"]
        )
        accepted = 0

        for query in queries:
            if accepted >= self.config.accepts_per_target:
                logger.info(
                    "target_early_exit",
                    target=target.name,
                    accepted=accepted,
                    skipped_queries=len(queries) - queries.index(query),
                )
                break

            try:
                candidates = await youtube.discover(query)
            except TransientExternalError as e:
                self._record_error(result, f"search '{query}': {e}")
                continue
            result.searches_performed += 1

            fresh = [c for c in candidates if c.external_id not in seen]
            seen.update(c.external_id for c in fresh)

            for start in range(0, len(fresh), self.config.batch_size):
                if accepted >= self.config.accepts_per_target:
                    break
                if start > 0:
                    await asyncio.sleep(self.config.batch_delay_seconds)

                batch = fresh[start : start + self.config.batch_size]
                accepted += await self._process_batch(batch, target, result)

    async def _process_batch(
        self, batch: list[Candidate], target: CurationTarget, result: CurationResult
    ) -> int:
        """Evaluate one bounded batch concurrently and tally outcomes.

        Returns:
            Number of candidates added.

        Raises:
            Exception: The first non-candidate failure (e.g. datastore outage),
                after the rest of the batch has been tallied.
        """
        outcomes = await asyncio.gather(
            *(self._process_candidate(candidate, target) for candidate in batch),
            return_exceptions=True,
        )

        added = 0
        fatal: BaseException | None = None
        for candidate, outcome in zip(batch, outcomes, strict=True):
            if isinstance(outcome, BaseException):
                fatal = fatal or outcome
                continue

            status, message = outcome
            result.videos_analyzed += 1
            if status == ADDED:
                result.videos_added += 1
                added += 1
            elif status == DUPLICATE:
                result.duplicates += 1
            elif status == REJECTED:
                result.videos_rejected += 1
            else:
                result.videos_rejected += 1
                self._record_error(result, f"{candidate.external_id}: {message}")

        if fatal is not None:
            raise fatal
        return added

    async def _process_candidate(
        self, candidate: Candidate, target: CurationTarget
    ) -> tuple[str, str | None]:
        try:
            verdict = await self.gate.evaluate(candidate, target)

            if not verdict.accept:
                logger.info(
                    "candidate_rejected",
                    video_id=candidate.external_id,
                    category=verdict.reject_category.value if verdict.reject_category else None,
                    reason=verdict.reject_reason,
                )
                if verdict.reject_category == RejectCategory.DUPLICATE:
                    return DUPLICATE, None
                if verdict.reject_category == RejectCategory.ERROR:
                    return FAILED, verdict.reject_reason
                return REJECTED, verdict.reject_reason

            stored = await self.gate.admit(candidate, verdict)
            if stored is None:
                return DUPLICATE, None
            return ADDED, None

        except (ContractViolation, ValidationError) as e:
            logger.warning(
                "candidate_contract_violation",
                video_id=candidate.external_id,
                error_type=type(e).__name__,
                error=str(e),
            )
            return FAILED, f"{type(e).__name__}: {e}"

    def _record_error(self, result: CurationResult, message: str) -> None:
        if len(result.errors) < self.config.max_errors_in_summary:
            result.errors.append(message)
