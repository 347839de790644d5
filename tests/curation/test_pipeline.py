"""Unit tests for the curation pipeline orchestrator."""

from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from src.curation.config import CurationConfig
from src.curation.errors import ContractViolation, TransientExternalError
from src.curation.pipeline import CurationPipeline
from src.curation.quota import CallClass, QuotaGovernor
from src.curation.schemas import (
    Candidate,
    CurationTarget,
    RejectCategory,
    StyleTag,
    Verdict,
    VideoRecord,
)
from src.curation.youtube_service import YouTubeService

COSTS = {CallClass.SEARCH: 100, CallClass.VIDEO_DETAIL: 1, CallClass.CHANNEL_STAT: 1}


class FakeYouTube:
    """Candidate Source double that bills one search per discover call."""

    def __init__(self, results: dict[str, list[str]], quota=None, failing: set[str] | None = None):
        self.results = results
        self.quota = quota
        self.failing = failing or set()
        self.queries: list[str] = []

    def with_quota(self, quota) -> "FakeYouTube":
        bound = FakeYouTube(self.results, quota, self.failing)
        bound.queries = self.queries
        return bound

    async def discover(self, query: str) -> list[Candidate]:
        self.quota.reserve_call(CallClass.SEARCH)
        self.queries.append(query)
        if query in self.failing:
            raise TransientExternalError(f"search failed for {query}")
        return [
            Candidate(external_id=vid, title=f"{query} {vid}", duration_seconds=600)
            for vid in self.results.get(query, [])
        ]


def accepting_verdict() -> Verdict:
    return Verdict(
        accept=True,
        instructor_name="Lachlan Giles",
        technique_name="triangle choke",
        quality_score=8.0,
        style_tag=StyleTag.NO_GI,
        threshold=7.0,
    )


def stored(candidate: Candidate, verdict: Verdict) -> VideoRecord:
    return VideoRecord(youtube_id=candidate.external_id, title=candidate.title, quality_score=8.0)


@pytest.mark.unit
class TestCurationPipeline:
    """Test suite for CurationPipeline class."""

    @pytest.fixture
    def config(self) -> CurationConfig:
        """Create test configuration."""
        return CurationConfig(
            daily_quota_budget=10000,
            search_cost=100,
            accepts_per_target=2,
            batch_size=2,
            batch_delay_seconds=0,
            max_targets_per_run=20,
            max_errors_in_summary=20,
            trusted_instructors=["Lachlan Giles", "Craig Jones"],
        )

    @pytest.fixture
    def gate(self) -> MagicMock:
        """Create gate that accepts and stores everything."""
        gate = MagicMock()
        gate.evaluate = AsyncMock(return_value=accepting_verdict())
        gate.admit = AsyncMock(side_effect=stored)
        return gate

    @pytest.fixture
    def gap_analyzer(self) -> MagicMock:
        """Create gap analyzer with no stored priorities."""
        analyzer = MagicMock()
        analyzer.curation_targets = AsyncMock(return_value=[])
        return analyzer

    def make_pipeline(
        self,
        config: CurationConfig,
        youtube: FakeYouTube,
        gate: MagicMock,
        gap_analyzer: MagicMock,
        quota: QuotaGovernor | None = None,
    ) -> CurationPipeline:
        return CurationPipeline(
            config=config,
            quota=quota or QuotaGovernor(config.daily_quota_budget, COSTS),
            store=MagicMock(),
            youtube=youtube,
            gate=gate,
            gap_analyzer=gap_analyzer,
        )

    @pytest.mark.asyncio
    async def test_early_exit_after_enough_accepts(
        self, config: CurationConfig, gate: MagicMock, gap_analyzer: MagicMock
    ) -> None:
        """Test no more queries run for a target once N candidates are accepted."""
        youtube = FakeYouTube({"q1": ["a", "b", "c"], "q2": ["d"], "q3": ["e"]})
        pipeline = self.make_pipeline(config, youtube, gate, gap_analyzer)
        target = CurationTarget(name="triangle choke", queries=["q1", "q2", "q3"])

        result = await pipeline.run_curation([target])

        assert result.videos_added == 2
        assert result.searches_performed == 1
        assert youtube.queries == ["q1"]
        assert result.targets_processed == 1
        assert result.quota_used == 100
        assert gate.evaluate.await_count == 2

    @pytest.mark.asyncio
    async def test_quota_exhaustion_ends_run_with_partial_summary(
        self, config: CurationConfig, gate: MagicMock, gap_analyzer: MagicMock
    ) -> None:
        """Test exhaustion mid-run stops further calls and reports progress so far."""
        youtube = FakeYouTube({"q1": ["a"], "q2": ["b"], "q3": ["c"]})
        quota = QuotaGovernor(10000, COSTS)
        quota.record_usage(9800)
        pipeline = self.make_pipeline(config, youtube, gate, gap_analyzer, quota)
        targets = [
            CurationTarget(name="one", queries=["q1"]),
            CurationTarget(name="two", queries=["q2"]),
            CurationTarget(name="three", queries=["q3"]),
        ]

        result = await pipeline.run_curation(targets)

        assert result.quota_exhausted is True
        assert result.aborted_reason is None
        assert result.videos_added == 2
        assert result.targets_processed == 2
        assert result.quota_used == 200
        assert youtube.queries == ["q1", "q2"]
        assert result.finished_at is not None

    @pytest.mark.asyncio
    async def test_run_budget_caps_spend(
        self, config: CurationConfig, gate: MagicMock, gap_analyzer: MagicMock
    ) -> None:
        """Test a per-run budget stops the run before the daily budget does."""
        youtube = FakeYouTube({"q1": ["a"], "q2": ["b"]})
        quota = QuotaGovernor(10000, COSTS)
        pipeline = self.make_pipeline(config, youtube, gate, gap_analyzer, quota)
        targets = [
            CurationTarget(name="one", queries=["q1"]),
            CurationTarget(name="two", queries=["q2"]),
        ]

        result = await pipeline.run_curation(targets, budget_units=150)

        assert result.quota_exhausted is True
        assert result.quota_used == 100
        assert quota.used == 100
        assert quota.is_exhausted() is False

    @pytest.mark.asyncio
    async def test_targets_run_in_priority_order(
        self, config: CurationConfig, gate: MagicMock, gap_analyzer: MagicMock
    ) -> None:
        """Test higher-priority targets are searched first."""
        youtube = FakeYouTube({})
        pipeline = self.make_pipeline(config, youtube, gate, gap_analyzer)
        targets = [
            CurationTarget(name="low", queries=["low"], priority=1),
            CurationTarget(name="high", queries=["high"], priority=9),
        ]

        await pipeline.run_curation(targets)

        assert youtube.queries == ["high", "low"]

    @pytest.mark.asyncio
    async def test_candidate_failure_is_isolated(
        self, config: CurationConfig, gate: MagicMock, gap_analyzer: MagicMock
    ) -> None:
        """Test one candidate's contract violation does not stop its batch."""

        async def evaluate(candidate: Candidate, target: CurationTarget) -> Verdict:
            if candidate.external_id == "bad":
                raise ContractViolation("no technique")
            return accepting_verdict()

        gate.evaluate = AsyncMock(side_effect=evaluate)
        youtube = FakeYouTube({"q1": ["bad", "good"]})
        pipeline = self.make_pipeline(config, youtube, gate, gap_analyzer)

        result = await pipeline.run_curation([CurationTarget(name="t", queries=["q1"])])

        assert result.videos_analyzed == 2
        assert result.videos_added == 1
        assert result.videos_rejected == 1
        assert result.aborted_reason is None
        assert any("bad" in error for error in result.errors)

    @pytest.mark.asyncio
    async def test_rejections_and_duplicates_are_counted(
        self, config: CurationConfig, gate: MagicMock, gap_analyzer: MagicMock
    ) -> None:
        """Test rejected and duplicate candidates land in separate counters."""
        verdicts = {
            "dup": Verdict.rejected(RejectCategory.DUPLICATE, "Already in library"),
            "low": Verdict.rejected(RejectCategory.QUALITY, "Quality 6.0 below 7.5"),
        }
        gate.evaluate = AsyncMock(
            side_effect=lambda candidate, target: verdicts[candidate.external_id]
        )
        youtube = FakeYouTube({"q1": ["dup", "low"]})
        pipeline = self.make_pipeline(config, youtube, gate, gap_analyzer)

        result = await pipeline.run_curation([CurationTarget(name="t", queries=["q1"])])

        assert result.duplicates == 1
        assert result.videos_rejected == 1
        assert result.videos_added == 0
        assert result.errors == []

    @pytest.mark.asyncio
    async def test_search_failure_moves_to_next_query(
        self, config: CurationConfig, gate: MagicMock, gap_analyzer: MagicMock
    ) -> None:
        """Test a transient search error is recorded and the next query runs."""
        youtube = FakeYouTube({"q2": ["a"]}, failing={"q1"})
        pipeline = self.make_pipeline(config, youtube, gate, gap_analyzer)

        result = await pipeline.run_curation([CurationTarget(name="t", queries=["q1", "q2"])])

        assert result.videos_added == 1
        assert result.searches_performed == 1
        assert result.errors and "q1" in result.errors[0]

    @pytest.mark.asyncio
    async def test_malformed_provider_response_is_isolated_to_its_target(
        self, config: CurationConfig, gate: MagicMock, gap_analyzer: MagicMock
    ) -> None:
        """Test a gateway page from the provider skips one query, not the whole run."""

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/search"):
                if request.url.params["q"] == "gateway":
                    return httpx.Response(200, text="<html>gateway</html>")
                return httpx.Response(200, json={"items": [{"id": {"videoId": "v1"}}]})
            return httpx.Response(
                200, json={"items": [{"id": "v1", "contentDetails": {"duration": "PT10M"}}]}
            )

        config = config.model_copy(update={"max_retries": 0, "retry_backoff_seconds": 0})
        quota = QuotaGovernor(config.daily_quota_budget, COSTS)
        youtube = YouTubeService(
            config, quota, http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler))
        )
        pipeline = self.make_pipeline(config, youtube, gate, gap_analyzer, quota)
        targets = [
            CurationTarget(name="one", queries=["gateway"], priority=2),
            CurationTarget(name="two", queries=["healthy"], priority=1),
        ]

        result = await pipeline.run_curation(targets)

        assert result.aborted_reason is None
        assert result.targets_processed == 2
        assert result.videos_added == 1
        assert "gateway" in result.errors[0]

    @pytest.mark.asyncio
    async def test_store_outage_aborts_with_summary(
        self, config: CurationConfig, gate: MagicMock, gap_analyzer: MagicMock
    ) -> None:
        """Test a datastore failure aborts the run but still returns a summary."""
        gate.admit = AsyncMock(side_effect=ConnectionError("database unavailable"))
        youtube = FakeYouTube({"q1": ["a"], "q2": ["b"]})
        pipeline = self.make_pipeline(config, youtube, gate, gap_analyzer)
        targets = [
            CurationTarget(name="one", queries=["q1"]),
            CurationTarget(name="two", queries=["q2"]),
        ]

        result = await pipeline.run_curation(targets)

        assert result.aborted_reason == "ConnectionError: database unavailable"
        assert result.quota_exhausted is False
        assert result.targets_processed == 0
        assert youtube.queries == ["q1"]
        assert result.finished_at is not None

    @pytest.mark.asyncio
    async def test_same_video_is_evaluated_once_per_run(
        self, config: CurationConfig, gate: MagicMock, gap_analyzer: MagicMock
    ) -> None:
        """Test a candidate returned for two targets is only evaluated once."""
        youtube = FakeYouTube({"q1": ["shared"], "q2": ["shared"]})
        pipeline = self.make_pipeline(config, youtube, gate, gap_analyzer)
        targets = [
            CurationTarget(name="one", queries=["q1"]),
            CurationTarget(name="two", queries=["q2"]),
        ]

        result = await pipeline.run_curation(targets)

        assert gate.evaluate.await_count == 1
        assert result.videos_added == 1

    @pytest.mark.asyncio
    async def test_error_list_is_capped(
        self, config: CurationConfig, gate: MagicMock, gap_analyzer: MagicMock
    ) -> None:
        """Test the summary keeps only the first errors."""
        config.max_errors_in_summary = 3
        gate.evaluate = AsyncMock(side_effect=ContractViolation("broken"))
        youtube = FakeYouTube({"q1": [f"v{i}" for i in range(10)]})
        pipeline = self.make_pipeline(config, youtube, gate, gap_analyzer)

        result = await pipeline.run_curation([CurationTarget(name="t", queries=["q1"])])

        assert result.videos_analyzed == 10
        assert len(result.errors) == 3

    @pytest.mark.asyncio
    async def test_default_targets_fall_back_to_trusted_instructors(
        self, config: CurationConfig, gate: MagicMock, gap_analyzer: MagicMock
    ) -> None:
        """Test instructor targets are used when gap analysis has nothing stored."""
        pipeline = self.make_pipeline(config, FakeYouTube({}), gate, gap_analyzer)

        targets = await pipeline.default_targets()

        assert [t.name for t in targets] == ["Lachlan Giles", "Craig Jones"]
        assert all(t.kind == "instructor" for t in targets)
        assert targets[0].queries[0] == "Lachlan Giles jiu jitsu technique"

    @pytest.mark.asyncio
    async def test_default_targets_prefer_gap_priorities(
        self, config: CurationConfig, gate: MagicMock, gap_analyzer: MagicMock
    ) -> None:
        """Test stored gap priorities are the default targets."""
        gap_targets = [CurationTarget(name="triangle choke", priority=10)]
        gap_analyzer.curation_targets = AsyncMock(return_value=gap_targets)
        pipeline = self.make_pipeline(config, FakeYouTube({}), gate, gap_analyzer)

        assert await pipeline.default_targets() == gap_targets
        gap_analyzer.curation_targets.assert_awaited_once_with(20)
