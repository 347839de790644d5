"""Unit tests for the quality gate."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from src.curation.config import CurationConfig
from src.curation.errors import (
    ContractViolation,
    DuplicateVideoError,
    MalformedClassifierOutput,
    TransientExternalError,
)
from src.curation.quality_gate import (
    QualityGate,
    ThresholdPolicy,
    mentions_target,
    non_instructional_genre,
    normalize_name,
)
from src.curation.schemas import (
    Candidate,
    ClassifierOutput,
    CurationTarget,
    RejectCategory,
    StyleTag,
    Verdict,
    VideoRecord,
    VideoStatus,
)


class InMemoryStore:
    """Knowledge Store double that enforces the youtube_id unique key."""

    def __init__(self):
        self.videos: dict[str, VideoRecord] = {}
        self.queued: list[str] = []

    async def video_exists(self, youtube_id: str) -> bool:
        return youtube_id in self.videos

    async def insert_video(self, record: VideoRecord) -> VideoRecord:
        if record.youtube_id in self.videos:
            raise DuplicateVideoError(record.youtube_id)
        stored = record.model_copy(update={"id": len(self.videos) + 1})
        self.videos[record.youtube_id] = stored
        return stored

    async def queue_for_processing(self, video: VideoRecord) -> None:
        self.queued.append(video.youtube_id)


def classifier_output(**overrides) -> ClassifierOutput:
    fields = {
        "is_instructional": True,
        "instructor_name": "Lachlan Giles",
        "technique_name": "triangle choke",
        "quality_score": 8.0,
        "technique_type": "submission",
        "style_tag": StyleTag.NO_GI,
        "reject": False,
    }
    fields.update(overrides)
    return ClassifierOutput(**fields)


@pytest.mark.unit
class TestLexicalHelpers:
    """Test the cheap pre-LLM checks."""

    def test_normalize_name(self) -> None:
        """Test punctuation and case are ignored."""
        assert normalize_name("  Gordon   RYAN! ") == "gordon ryan"
        assert normalize_name(None) == ""

    @pytest.mark.parametrize(
        "title",
        [
            "ADCC 2024 Full Match - Gordon vs Felipe",
            "Craig Jones Podcast Ep. 12",
            "Q&A with Danaher",
            "Best Heel Hook Highlights",
            "New Instructional Trailer",
        ],
    )
    def test_non_instructional_titles(self, title: str) -> None:
        """Test genre keywords flag non-instructional titles."""
        assert non_instructional_genre(title) is not None

    def test_instructional_title_passes_genre_filter(self) -> None:
        """Test regular instructional titles are not flagged."""
        assert non_instructional_genre("How To Finish The Triangle Choke") is None

    def test_mentions_target(self) -> None:
        """Test token overlap with the minimum token length."""
        assert mentions_target("Cobrinha teaches the berimbolo", "Rubens Charles Cobrinha", 3)
        assert mentions_target("TRIANGLE from guard", "triangle choke", 3)
        assert not mentions_target("Kimura trap system", "triangle choke", 3)
        # Only short tokens: nothing to compare, so the check passes
        assert mentions_target("Anything", "JT", 3)


@pytest.mark.unit
class TestThresholdPolicy:
    """Test the instructor threshold table."""

    @pytest.fixture
    def policy(self) -> ThresholdPolicy:
        """Create policy with one trusted instructor."""
        return ThresholdPolicy({"Lachlan Giles": 7.0}, default_threshold=7.5)

    def test_trusted_instructor_gets_lower_floor(self, policy: ThresholdPolicy) -> None:
        """Test exact and contained matches use the override."""
        assert policy.threshold_for("lachlan giles") == 7.0
        assert policy.threshold_for(None, "Lachlan Giles BJJ") == 7.0
        assert policy.is_trusted("LACHLAN GILES")

    def test_unrecognized_instructor_gets_default(self, policy: ThresholdPolicy) -> None:
        """Test unknown names fall back to the stricter default."""
        assert policy.threshold_for("Some Guy", "Random Channel") == 7.5
        assert policy.threshold_for(None, None) == 7.5
        assert not policy.is_trusted("Some Guy")

    def test_from_config(self) -> None:
        """Test table is built from config trusted list and floors."""
        config = CurationConfig(
            trusted_instructors=["Craig Jones"],
            trusted_quality_floor=6.5,
            default_quality_floor=8.0,
        )

        policy = ThresholdPolicy.from_config(config)

        assert policy.threshold_for("Craig Jones") == 6.5
        assert policy.threshold_for("Unknown") == 8.0


@pytest.mark.unit
class TestQualityGate:
    """Test suite for QualityGate class."""

    @pytest.fixture
    def config(self) -> CurationConfig:
        """Create test configuration."""
        return CurationConfig(
            trusted_instructors=["Lachlan Giles"],
            trusted_quality_floor=7.0,
            default_quality_floor=7.5,
            min_token_length=3,
        )

    @pytest.fixture
    def store(self) -> InMemoryStore:
        """Create in-memory store."""
        return InMemoryStore()

    @pytest.fixture
    def classifier(self) -> MagicMock:
        """Create classifier returning a good verdict."""
        classifier = MagicMock()
        classifier.classify = AsyncMock(return_value=classifier_output())
        return classifier

    @pytest.fixture
    def gate(
        self, config: CurationConfig, store: InMemoryStore, classifier: MagicMock
    ) -> QualityGate:
        """Create gate under test."""
        return QualityGate(config, store, classifier)

    @pytest.fixture
    def candidate(self) -> Candidate:
        """Create sample candidate."""
        return Candidate(
            external_id="vid1",
            title="Triangle Choke Masterclass",
            channel_name="Lachlan Giles",
            duration_seconds=900,
        )

    @pytest.fixture
    def target(self) -> CurationTarget:
        """Create technique target."""
        return CurationTarget(name="triangle choke")

    @pytest.mark.asyncio
    async def test_accepts_good_candidate(
        self, gate: QualityGate, candidate: Candidate, target: CurationTarget
    ) -> None:
        """Test a trusted, high-quality instructional video is accepted."""
        verdict = await gate.evaluate(candidate, target)

        assert verdict.accept is True
        assert verdict.technique_name == "triangle choke"
        assert verdict.threshold == 7.0

    @pytest.mark.asyncio
    async def test_rejects_existing_video_without_llm_call(
        self,
        gate: QualityGate,
        store: InMemoryStore,
        classifier: MagicMock,
        candidate: Candidate,
    ) -> None:
        """Test dedup-by-id runs before the classifier."""
        store.videos["vid1"] = VideoRecord(youtube_id="vid1", title="x", quality_score=8)

        verdict = await gate.evaluate(candidate)

        assert verdict.accept is False
        assert verdict.reject_category == RejectCategory.DUPLICATE
        classifier.classify.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_rejects_genre_before_llm(
        self, gate: QualityGate, classifier: MagicMock, target: CurationTarget
    ) -> None:
        """Test competition footage is rejected without spending LLM budget."""
        candidate = Candidate(external_id="vid2", title="Triangle choke full match at ADCC")

        verdict = await gate.evaluate(candidate, target)

        assert verdict.reject_category == RejectCategory.GENRE
        classifier.classify.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_rejects_lexical_mismatch(
        self, gate: QualityGate, classifier: MagicMock
    ) -> None:
        """Test a title that never mentions the target is rejected."""
        candidate = Candidate(external_id="vid3", title="Kimura trap system", channel_name="X")

        verdict = await gate.evaluate(candidate, CurationTarget(name="triangle choke"))

        assert verdict.reject_category == RejectCategory.LEXICAL
        classifier.classify.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_malformed_classifier_output_rejects(
        self, gate: QualityGate, classifier: MagicMock, candidate: Candidate
    ) -> None:
        """Test malformed output rejects the candidate instead of raising."""
        classifier.classify = AsyncMock(side_effect=MalformedClassifierOutput("bad"))

        verdict = await gate.evaluate(candidate)

        assert verdict.accept is False
        assert verdict.reject_category == RejectCategory.MALFORMED
        assert verdict.reject_reason == "Analysis failed"

    @pytest.mark.asyncio
    async def test_classifier_timeout_is_soft_failure(
        self, gate: QualityGate, classifier: MagicMock, candidate: Candidate
    ) -> None:
        """Test an unavailable classifier skips the candidate."""
        classifier.classify = AsyncMock(side_effect=TransientExternalError("timeout"))

        verdict = await gate.evaluate(candidate)

        assert verdict.accept is False
        assert verdict.reject_category == RejectCategory.ERROR

    @pytest.mark.asyncio
    async def test_classifier_reject_flag(
        self, gate: QualityGate, classifier: MagicMock, candidate: Candidate
    ) -> None:
        """Test the classifier's own rejection is honoured."""
        classifier.classify = AsyncMock(
            return_value=classifier_output(reject=True, reject_reason="Course advert")
        )

        verdict = await gate.evaluate(candidate)

        assert verdict.reject_category == RejectCategory.CLASSIFIER
        assert verdict.reject_reason == "Course advert"

    @pytest.mark.asyncio
    async def test_asymmetric_threshold(
        self, gate: QualityGate, classifier: MagicMock
    ) -> None:
        """Test 7.2 passes for a trusted instructor and fails for an unknown one."""
        classifier.classify = AsyncMock(
            return_value=classifier_output(quality_score=7.2, instructor_name="Lachlan Giles")
        )
        trusted = await gate.evaluate(
            Candidate(external_id="t1", title="Triangle", channel_name="Lachlan Giles")
        )

        classifier.classify = AsyncMock(
            return_value=classifier_output(quality_score=7.2, instructor_name="Unknown Coach")
        )
        unknown = await gate.evaluate(
            Candidate(external_id="t2", title="Triangle", channel_name="Garage BJJ")
        )

        assert trusted.accept is True
        assert unknown.accept is False
        assert unknown.reject_category == RejectCategory.QUALITY
        assert unknown.threshold == 7.5

    @pytest.mark.asyncio
    async def test_missing_technique_falls_back_to_target(
        self, gate: QualityGate, classifier: MagicMock, candidate: Candidate, target: CurationTarget
    ) -> None:
        """Test a technique target fills in a missing technique name."""
        classifier.classify = AsyncMock(return_value=classifier_output(technique_name=None))

        verdict = await gate.evaluate(candidate, target)

        assert verdict.technique_name == "triangle choke"

    @pytest.mark.asyncio
    async def test_missing_technique_without_target_is_contract_violation(
        self, gate: QualityGate, classifier: MagicMock, candidate: Candidate
    ) -> None:
        """Test an accepted verdict with no technique cannot be admitted."""
        classifier.classify = AsyncMock(return_value=classifier_output(technique_name=None))

        with pytest.raises(ContractViolation):
            await gate.evaluate(candidate)

    @pytest.mark.asyncio
    async def test_admit_inserts_active_record_and_queues(
        self, gate: QualityGate, store: InMemoryStore, candidate: Candidate, target: CurationTarget
    ) -> None:
        """Test acceptance inserts an active record and queues extraction."""
        verdict = await gate.evaluate(candidate, target)

        stored = await gate.admit(candidate, verdict)

        assert stored is not None
        assert stored.status == VideoStatus.ACTIVE
        assert stored.quality_score == 8.0
        assert stored.style_tag == StyleTag.NO_GI
        assert store.queued == ["vid1"]

    @pytest.mark.asyncio
    async def test_same_id_twice_yields_one_record(
        self, gate: QualityGate, store: InMemoryStore, candidate: Candidate, target: CurationTarget
    ) -> None:
        """Test two candidates with the same external id produce one active record."""
        first = await gate.evaluate(candidate, target)
        second = await gate.evaluate(candidate, target)

        assert await gate.admit(candidate, first) is not None
        # The second verdict was computed before the insert; the unique key still holds
        assert await gate.admit(candidate, second) is None

        third = await gate.evaluate(candidate, target)
        assert third.reject_category == RejectCategory.DUPLICATE
        assert len([v for v in store.videos.values() if v.status == VideoStatus.ACTIVE]) == 1

    @pytest.mark.asyncio
    async def test_admit_requires_accepting_verdict(
        self, gate: QualityGate, candidate: Candidate
    ) -> None:
        """Test admitting a rejected verdict is a contract violation."""
        with pytest.raises(ContractViolation):
            await gate.admit(candidate, Verdict(accept=False))

    @pytest.mark.asyncio
    async def test_transcript_is_passed_to_classifier(
        self, config: CurationConfig, store: InMemoryStore, classifier: MagicMock, candidate: Candidate
    ) -> None:
        """Test optional transcript text reaches the classifier."""
        transcripts = MagicMock()
        transcripts.get_transcript_text = AsyncMock(return_value="caption text")
        gate = QualityGate(config, store, classifier, transcripts=transcripts)

        await gate.evaluate(candidate)

        assert classifier.classify.await_args.args[2] == "caption text"
