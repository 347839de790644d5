"""Quality gate: decides which candidates are admitted to the Knowledge Store."""

import re

from src.utils.logging import get_logger

from .classifier_service import ContentClassifier
from .config import CurationConfig
from .errors import ContractViolation, DuplicateVideoError, MalformedClassifierOutput, TransientExternalError
from .schemas import (
    Candidate,
    CurationTarget,
    RejectCategory,
    Verdict,
    VideoRecord,
    VideoStatus,
)
from .storage_service import KnowledgeStore
from .transcript_service import TranscriptService

logger = get_logger(__name__)

NON_INSTRUCTIONAL_PATTERNS = [
    r"\bpodcast\b",
    r"\binterview\b",
    r"\bq\s*&\s*a\b",
    r"\bvlog\b",
    r"\bcompetition\b",
    r"\bmatch footage\b",
    r"\bfull match\b",
    r"\bfight\b",
    r"\bhighlights?\b",
    r"\bcompilation\b",
    r"\bpromo\b",
    r"\btrailer\b",
    r"\bannouncement\b",
    r"\breaction\b",
]
_GENRE_RE = re.compile("|".join(NON_INSTRUCTIONAL_PATTERNS), re.IGNORECASE)


def normalize_name(name: str | None) -> str:
    """Lowercase and strip punctuation so "Gordon Ryan!" matches "gordon ryan"."""
    if not name:
        return ""
    return re.sub(r"\s+", " ", re.sub(r"[^a-z0-9 ]", " ", name.lower())).strip()


def non_instructional_genre(title: str) -> str | None:
    """Return the matched genre keyword when a title looks non-instructional."""
    match = _GENRE_RE.search(title)
    return match.group(0).lower() if match else None


def mentions_target(text: str, target_name: str, min_token_length: int) -> bool:
    """Cheap lexical check that text mentions at least one meaningful target token.

    Tokens shorter than min_token_length are ignored, so nicknames and partial
    names still pass while unrelated titles are blocked. A target with no
    qualifying token always passes.
    """
    tokens = [t for t in normalize_name(target_name).split() if len(t) >= min_token_length]
    if not tokens:
        return True
    haystack = normalize_name(text)
    return any(token in haystack for token in tokens)


class ThresholdPolicy:
    """Instructor to quality-floor table.

    Trusted instructors get a lower floor than unrecognized ones. The table
    is plain data so the policy can be audited and tested without the LLM.
    """

    def __init__(self, overrides: dict[str, float], default_threshold: float):
        self.overrides = {normalize_name(name): floor for name, floor in overrides.items()}
        self.default_threshold = default_threshold

    @classmethod
    def from_config(cls, config: CurationConfig) -> "ThresholdPolicy":
        return cls(
            {name: config.trusted_quality_floor for name in config.trusted_instructors},
            config.default_quality_floor,
        )

    def match(self, *names: str | None) -> str | None:
        """Return the table entry matching any of the given names, if any."""
        normalized = [normalize_name(n) for n in names if n]
        for candidate in normalized:
            if candidate in self.overrides:
                return candidate
        for trusted in self.overrides:
            if any(trusted in candidate for candidate in normalized):
                return trusted
        return None

    def threshold_for(self, *names: str | None) -> float:
        entry = self.match(*names)
        return self.overrides[entry] if entry else self.default_threshold

    def is_trusted(self, *names: str | None) -> bool:
        return self.match(*names) is not None


class QualityGate:
    """Evaluates candidates and admits accepted ones to the Knowledge Store.

    Stages run cheapest first: dedup against the store, the non-instructional
    title filter, the lexical target check, then the LLM classifier and the
    asymmetric quality floor.
    """

    def __init__(
        self,
        config: CurationConfig,
        store: KnowledgeStore,
        classifier: ContentClassifier,
        policy: ThresholdPolicy | None = None,
        transcripts: TranscriptService | None = None,
    ):
        """Initialize the gate.

        Args:
            config: Configuration with lexical and threshold settings.
            store: Knowledge Store used for dedup and inserts.
            classifier: LLM content classifier.
            policy: Threshold table. Built from config when omitted.
            transcripts: Optional caption lookup attached to classifier calls.
        """
        self.config = config
        self.store = store
        self.classifier = classifier
        self.policy = policy or ThresholdPolicy.from_config(config)
        self.transcripts = transcripts

    async def evaluate(
        self, candidate: Candidate, target: CurationTarget | None = None
    ) -> Verdict:
        """Decide whether a candidate should be admitted.

        Args:
            candidate: Candidate video with duration resolved.
            target: Instructor or technique the candidate was searched for.

        Returns:
            Verdict. Rejections carry a category and reason.

        Raises:
            ContractViolation: If the classifier accepted a video without naming a technique.
        """
        video_id = candidate.external_id

        if await self.store.video_exists(video_id):
            return Verdict.rejected(RejectCategory.DUPLICATE, "Already in library")

        genre = non_instructional_genre(candidate.title)
        if genre:
            logger.info("candidate_genre_rejected", video_id=video_id, keyword=genre)
            return Verdict.rejected(RejectCategory.GENRE, f"Non-instructional content: {genre}")

        if target and not mentions_target(
            f"{candidate.title} {candidate.channel_name}",
            target.name,
            self.config.min_token_length,
        ):
            logger.info("candidate_lexical_rejected", video_id=video_id, target=target.name)
            return Verdict.rejected(
                RejectCategory.LEXICAL, f"Title does not mention {target.name}"
            )

        transcript = None
        if self.transcripts is not None:
            transcript = await self.transcripts.get_transcript_text(video_id)

        try:
            output = await self.classifier.classify(candidate, target, transcript)
        except MalformedClassifierOutput as e:
            logger.warning("classifier_output_malformed", video_id=video_id, error=str(e))
            return Verdict.rejected(RejectCategory.MALFORMED, "Analysis failed")
        except TransientExternalError as e:
            logger.warning("classifier_unavailable", video_id=video_id, error=str(e))
            return Verdict.rejected(RejectCategory.ERROR, f"Classifier unavailable: {e}")

        fields = {
            "instructor_name": output.instructor_name,
            "technique_name": output.technique_name,
            "quality_score": output.quality_score,
            "technique_type": output.technique_type,
            "style_tag": output.style_tag,
        }

        if output.reject or not output.is_instructional:
            return Verdict.rejected(
                RejectCategory.CLASSIFIER,
                output.reject_reason or "Not instructional",
                **fields,
            )

        threshold = self.policy.threshold_for(output.instructor_name, candidate.channel_name)
        if output.quality_score < threshold:
            return Verdict.rejected(
                RejectCategory.QUALITY,
                f"Quality {output.quality_score:.1f} below {threshold:.1f}",
                threshold=threshold,
                **fields,
            )

        if not output.technique_name:
            if target is None or target.kind != "technique":
                raise ContractViolation(f"accepted verdict for {video_id} has no technique")
            fields["technique_name"] = target.name

        return Verdict(accept=True, threshold=threshold, **fields)

    async def admit(self, candidate: Candidate, verdict: Verdict) -> VideoRecord | None:
        """Insert an accepted candidate and queue it for knowledge extraction.

        Returns:
            The stored record, or None when another writer inserted it first.

        Raises:
            ContractViolation: If the verdict is not an acceptance with a quality score.
        """
        if not verdict.accept or verdict.quality_score is None:
            raise ContractViolation(f"cannot admit {candidate.external_id} without an accepting verdict")

        record = VideoRecord(
            youtube_id=candidate.external_id,
            title=candidate.title,
            instructor_name=verdict.instructor_name,
            channel_name=candidate.channel_name or None,
            technique_name=verdict.technique_name,
            technique_type=verdict.technique_type,
            style_tag=verdict.style_tag or "both",
            duration_seconds=candidate.duration_seconds,
            quality_score=verdict.quality_score,
            status=VideoStatus.ACTIVE,
            upload_date=candidate.published_at,
            tags=[t for t in (verdict.technique_type, verdict.technique_name) if t],
        )

        try:
            stored = await self.store.insert_video(record)
        except DuplicateVideoError:
            return None

        await self.store.queue_for_processing(stored)
        logger.info(
            "candidate_admitted",
            video_id=candidate.external_id,
            instructor=verdict.instructor_name,
            technique=verdict.technique_name,
            quality_score=verdict.quality_score,
        )
        return stored
