"""LLM content classifier for candidate videos."""

import asyncio
import json
from typing import Any

from openai import APIConnectionError, APIStatusError, APITimeoutError, AsyncOpenAI
from pydantic import ValidationError

from src.utils.logging import get_logger

from .config import CurationConfig
from .errors import MalformedClassifierOutput, TransientExternalError
from .schemas import Candidate, ClassifierOutput, CurationTarget

logger = get_logger(__name__)

SYSTEM_PROMPT = (
    "You review YouTube videos for a Brazilian jiu-jitsu coaching library. "
    "Answer with a single JSON object and nothing else."
)

PROMPT_TEMPLATE = """Decide whether this video teaches a BJJ technique and how well.

Title: {title}
Channel: {channel}
Duration: {duration}
Description: {description}
{target_line}{transcript_block}
Return JSON with exactly these fields:
{{
  "isInstructional": true or false,
  "instructorName": "name of the person teaching, or null",
  "techniqueName": "main technique taught, or null",
  "qualityScore": 0-10 (clarity, detail, credibility of the instruction),
  "techniqueType": "submission | sweep | pass | escape | takedown | guard | control | concept",
  "styleTag": "gi | no-gi | both",
  "reject": true or false,
  "rejectReason": "short reason when reject is true, else null"
}}

Reject competition footage, full matches, highlight reels, interviews, podcasts,
vlogs, promos and videos that only advertise a paid course."""

STYLE_ALIASES = {
    "gi": "gi",
    "no-gi": "no-gi",
    "nogi": "no-gi",
    "no gi": "no-gi",
    "no_gi": "no-gi",
    "both": "both",
}


def _extract_json_object(text: str) -> dict[str, Any]:
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        raise MalformedClassifierOutput("no JSON object in classifier response")
    try:
        parsed = json.loads(text[start : end + 1])
    except json.JSONDecodeError as e:
        raise MalformedClassifierOutput(f"invalid JSON: {e.msg}") from e
    if not isinstance(parsed, dict):
        raise MalformedClassifierOutput("classifier response is not an object")
    return parsed


def parse_classifier_response(text: str | None) -> ClassifierOutput:
    """Parse untrusted classifier text into a validated ClassifierOutput.

    Args:
        text: Raw message content from the model.

    Returns:
        Validated output with quality clamped to 0-10 and style tag normalized.

    Raises:
        MalformedClassifierOutput: If the text is empty, not JSON or fails validation.
    """
    if not text:
        raise MalformedClassifierOutput("empty classifier response")

    data = _extract_json_object(text)

    style = data.get("styleTag")
    if isinstance(style, str):
        data["styleTag"] = STYLE_ALIASES.get(style.strip().lower(), "both")
    elif style is None:
        data.pop("styleTag", None)

    try:
        return ClassifierOutput.model_validate(data)
    except ValidationError as e:
        raise MalformedClassifierOutput(f"classifier output failed validation: {e.error_count()} errors") from e


class ContentClassifier:
    """Asks an OpenAI-compatible model to judge a candidate video.

    The model's answer is untrusted: anything that is not a well-formed JSON
    verdict raises MalformedClassifierOutput, which the quality gate turns
    into a rejection.
    """

    def __init__(self, config: CurationConfig, client: AsyncOpenAI | None = None):
        """Initialize classifier.

        Args:
            config: Configuration with model, endpoint and timeout settings.
            client: Optional pre-built AsyncOpenAI client.
        """
        self.config = config
        self.client = client or AsyncOpenAI(
            base_url=config.classifier_base_url,
            api_key=config.classifier_api_key,
            timeout=config.classifier_timeout_seconds,
        )
        logger.info(
            "classifier_initialized",
            model=config.classifier_model,
            base_url=config.classifier_base_url,
        )

    def build_prompt(
        self,
        candidate: Candidate,
        target: CurationTarget | None = None,
        transcript: str | None = None,
    ) -> str:
        duration = (
            f"{candidate.duration_seconds // 60}m {candidate.duration_seconds % 60}s"
            if candidate.duration_seconds
            else "unknown"
        )
        target_line = f"Searched for: {target.name}\n" if target else ""
        transcript_block = (
            f"\nTranscript excerpt:\n{transcript[: self.config.transcript_max_chars]}\n"
            if transcript
            else ""
        )
        return PROMPT_TEMPLATE.format(
            title=candidate.title,
            channel=candidate.channel_name or "unknown",
            duration=duration,
            description=(candidate.description or "")[:500],
            target_line=target_line,
            transcript_block=transcript_block,
        )

    async def classify(
        self,
        candidate: Candidate,
        target: CurationTarget | None = None,
        transcript: str | None = None,
    ) -> ClassifierOutput:
        """Classify one candidate.

        Args:
            candidate: Candidate video metadata.
            target: Instructor or technique the candidate was searched for.
            transcript: Optional caption text.

        Returns:
            Validated classifier output.

        Raises:
            MalformedClassifierOutput: If the response cannot be parsed.
            TransientExternalError: If the model endpoint keeps failing.
        """
        prompt = self.build_prompt(candidate, target, transcript)
        attempts = self.config.max_retries + 1

        for attempt in range(attempts):
            try:
                response = await self.client.chat.completions.create(
                    model=self.config.classifier_model,
                    messages=[
                        {"role": "system", "content": SYSTEM_PROMPT},
                        {"role": "user", "content": prompt},
                    ],
                    response_format={"type": "json_object"},
                    temperature=0,
                    timeout=self.config.classifier_timeout_seconds,
                )
                break
            except (APITimeoutError, APIConnectionError) as e:
                error = e
            except APIStatusError as e:
                if e.status_code < 500 and e.status_code != 429:
                    raise TransientExternalError(f"classifier error: {e.status_code}") from e
                error = e

            logger.warning(
                "classifier_request_failed",
                video_id=candidate.external_id,
                attempt=attempt + 1,
                error_type=type(error).__name__,
            )
            if attempt < attempts - 1:
                await asyncio.sleep(self.config.retry_backoff_seconds * (2**attempt))
        else:
            raise TransientExternalError(
                f"classifier unavailable after {attempts} attempts"
            ) from error

        content = response.choices[0].message.content if response.choices else None
        output = parse_classifier_response(content)

        logger.info(
            "candidate_classified",
            video_id=candidate.external_id,
            is_instructional=output.is_instructional,
            quality_score=output.quality_score,
            instructor=output.instructor_name,
        )
        return output
