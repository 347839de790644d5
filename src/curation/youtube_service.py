"""YouTube Data API client used as the curation Candidate Source."""

import asyncio
import copy
import re
from datetime import datetime
from typing import Any

import httpx

from src.utils.logging import get_logger

from .config import CurationConfig
from .errors import ExhaustedSignal, TransientExternalError
from .quota import CallClass, QuotaGovernor, RunBudget
from .schemas import Candidate

logger = get_logger(__name__)

OEMBED_URL = "https://www.youtube.com/oembed"
QUOTA_ERROR_REASONS = {"quotaExceeded", "dailyLimitExceeded"}
OEMBED_GONE_STATUSES = {400, 401, 403, 404}
DETAIL_BATCH_SIZE = 50

INSTRUCTOR_QUERY_SUFFIXES = [
    "jiu jitsu technique",
    "BJJ instructional",
    "BJJ tutorial",
    "grappling technique breakdown",
]


def parse_iso8601_duration(duration: str | None) -> int | None:
    """Parse a YouTube PT#H#M#S duration into seconds.

    Returns:
        Total seconds, or None when the value is empty or zero.
    """
    if not duration:
        return None
    total = 0
    num = ""
    units = {"H": 3600, "M": 60, "S": 1}
    for ch in duration.replace("PT", ""):
        if ch.isdigit():
            num += ch
        elif ch in units and num:
            total += int(num) * units[ch]
            num = ""
    return total if total > 0 else None


def sanitize_query(query: str) -> str:
    """Turn stored technique names like "arm_bar" into search-friendly text."""
    return re.sub(r"\s+", " ", query.replace("_", " ")).strip()


def instructor_queries(instructor: str) -> list[str]:
    """Build the fixed query templates for one instructor."""
    name = sanitize_query(instructor)
    return [f"{name} {suffix}" for suffix in INSTRUCTOR_QUERY_SUFFIXES]


def _json_object(response: httpx.Response) -> dict[str, Any] | None:
    """Decode a response body, or None when it is not a JSON object."""
    try:
        body = response.json()
    except ValueError:
        return None
    return body if isinstance(body, dict) else None


def _quota_error_reason(response: httpx.Response) -> str | None:
    if response.status_code not in (403, 429):
        return None
    body = _json_object(response) or {}
    error = body.get("error")
    errors = error.get("errors") if isinstance(error, dict) else None
    if not isinstance(errors, list) or not errors or not isinstance(errors[0], dict):
        return None
    reason = errors[0].get("reason")
    return reason if reason in QUOTA_ERROR_REASONS else None


class YouTubeService:
    """Searches YouTube for candidate videos under a quota governor.

    Every request reserves its units before it is sent. Provider-reported
    quota errors are mapped to ExhaustedSignal. Timeouts, transport errors and
    5xx responses are retried with exponential backoff and then surface as
    TransientExternalError so the caller can skip just that query.
    """

    def __init__(
        self,
        config: CurationConfig,
        quota: QuotaGovernor | RunBudget,
        http_client: httpx.AsyncClient | None = None,
    ):
        """Initialize YouTube service.

        Args:
            config: Configuration with API key, timeouts and duration bounds.
            quota: Governor consulted before every quota-billed call.
            http_client: Optional shared client. One is created when omitted.
        """
        self.config = config
        self.quota = quota
        self.client = http_client or httpx.AsyncClient(timeout=config.http_timeout_seconds)
        logger.info(
            "youtube_service_initialized",
            api_key_present=bool(config.youtube_api_key),
        )

    def with_quota(self, quota: QuotaGovernor | RunBudget) -> "YouTubeService":
        """Return a view of this service that bills a different quota holder."""
        bound = copy.copy(self)
        bound.quota = quota
        return bound

    async def aclose(self) -> None:
        await self.client.aclose()

    async def _get(
        self, endpoint: str, params: dict[str, Any], call_class: CallClass
    ) -> dict[str, Any]:
        """Issue one quota-billed GET with retries.

        Raises:
            ExhaustedSignal: Quota refused locally or reported by the provider.
            TransientExternalError: Retries exhausted or non-retryable error status.
        """
        url = f"{self.config.youtube_base_url}/{endpoint}"
        params = {**params, "key": self.config.youtube_api_key}
        attempts = self.config.max_retries + 1
        last_error = ""

        for attempt in range(attempts):
            self.quota.reserve_call(call_class)

            try:
                response = await self.client.get(
                    url, params=params, timeout=self.config.http_timeout_seconds
                )
            except (httpx.TimeoutException, httpx.TransportError) as e:
                last_error = f"{type(e).__name__}: {e}"
                logger.warning(
                    "youtube_request_failed",
                    endpoint=endpoint,
                    attempt=attempt + 1,
                    error_type=type(e).__name__,
                )
            else:
                reason = _quota_error_reason(response)
                if reason:
                    logger.warning("youtube_quota_exceeded", endpoint=endpoint, reason=reason)
                    self.quota.mark_exhausted()
                    raise ExhaustedSignal(f"YouTube reported {reason}")

                if response.status_code < 400:
                    data = _json_object(response)
                    if data is not None:
                        return data
                    last_error = f"YouTube {endpoint} returned a non-JSON body"
                    logger.warning(
                        "youtube_response_malformed",
                        endpoint=endpoint,
                        attempt=attempt + 1,
                        content_type=response.headers.get("content-type"),
                    )
                else:
                    last_error = f"YouTube {endpoint} error: {response.status_code}"
                    if response.status_code < 500 and response.status_code != 429:
                        raise TransientExternalError(last_error)
                    logger.warning(
                        "youtube_request_failed",
                        endpoint=endpoint,
                        attempt=attempt + 1,
                        status_code=response.status_code,
                    )

            if attempt < attempts - 1:
                await asyncio.sleep(self.config.retry_backoff_seconds * (2**attempt))

        raise TransientExternalError(last_error or f"YouTube {endpoint} failed")

    async def search(self, query: str, max_results: int | None = None) -> list[Candidate]:
        """Search for videos matching a query.

        Args:
            query: Free-text search query.
            max_results: Result cap. Defaults to config.results_per_search.

        Returns:
            Candidates without durations resolved.

        Raises:
            ExhaustedSignal: If the quota refuses the call.
            TransientExternalError: If the provider keeps failing.
        """
        query = sanitize_query(query)
        data = await self._get(
            "search",
            {
                "part": "snippet",
                "q": query,
                "type": "video",
                "maxResults": max_results or self.config.results_per_search,
                "relevanceLanguage": "en",
            },
            CallClass.SEARCH,
        )

        candidates = []
        for item in data.get("items", []):
            video_id = (item.get("id") or {}).get("videoId")
            if not video_id:
                continue
            snippet = item.get("snippet", {})
            published = snippet.get("publishedAt")
            candidates.append(
                Candidate(
                    external_id=video_id,
                    title=snippet.get("title", ""),
                    description=snippet.get("description", ""),
                    channel_name=snippet.get("channelTitle", ""),
                    channel_id=snippet.get("channelId"),
                    published_at=datetime.fromisoformat(published.replace("Z", "+00:00"))
                    if published
                    else None,
                )
            )

        logger.info("youtube_search_completed", query=query, results=len(candidates))
        return candidates

    async def fetch_durations(self, video_ids: list[str]) -> dict[str, int]:
        """Resolve durations through videos.list, one detail call per 50 ids."""
        durations: dict[str, int] = {}
        for start in range(0, len(video_ids), DETAIL_BATCH_SIZE):
            batch = video_ids[start : start + DETAIL_BATCH_SIZE]
            data = await self._get(
                "videos",
                {"part": "contentDetails", "id": ",".join(batch)},
                CallClass.VIDEO_DETAIL,
            )
            for item in data.get("items", []):
                seconds = parse_iso8601_duration(
                    item.get("contentDetails", {}).get("duration")
                )
                if seconds is not None:
                    durations[item["id"]] = seconds
        return durations

    async def discover(self, query: str, max_results: int | None = None) -> list[Candidate]:
        """Search, resolve durations and drop candidates outside the duration bounds.

        Shorts and trailers fall below the floor and are discarded here so
        they never reach the classifier.
        """
        candidates = await self.search(query, max_results)
        if not candidates:
            return []

        durations = await self.fetch_durations([c.external_id for c in candidates])

        kept = []
        for candidate in candidates:
            seconds = durations.get(candidate.external_id)
            if seconds is None or seconds < self.config.min_duration_seconds:
                logger.debug(
                    "candidate_too_short",
                    video_id=candidate.external_id,
                    duration_seconds=seconds,
                )
                continue
            if seconds > self.config.max_duration_seconds:
                logger.debug(
                    "candidate_too_long",
                    video_id=candidate.external_id,
                    duration_seconds=seconds,
                )
                continue
            kept.append(candidate.model_copy(update={"duration_seconds": seconds}))

        logger.info(
            "candidates_discovered",
            query=query,
            found=len(candidates),
            kept=len(kept),
        )
        return kept

    async def fetch_channel_stats(self, channel_id: str) -> dict[str, Any] | None:
        """Fetch subscriber and video counts for a channel."""
        data = await self._get(
            "channels",
            {"part": "statistics,snippet", "id": channel_id},
            CallClass.CHANNEL_STAT,
        )
        items = data.get("items", [])
        if not items:
            return None
        stats = items[0].get("statistics", {})
        return {
            "channel_id": items[0].get("id") or channel_id,
            "title": items[0].get("snippet", {}).get("title"),
            "subscribers": int(stats["subscriberCount"]) if stats.get("subscriberCount") else None,
            "videos_total": int(stats["videoCount"]) if stats.get("videoCount") else None,
        }

    async def check_available(self, video_id: str) -> bool:
        """Check whether a video still resolves, through oEmbed (no quota cost).

        Only 400, 401, 403 and 404 mean the video is gone. Network failures,
        rate limiting and server errors are inconclusive and count as available
        so that a flaky connection never marks live videos unavailable.
        """
        try:
            response = await self.client.get(
                OEMBED_URL,
                params={
                    "url": f"https://www.youtube.com/watch?v={video_id}",
                    "format": "json",
                },
                timeout=self.config.liveness_timeout_seconds,
            )
        except (httpx.TimeoutException, httpx.TransportError) as e:
            logger.warning(
                "liveness_check_inconclusive",
                video_id=video_id,
                error_type=type(e).__name__,
            )
            return True

        if response.status_code in OEMBED_GONE_STATUSES:
            return False
        if response.status_code >= 400:
            logger.warning(
                "liveness_check_inconclusive",
                video_id=video_id,
                status_code=response.status_code,
            )
        return True
