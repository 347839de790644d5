"""Optional caption lookup via the Supadata API, used to enrich classification."""

import asyncio

from supadata import Supadata

from src.utils.logging import get_logger

from .config import CurationConfig

logger = get_logger(__name__)


class TranscriptService:
    """Fetches plain-text captions for a candidate before it is classified.

    Lookup is best effort: unavailable captions and API failures both yield
    None and the classifier falls back to metadata only.
    """

    def __init__(self, config: CurationConfig, client: Supadata | None = None):
        """Initialize transcript service.

        Args:
            config: Configuration with the Supadata key and truncation length.
            client: Optional pre-built Supadata client.
        """
        self.config = config
        self.enabled = config.fetch_transcripts and bool(config.supadata_api_key)
        self.client = client
        if self.enabled and self.client is None:
            self.client = Supadata(api_key=config.supadata_api_key)
        logger.info("transcript_service_initialized", enabled=self.enabled)

    async def get_transcript_text(self, video_id: str) -> str | None:
        """Return up to transcript_max_chars of caption text, or None.

        Args:
            video_id: YouTube video ID.
        """
        if not self.enabled or self.client is None:
            return None

        try:
            response = await asyncio.to_thread(
                self.client.youtube.transcript, video_id=video_id, text=True
            )
        except Exception as e:
            error_str = str(e).lower()
            if "transcript-unavailable" in error_str or "206" in error_str:
                logger.info("transcript_unavailable", video_id=video_id)
            else:
                logger.warning(
                    "transcript_fetch_error",
                    video_id=video_id,
                    error_type=type(e).__name__,
                )
            return None

        content = response.content if isinstance(response.content, str) else ""
        if not content:
            return None

        logger.info("transcript_fetched", video_id=video_id, chars=len(content))
        return content[: self.config.transcript_max_chars]
