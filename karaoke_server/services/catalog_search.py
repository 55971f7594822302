from dataclasses import dataclass

import httpx

from karaoke_server.config import Settings, get_settings
from karaoke_server.core.exceptions import (
    InvalidArgumentError,
    RateLimitedError,
    UpstreamUnavailableError,
)
from karaoke_server.core.logging import get_logger
from karaoke_server.core.rate_limiter import SlidingWindowRateLimiter
from karaoke_server.utils.formatters import format_iso8601_duration

logger = get_logger("CatalogSearch")

MIN_QUERY_LENGTH = 2
MAX_QUERY_LENGTH = 100


@dataclass(frozen=True)
class SearchCandidate:
    external_id: str
    title: str
    uploader_label: str
    thumbnail_url: str | None
    duration_display: str


def _thumbnail(snippet: dict) -> str | None:
    thumbnails = snippet.get("thumbnails") or {}
    for size in ("medium", "high", "default"):
        if thumbnails.get(size, {}).get("url"):
            return thumbnails[size]["url"]
    return None


class CatalogSearchService:
    """
    YouTube Data API v3 search, biased toward karaoke videos.

    Owns its own outbound rate limit; a full window fails fast with
    RateLimitedError instead of waiting.
    """

    API_BASE_URL = "https://www.googleapis.com/youtube/v3"

    def __init__(
        self,
        settings: Settings | None = None,
        rate_limiter: SlidingWindowRateLimiter | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.settings = settings or get_settings()
        self.api_key = self.settings.youtube_api_key
        self.rate_limiter = rate_limiter or SlidingWindowRateLimiter(
            self.settings.search_max_requests,
            self.settings.search_window_seconds,
            storage_uri=self.settings.search_rate_limit_storage,
        )
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def init(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.API_BASE_URL,
                timeout=self.settings.search_timeout_seconds,
                transport=self._transport,
            )
        if not self.api_key:
            logger.warning("YouTube API key is not configured; search is disabled")

    async def shutdown(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    # ==================== REQUESTS ====================

    def build_query(self, query: str) -> str:
        """Append the search qualifier unless the query already mentions it."""
        qualifier = self.settings.search_qualifier
        if not qualifier or qualifier.lower() in query.lower():
            return query
        return f"{query} {qualifier}"

    async def _get(self, path: str, params: dict) -> dict:
        if not self.api_key:
            raise UpstreamUnavailableError("Song search is not configured. Please try again later.")
        if self._client is None:
            await self.init()

        self.rate_limiter.acquire("youtube")

        try:
            response = await self._client.get(path, params={**params, "key": self.api_key})
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            if status == 403:
                logger.warning("YouTube quota exceeded (HTTP 403)")
                raise RateLimitedError("Search quota exceeded. Please try again later.") from e
            logger.error(f"YouTube request failed: HTTP {status}")
            raise UpstreamUnavailableError("Song search failed. Please try again.") from e
        except httpx.TimeoutException as e:
            logger.warning(f"YouTube request timed out after {self.settings.search_timeout_seconds}s")
            raise UpstreamUnavailableError("Song search timed out. Please try again.") from e
        except httpx.HTTPError as e:
            logger.error(f"YouTube request failed: {e}")
            raise UpstreamUnavailableError("Song search failed. Please try again.") from e

        data = response.json()
        if data.get("error"):
            logger.error(f"YouTube returned an error: {data['error'].get('message')}")
            raise UpstreamUnavailableError("Song search failed. Please try again.")
        return data

    # ==================== SEARCH ====================

    async def search(self, query: str, max_results: int | None = None) -> list[SearchCandidate]:
        """
        Search the catalog.

        Args:
            query: Raw user query; blank returns no results
            max_results: Clamped to 1..search_max_results

        Returns:
            Candidates in provider order, with display durations
        """
        query = (query or "").strip()
        if not query:
            return []
        if len(query) < MIN_QUERY_LENGTH:
            raise InvalidArgumentError(
                f"Search query must be at least {MIN_QUERY_LENGTH} characters", field="q"
            )
        if len(query) > MAX_QUERY_LENGTH:
            raise InvalidArgumentError(
                f"Search query must be less than {MAX_QUERY_LENGTH} characters", field="q"
            )

        if max_results is None:
            max_results = self.settings.search_default_results
        max_results = max(1, min(max_results, self.settings.search_max_results))

        search_data = await self._get(
            "/search",
            {
                "part": "snippet",
                "type": "video",
                "q": self.build_query(query),
                "maxResults": max_results,
                "videoEmbeddable": "true",
                "videoSyndicated": "true",
            },
        )
        items = [item for item in search_data.get("items", []) if item.get("id", {}).get("videoId")]
        if not items:
            return []

        video_ids = [item["id"]["videoId"] for item in items]
        videos_data = await self._get(
            "/videos",
            {"part": "contentDetails", "id": ",".join(video_ids)},
        )
        durations = {
            video["id"]: format_iso8601_duration(video.get("contentDetails", {}).get("duration"))
            for video in videos_data.get("items", [])
        }

        logger.debug(f"Search '{query}' returned {len(items)} results")
        return [
            SearchCandidate(
                external_id=item["id"]["videoId"],
                title=item["snippet"]["title"],
                uploader_label=item["snippet"].get("channelTitle", ""),
                thumbnail_url=_thumbnail(item["snippet"]),
                duration_display=durations.get(item["id"]["videoId"], "0:00"),
            )
            for item in items
        ]

    async def get_video_details(self, video_id: str) -> SearchCandidate | None:
        """Look up one video; None when the provider does not know it."""
        data = await self._get(
            "/videos",
            {"part": "snippet,contentDetails", "id": video_id},
        )
        items = data.get("items") or []
        if not items:
            return None

        video = items[0]
        snippet = video.get("snippet", {})
        return SearchCandidate(
            external_id=video_id,
            title=snippet.get("title", ""),
            uploader_label=snippet.get("channelTitle", ""),
            thumbnail_url=_thumbnail(snippet),
            duration_display=format_iso8601_duration(video.get("contentDetails", {}).get("duration")),
        )
