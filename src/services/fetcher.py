from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any

import httpx
import yt_dlp
from youtube_transcript_api import (
    CouldNotRetrieveTranscript,
    NoTranscriptFound,
    TranscriptsDisabled,
    VideoUnavailable,
    YouTubeTranscriptApi,
)

from .errors import (
    FetchFailedError,
    NetworkTimeoutError,
    PrivateOrUnavailableError,
    TranscriptUnavailableError,
)

logger = logging.getLogger(__name__)

VTT_TAG_PATTERN = re.compile(r"<[^>]+>")
WHITESPACE_PATTERN = re.compile(r"\s+")
PRIORITY_LANGUAGES = ("en", "pt-BR", "pt")
VTT_SKIP_PREFIXES = ("NOTE", "STYLE", "REGION", "WEBVTT")
SHORTS_URL_TEMPLATE = "https://www.youtube.com/shorts/{video_id}"


@dataclass(frozen=True)
class CaptionSource:
    url: str
    language: str
    extension: str


@dataclass
class VideoInfo:
    video_id: str
    url: str
    title: str | None = None
    author: str | None = None
    thumbnail_url: str | None = None
    duration_sec: float | None = None
    caption_tracks: dict[str, Any] = field(default_factory=dict)

    def to_metadata(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "title": self.title,
            "author": self.author,
            "thumbnail_url": self.thumbnail_url,
            "duration_sec": self.duration_sec,
        }


def _clean_string(value: object) -> str | None:
    if not isinstance(value, str):
        return None
    stripped = value.strip()
    return stripped or None


def _safe_numeric(value: object, default: int | float = 0) -> int | float:
    return value if isinstance(value, (int, float)) else default


def _extract_thumbnail(info: dict | None) -> str | None:
    if not isinstance(info, dict):
        return None

    direct_url = _clean_string(info.get("thumbnail")) or _clean_string(info.get("thumbnail_url"))
    if direct_url:
        return direct_url

    thumbnails = info.get("thumbnails")
    if not isinstance(thumbnails, list):
        return None

    scored = [
        (
            (
                _safe_numeric(entry.get("preference")),
                _safe_numeric(entry.get("width")),
                _safe_numeric(entry.get("height")),
            ),
            _clean_string(entry.get("url")),
        )
        for entry in thumbnails
        if isinstance(entry, dict) and _clean_string(entry.get("url"))
    ]
    if not scored:
        return None
    scored.sort(reverse=True, key=lambda x: x[0])
    return scored[0][1]


def _create_ydl_options() -> dict:
    return {
        "quiet": True,
        "noprogress": True,
        "skip_download": True,
        "check_formats": False,
        "extractor_args": {"youtube": {"player_client": ["android"]}},
    }


def _check_video_availability(info: dict) -> None:
    is_private = info.get("is_private")
    availability = info.get("availability")
    if is_private or availability in {"private", "needs_auth", "subscriber_only"}:
        raise PrivateOrUnavailableError("Video is private or requires login.")


def _pick_caption_source(submap: dict | None) -> CaptionSource | None:
    if not submap:
        return None

    for lang in PRIORITY_LANGUAGES:
        entries = submap.get(lang)
        if not entries:
            continue
        for item in entries:
            if item.get("ext") == "vtt" and item.get("url"):
                return CaptionSource(url=item["url"], language=lang, extension="vtt")

    return None


def _is_vtt_content_line(line: str) -> bool:
    if not line:
        return False
    if line.startswith(VTT_SKIP_PREFIXES):
        return False
    if "-->" in line:
        return False
    if line.isdigit():
        return False
    return True


def vtt_to_plain_text(content: str) -> str:
    in_note_block = False
    text_lines: list[str] = []

    for raw_line in content.splitlines():
        stripped = raw_line.strip()

        if in_note_block:
            if not stripped:
                in_note_block = False
            continue

        if stripped.startswith("NOTE"):
            in_note_block = True
            continue

        if not _is_vtt_content_line(stripped):
            continue

        cleaned = VTT_TAG_PATTERN.sub("", stripped).strip()
        # legendas automaticas repetem a linha anterior
        if cleaned and (not text_lines or text_lines[-1] != cleaned):
            text_lines.append(cleaned)

    joined = " ".join(text_lines)
    return WHITESPACE_PATTERN.sub(" ", joined).strip()


class YoutubeClient:
    """
    Video metadata and transcript access for YouTube shorts.

    Owns an httpx client for caption downloads; call `close()` when done.
    """

    def __init__(
        self,
        languages: tuple[str, ...] = PRIORITY_LANGUAGES,
        http_timeout_seconds: float = 15.0,
        transcript_api: YouTubeTranscriptApi | None = None,
    ) -> None:
        self.languages = languages
        self.http_timeout_seconds = http_timeout_seconds
        self._http = httpx.Client(timeout=http_timeout_seconds, follow_redirects=True)
        self._transcript_api = transcript_api or YouTubeTranscriptApi()

    def close(self) -> None:
        self._http.close()

    def get_video_info(self, video_id: str) -> VideoInfo:
        url = SHORTS_URL_TEMPLATE.format(video_id=video_id)
        try:
            with yt_dlp.YoutubeDL(_create_ydl_options()) as ydl:
                info = ydl.extract_info(url, download=False)
        except yt_dlp.utils.DownloadError as error:
            raise PrivateOrUnavailableError(f"Video unavailable: {error}") from error
        except (ConnectionError, TimeoutError) as error:
            raise FetchFailedError(f"Network error while fetching video info: {error}") from error

        if not info:
            raise PrivateOrUnavailableError(f"Video not found: {video_id}")
        _check_video_availability(info)

        return VideoInfo(
            video_id=video_id,
            url=url,
            title=_clean_string(info.get("title")),
            author=_clean_string(info.get("uploader")) or _clean_string(info.get("channel")),
            thumbnail_url=_extract_thumbnail(info),
            duration_sec=info.get("duration") if isinstance(info.get("duration"), (int, float)) else None,
            caption_tracks={
                "subtitles": info.get("subtitles") or {},
                "automatic_captions": info.get("automatic_captions") or {},
            },
        )

    def get_transcript(self, video_id: str) -> str:
        """
        Returns the transcript text of a video.

        Raises:
            PrivateOrUnavailableError: the video does not exist or cannot be accessed
            TranscriptUnavailableError: the video exists but has no usable transcript
        """
        text = self._fetch_transcript_text(video_id)
        if text:
            return text

        logger.info("fetcher.transcript_fallback_captions video=%s", video_id)
        text = self._extract_caption_text(self.get_video_info(video_id))
        if text:
            return text

        raise TranscriptUnavailableError(f"No transcript available for video {video_id}")

    def _fetch_transcript_text(self, video_id: str) -> str | None:
        try:
            fetched = self._transcript_api.fetch(video_id, languages=list(self.languages))
        except VideoUnavailable as error:
            raise PrivateOrUnavailableError(f"Video unavailable: {video_id}") from error
        except (TranscriptsDisabled, NoTranscriptFound):
            return None
        except CouldNotRetrieveTranscript as error:
            logger.warning("fetcher.transcript_error video=%s error=%s", video_id, error)
            return None
        except (ConnectionError, TimeoutError) as error:
            logger.warning("fetcher.transcript_network_error video=%s error=%s", video_id, error)
            return None

        data = fetched.to_raw_data() if hasattr(fetched, "to_raw_data") else fetched
        text_parts = [
            item.get("text", "").strip()
            for item in data
            if item.get("text")
        ]
        full_text = WHITESPACE_PATTERN.sub(" ", " ".join(text_parts)).strip()
        return full_text or None

    def _extract_caption_text(self, info: VideoInfo) -> str | None:
        for key in ("subtitles", "automatic_captions"):
            source = _pick_caption_source(info.caption_tracks.get(key))
            if not source:
                continue

            try:
                text = self._download_vtt_as_text(source.url)
            except (NetworkTimeoutError, FetchFailedError) as error:
                logger.warning("fetcher.caption_download_failed video=%s error=%s", info.video_id, error)
                continue
            if text:
                return text

        return None

    def _download_vtt_as_text(self, url: str) -> str:
        try:
            response = self._http.get(url)
            response.raise_for_status()
            return vtt_to_plain_text(response.text)
        except httpx.TimeoutException as error:
            raise NetworkTimeoutError(url, self.http_timeout_seconds) from error
        except httpx.HTTPError as error:
            raise FetchFailedError(f"HTTP error downloading VTT: {error}") from error
