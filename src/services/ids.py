# src/services/ids.py
import re
from urllib.parse import urlparse

from src.services.errors import InvalidURLError, UnsupportedPlatformError

SHORTS_HOSTS = {"www.youtube.com", "youtube.com", "m.youtube.com"}

# Mesmo formato de id aceito pelo regex de YouTube
_YT_ID_RE = re.compile(r"^[A-Za-z0-9_-]{6,}$")


def is_valid_video_id(video_id: str) -> bool:
    return bool(video_id) and bool(_YT_ID_RE.match(video_id))


def parse_youtube_shorts_url(url: str) -> str:
    """Returns the video id of a `https://www.youtube.com/shorts/{id}` URL."""
    if not isinstance(url, str) or not url.strip():
        raise InvalidURLError("URL cannot be empty")

    parsed = urlparse(url.strip())
    if parsed.scheme not in ("http", "https"):
        raise InvalidURLError(f"URL must use http or https: {url}")
    if parsed.hostname not in SHORTS_HOSTS:
        raise InvalidURLError(
            "Invalid YouTube shorts URL, only 'https://www.youtube.com/shorts/{id}' is accepted"
        )

    parts = parsed.path.split("/")
    # ["", "shorts", "<id>"] com barra final opcional
    if parts and parts[-1] == "":
        parts = parts[:-1]
    if len(parts) != 3 or parts[1] != "shorts" or not parts[2]:
        raise InvalidURLError(
            "Invalid YouTube shorts URL, only 'https://www.youtube.com/shorts/{id}' is accepted"
        )

    video_id = parts[2]
    if not is_valid_video_id(video_id):
        raise InvalidURLError(f"Invalid YouTube video id: {video_id}")
    return video_id


def parse_source_url(kind: str, url: str) -> str:
    if kind == "youtube-shorts":
        return parse_youtube_shorts_url(url)
    raise UnsupportedPlatformError(f"Unsupported source kind: {kind}")
