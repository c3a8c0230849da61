from __future__ import annotations

from typing import Any

import pytest
from youtube_transcript_api import VideoUnavailable

from src.services.errors import InvalidURLError, PrivateOrUnavailableError, UnsupportedPlatformError
from src.services.fetcher import YoutubeClient, vtt_to_plain_text
from src.services.ids import is_valid_video_id, parse_source_url, parse_youtube_shorts_url


class TestParseYoutubeShortsUrl:
    @pytest.mark.parametrize(
        "url",
        [
            "https://www.youtube.com/shorts/abc123XYZ_-",
            "https://youtube.com/shorts/abc123XYZ_-/",
            "http://m.youtube.com/shorts/abc123XYZ_-?feature=share",
        ],
    )
    def test_accepts_shorts_urls(self, url: str) -> None:
        assert parse_youtube_shorts_url(url) == "abc123XYZ_-"

    @pytest.mark.parametrize(
        "url",
        [
            "",
            "ftp://www.youtube.com/shorts/abc123",
            "https://www.youtube.com/watch?v=abc123",
            "https://vimeo.com/shorts/abc123",
            "https://www.youtube.com/shorts/",
            "https://www.youtube.com/shorts/ab$12",
            "https://www.youtube.com/shorts/abc123/extra",
        ],
    )
    def test_rejects_other_urls(self, url: str) -> None:
        with pytest.raises(InvalidURLError):
            parse_youtube_shorts_url(url)

    def test_parse_source_url_dispatches_on_kind(self) -> None:
        assert parse_source_url("youtube-shorts", "https://www.youtube.com/shorts/abc123") == "abc123"

    def test_parse_source_url_unknown_kind(self) -> None:
        with pytest.raises(UnsupportedPlatformError):
            parse_source_url("tiktok", "https://www.tiktok.com/@user/video/1")


class TestIsValidVideoId:
    def test_valid_and_invalid(self) -> None:
        assert is_valid_video_id("abc123")
        assert not is_valid_video_id("abc")
        assert not is_valid_video_id("")
        assert not is_valid_video_id("abc 123")


class TestVttToPlainText:
    def test_strips_headers_timings_and_tags(self) -> None:
        content = (
            "WEBVTT\n"
            "\n"
            "NOTE this block\n"
            "is ignored\n"
            "\n"
            "1\n"
            "00:00:00.000 --> 00:00:02.000\n"
            "<c>Add the</c> flour\n"
            "\n"
            "00:00:02.000 --> 00:00:04.000\n"
            "Add the flour\n"
            "then mix well\n"
        )
        assert vtt_to_plain_text(content) == "Add the flour then mix well"


class TranscriptApiStub:
    def __init__(self, result: Any = None, error: Exception | None = None) -> None:
        self.result = result
        self.error = error
        self.calls: list[tuple[str, list[str]]] = []

    def fetch(self, video_id: str, languages: list[str]) -> Any:
        self.calls.append((video_id, languages))
        if self.error:
            raise self.error
        return self.result


class TestYoutubeClientTranscript:
    def test_joins_transcript_snippets(self) -> None:
        api = TranscriptApiStub(result=[{"text": " Add  rice "}, {"text": ""}, {"text": "then water"}])
        client = YoutubeClient(languages=("en",), transcript_api=api)  # type: ignore[arg-type]
        try:
            assert client.get_transcript("abc123") == "Add rice then water"
            assert api.calls == [("abc123", ["en"])]
        finally:
            client.close()

    def test_unavailable_video(self) -> None:
        api = TranscriptApiStub(error=VideoUnavailable("abc123"))
        client = YoutubeClient(transcript_api=api)  # type: ignore[arg-type]
        try:
            with pytest.raises(PrivateOrUnavailableError):
                client.get_transcript("abc123")
        finally:
            client.close()
