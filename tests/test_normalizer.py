"""
Unit tests for duration handling, sanitization and VideoInfo mapping.
"""

import json
from datetime import datetime, timezone

import pytest

from ytservice.models import VideoMetadata
from ytservice.normalizer import (
    build_download_filename,
    format_duration,
    format_upload_date,
    normalize_video_info,
    parse_duration,
    sanitize_filename,
    sanitize_for_header,
)

from .conftest import TEST_VIDEO_ID, make_info_json


@pytest.mark.parametrize("value, expected", [
    (213, 213),
    (213.7, 213),
    ("PT1H2M3S", 3723),
    ("PT4M33S", 273),
    ("PT45S", 45),
    ("PT2H", 7200),
    ("4:33", 273),
    ("1:02:03", 3723),
    ("00:07", 7),
    ("360", 360),
    ("garbage", 0),
    ("", 0),
    (None, 0),
    ("PT", 0),
])
def test_parse_duration(value, expected):
    assert parse_duration(value) == expected


@pytest.mark.parametrize("seconds, expected", [
    (0, "0:00"),
    (45, "0:45"),
    (273, "4:33"),
    (3600, "1:00:00"),
    (3661, "1:01:01"),
    (36000, "10:00:00"),
])
def test_format_duration(seconds, expected):
    assert format_duration(seconds) == expected


def test_sanitize_for_header_strips_control_and_non_ascii():
    raw = 'Line one\r\nLine\ttwo "quoted" café \U0001F3B5  '
    assert sanitize_for_header(raw) == "Line one  Line two 'quoted' caf"


def test_sanitize_for_header_truncates():
    assert len(sanitize_for_header("x" * 500)) == 200
    assert sanitize_for_header(None) == ""


def test_sanitize_filename():
    result = sanitize_filename('My "Video": Test!')
    assert result == "My_Video_Test"
    for ch in '"\':!':
        assert ch not in result
    assert "__" not in result


def test_sanitize_filename_keeps_dots_and_hyphens_and_truncates():
    assert sanitize_filename("clip - part 1.mp4") == "clip_-_part_1.mp4"
    assert len(sanitize_filename("a" * 300)) == 100


def test_format_upload_date():
    assert format_upload_date("20091025") == "2009-10-25T00:00:00.000Z"


def test_format_upload_date_defaults_to_now():
    now = datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    assert format_upload_date(None, now=now) == "2026-01-02T03:04:05.000Z"
    assert format_upload_date("2009-99-99", now=now) == "2026-01-02T03:04:05.000Z"


def test_normalize_video_info():
    meta = VideoMetadata.model_validate(json.loads(make_info_json(title='Rick "Roll"\n')))
    info = normalize_video_info(meta, TEST_VIDEO_ID, 1024)

    assert info.id == TEST_VIDEO_ID
    assert info.title == "Rick 'Roll'"
    assert info.duration == 213
    assert info.duration_formatted == "3:33"
    assert info.author.name == "Rick Astley"
    assert info.author.channel_id == "UCuAXFkgsw1L7xaCfnd5JJOw"
    assert info.upload_date == "2009-10-25T00:00:00.000Z"
    assert info.quality == "720p"
    assert info.format == "mp4"
    assert info.file_size == 1024
    assert info.is_live is False


def test_normalize_video_info_defaults():
    meta = VideoMetadata(thumbnails=[{"url": "https://i.ytimg.com/vi/x/0.jpg"}], channel="Some Channel")
    info = normalize_video_info(meta, "abc", None)

    assert info.id == "abc"
    assert info.title == "Untitled"
    assert info.description == "No description"
    assert info.author.name == "Some Channel"
    assert info.thumbnail == "https://i.ytimg.com/vi/x/0.jpg"
    assert info.quality == "best available"
    assert info.format == "mp4"
    assert info.view_count == 0


def test_video_info_serializes_camel_case():
    meta = VideoMetadata.model_validate(json.loads(make_info_json()))
    data = normalize_video_info(meta, TEST_VIDEO_ID, 10).model_dump(by_alias=True)
    assert {"durationFormatted", "viewCount", "uploadDate", "fileSize", "isLive", "wasLive"} <= set(data)
    assert data["author"] == {"name": "Rick Astley", "channelId": "UCuAXFkgsw1L7xaCfnd5JJOw"}


def test_build_download_filename():
    meta = VideoMetadata.model_validate(json.loads(make_info_json(title="Never: Gonna! Give")))
    info = normalize_video_info(meta, TEST_VIDEO_ID, 10)
    assert build_download_filename(info) == "Never_Gonna_Give_720p.mp4"
