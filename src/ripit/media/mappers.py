"""Mapping of extractor ``--dump-single-json`` output onto media models."""

import logging
from typing import Any

from ripit.media.models import SourceFile, Track, UrlInfo

logger = logging.getLogger(__name__)

YOUTUBE = "youtube"

# Extension keys kept from a youtube format entry
_YOUTUBE_TRACK_KEYS = (
    "format_note",
    "manifest_url",
    "language",
    "protocol",
    "quality",
    "has_drm",
    "source_preference",
    "audio_ext",
    "video_ext",
    "resolution",
    "aspect_ratio",
    "dynamic_range",
    "audio_channels",
    "language_preference",
)

# Extension keys kept from a youtube video entry
_YOUTUBE_SOURCE_KEYS = (
    "channel_url",
    "view_count",
    "age_limit",
    "categories",
    "playable_in_embed",
    "live_status",
    "comment_count",
    "location",
    "like_count",
    "channel",
    "channel_follower_count",
    "uploader_id",
    "uploader_url",
    "timestamp",
    "availability",
    "original_url",
    "webpage_url_basename",
    "webpage_url_domain",
    "extractor_key",
    "display_id",
    "fulltitle",
    "duration_string",
    "is_live",
    "was_live",
)


def map_to_url_info(data: dict[str, Any]) -> UrlInfo:
    """Summarize a flat-playlist dump."""
    entries = data.get("entries")
    return UrlInfo(
        type=data.get("_type") or "video",
        count=len(entries) if isinstance(entries, list) else 0,
        title=data.get("title"),
        uploader=data.get("uploader"),
        channelId=data.get("channel_id") or data.get("channelId"),
    )


def map_to_source_file(data: dict[str, Any]) -> SourceFile:
    """Build a SourceFile from a full single-video dump."""
    extractor = data.get("extractor") or data.get("extractor_key") or "unknown"
    tracks = [map_to_track(f, extractor) for f in data.get("formats") or []]
    e_data = _youtube_source_extension(data) if extractor == YOUTUBE else {"__type": "none"}

    fields: dict[str, Any] = {
        "id": data.get("id"),
        "title": data.get("title"),
        "extractor": extractor,
        "webpageUrl": data.get("webpage_url"),
        "tracks": tracks,
        "eData": e_data,
    }
    optional = {
        "playlistId": data.get("playlist_id"),
        "uploader": data.get("uploader"),
        "uploadDate": data.get("upload_date"),
        "duration": data.get("duration"),
        "description": data.get("description"),
        "thumbnail": data.get("thumbnail"),
        "tags": data.get("tags"),
    }
    fields.update({key: value for key, value in optional.items() if value is not None})
    return SourceFile.model_validate(fields)


def map_to_track(data: dict[str, Any], extractor: str) -> Track:
    vcodec = data.get("vcodec")
    acodec = data.get("acodec")
    br = data.get("tbr") or data.get("vbr") or data.get("abr")
    e_data = (
        _pick(data, _YOUTUBE_TRACK_KEYS, __type=YOUTUBE)
        if extractor == YOUTUBE
        else {"__type": "none"}
    )

    return Track.model_validate(
        {
            "formatId": str(data.get("format_id")),
            "format": data.get("format"),
            "ext": data.get("ext") or "",
            "vcodec": vcodec,
            "acodec": acodec,
            "width": data.get("width"),
            "height": data.get("height"),
            "fps": data.get("fps"),
            "tbr": data.get("tbr"),
            "abr": data.get("abr"),
            "vbr": data.get("vbr"),
            "asr": data.get("asr"),
            "br": br,
            "filesize": data.get("filesize") or data.get("filesize_approx"),
            "url": data.get("url"),
            "hasAudio": vcodec == "none" and acodec != "none",
            "hasVideo": vcodec != "none",
            "eData": e_data,
        },
    )


def _youtube_source_extension(data: dict[str, Any]) -> dict[str, Any]:
    extension = _pick(data, _YOUTUBE_SOURCE_KEYS, __type=YOUTUBE)

    chapters = data.get("chapters")
    if isinstance(chapters, list):
        formatted = []
        for chapter in chapters:
            if not isinstance(chapter, dict):
                continue
            start = chapter.get("start_time")
            title = chapter.get("title")
            if not isinstance(start, int | float) or not isinstance(title, str):
                continue
            end = chapter.get("end_time")
            formatted.append(
                {
                    "start_time": start,
                    "end_time": end if isinstance(end, int | float) else None,
                    "title": title,
                },
            )
        extension["chapters"] = formatted
    return extension


def _pick(data: dict[str, Any], keys: tuple[str, ...], **extra: Any) -> dict[str, Any]:
    picked = {key: data[key] for key in keys if data.get(key) is not None}
    picked.update(extra)
    return picked
