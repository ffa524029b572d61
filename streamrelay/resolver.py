import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs, urlparse

import requests
from yt_dlp import YoutubeDL
from yt_dlp.utils import YoutubeDLError

from .exceptions import ResolutionError

logger = logging.getLogger(__name__)

OEMBED_ENDPOINT = "https://www.youtube.com/oembed"
UNKNOWN_TITLE = "Unknown Video"
FAILED_TITLE = "Conversion Failed"
STREAM_TTL_HOURS = 6.0


@dataclass(frozen=True)
class StreamInfo:
    stream_url: str
    title: str
    quality: str
    expires_at: datetime


@dataclass(frozen=True)
class VideoInfo:
    title: str
    available: bool


def fetch_video_info(url: str, timeout: float = 5) -> VideoInfo:
    """Best-effort title lookup through oEmbed."""
    try:
        resp = requests.get(OEMBED_ENDPOINT, params={"url": url, "format": "json"}, timeout=timeout)
        if resp.status_code != 200:
            return VideoInfo(title=UNKNOWN_TITLE, available=False)
        data = resp.json()
    except (requests.RequestException, ValueError):
        return VideoInfo(title=UNKNOWN_TITLE, available=False)
    return VideoInfo(title=data.get("title") or UNKNOWN_TITLE, available=True)


def _is_video(fmt: Dict[str, Any]) -> bool:
    return bool(fmt.get("url")) and fmt.get("vcodec") not in (None, "none")


def pick_format(formats: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """
    Choose the format to serve: progressive (audio+video) streams win over
    video-only ones, then the highest resolution.
    """
    videos = [f for f in formats if _is_video(f)]
    if not videos:
        return None

    def rank(fmt: Dict[str, Any]):
        has_audio = fmt.get("acodec") not in (None, "none")
        return (has_audio, fmt.get("height") or 0, fmt.get("tbr") or 0)

    return max(videos, key=rank)


def quality_label(fmt: Dict[str, Any]) -> str:
    if fmt.get("format_note"):
        return fmt["format_note"]
    if fmt.get("height"):
        return f"{fmt['height']}p"
    return "Unknown"


def stream_expiry(stream_url: str, ttl_hours: float = STREAM_TTL_HOURS, now: datetime | None = None) -> datetime:
    """Expiry advertised by the stream URL (``expire=<epoch>``), else now + ttl."""
    now = now or datetime.utcnow()
    expire = parse_qs(urlparse(stream_url).query).get("expire")
    if expire:
        try:
            return datetime.utcfromtimestamp(int(expire[0]))
        except (ValueError, OverflowError, OSError):
            pass
    return now + timedelta(hours=ttl_hours)


def _extract_info(url: str, timeout: float) -> Dict[str, Any]:
    opts: Dict[str, Any] = {
        "quiet": True,
        "no_warnings": True,
        "skip_download": True,
        "noplaylist": True,
        "socket_timeout": timeout,
    }
    with YoutubeDL(opts) as ydl:
        return ydl.extract_info(url, download=False)


def resolve_stream(original_url: str, timeout: float = 30.0, ttl_hours: float = STREAM_TTL_HOURS) -> StreamInfo:
    """Resolve a page URL to a direct stream URL. Raises ResolutionError."""
    try:
        info = _extract_info(original_url, timeout)
    except YoutubeDLError as exc:
        logger.warning("Resolution failed for %s: %s", original_url, exc)
        raise ResolutionError(str(exc)) from exc
    except Exception as exc:
        # extractors can raise arbitrary errors that yt-dlp passes through
        logger.exception("Extractor crashed for %s", original_url)
        raise ResolutionError(f"{type(exc).__name__}: {exc}") from exc

    if not info:
        raise ResolutionError("No media information returned")

    fmt = pick_format(info.get("formats") or [])
    if fmt is None and info.get("url"):
        fmt = info
    if fmt is None:
        raise ResolutionError("No video format available")

    return StreamInfo(
        stream_url=fmt["url"],
        title=info.get("title") or UNKNOWN_TITLE,
        quality=quality_label(fmt),
        expires_at=stream_expiry(fmt["url"], ttl_hours),
    )


class ResolutionClient:
    """Resolver bound to the configured timeouts."""

    def __init__(self, timeout: float = 30.0, ttl_hours: float = STREAM_TTL_HOURS) -> None:
        self.timeout = timeout
        self.ttl_hours = ttl_hours

    def resolve(self, original_url: str) -> StreamInfo:
        return resolve_stream(original_url, timeout=self.timeout, ttl_hours=self.ttl_hours)

    def describe(self, original_url: str) -> VideoInfo:
        return fetch_video_info(original_url, timeout=min(self.timeout, 5))
