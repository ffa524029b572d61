from urllib.parse import urlparse, parse_qs, urlencode, urlunparse

YOUTUBE_HOSTS = {
    "youtube.com",
    "www.youtube.com",
    "m.youtube.com",
    "music.youtube.com",
    "youtu.be",
    "www.youtu.be",
}


def normalize_youtube_url(url: str) -> str | None:
    """
    Normalize a YouTube URL:
    - Convert youtu.be/ID and /shorts/ID to https://www.youtube.com/watch?v=ID
    - Keep only the v and t params (drops playlist context)
    - Return None if the URL is not a direct YouTube video.
    """
    parsed = urlparse(url.strip())
    host = (parsed.hostname or "").lower()

    if host not in YOUTUBE_HOSTS:
        return None

    qs = parse_qs(parsed.query)

    if "youtu.be" in host:
        video_id = parsed.path.lstrip("/")
        if not video_id:
            return None
        qs = {**qs, "v": [video_id]}
    elif parsed.path.startswith("/shorts/"):
        video_id = parsed.path.split("/shorts/")[1].split("/")[0]
        qs = {**qs, "v": [video_id]}

    if not qs.get("v"):
        # channel, playlist or search page
        return None

    filtered_qs = {key: [qs[key][0]] for key in ("v", "t") if qs.get(key)}
    return urlunparse((
        "https",
        "www.youtube.com",
        "/watch",
        "",
        urlencode(filtered_qs, doseq=True),
        ""
    ))


def normalize_media_url(url: str) -> str | None:
    """
    Canonical form for a submitted page URL.

    YouTube video links are normalized; any other http(s) URL is passed
    through stripped, since the resolver handles many more sites. Returns
    None for anything that is not an absolute http(s) URL.
    """
    if not isinstance(url, str):
        return None
    candidate = url.strip()
    parsed = urlparse(candidate)
    if parsed.scheme not in {"http", "https"} or not parsed.hostname:
        return None
    if parsed.hostname.lower() in YOUTUBE_HOSTS:
        return normalize_youtube_url(candidate) or candidate
    return candidate
