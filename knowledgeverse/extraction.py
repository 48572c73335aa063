"""
Content extraction for link submissions.

Turns a YouTube or X/Twitter URL into a title and a searchable body. Every
network step is best-effort: when a transcript or oEmbed lookup fails the
result falls back to text derived from the URL itself, so a submission is
never rejected because a remote service was unreachable.
"""

import logging
import re
from dataclasses import dataclass
from typing import Optional, Tuple
from urllib.parse import urlparse

import httpx
from bs4 import BeautifulSoup
from youtube_transcript_api import YouTubeTranscriptApi

from .config import settings
from .models import ContentType

logger = logging.getLogger(__name__)

YOUTUBE_OEMBED = "https://www.youtube.com/oembed"
X_OEMBED = "https://publish.twitter.com/oembed"
USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
)

YOUTUBE_HOSTS = ("youtube.com", "youtu.be")
X_HOSTS = ("x.com", "twitter.com")

_YOUTUBE_ID_RE = re.compile(r"(?:v=|/|youtu\.be/)([a-zA-Z0-9_-]{11})(?:\?|&|$)")
_X_STATUS_RE = re.compile(r"(?:x\.com|twitter\.com)/([^/]+)/status/(\d+)")

X_BODY_LIMIT = 500
LINK_TITLE_LIMIT = 50


@dataclass
class ExtractedContent:
    title: str
    text_for_embedding: str
    content_type: ContentType


def _host_matches(host: str, domains: Tuple[str, ...]) -> bool:
    return any(host == d or host.endswith("." + d) for d in domains)


def detect_content_type(source: str) -> ContentType:
    """Classify raw user input as a YouTube link, an X post link, or text."""
    candidate = source.strip()
    if not re.match(r"^(https?://|www\.)", candidate, re.IGNORECASE) or " " in candidate:
        return ContentType.TEXT

    if not candidate.lower().startswith("http"):
        candidate = "https://" + candidate
    host = (urlparse(candidate).hostname or "").lower()

    if _host_matches(host, YOUTUBE_HOSTS):
        return ContentType.YOUTUBE_LINK
    if _host_matches(host, X_HOSTS):
        return ContentType.X_POST_LINK
    return ContentType.TEXT


def extract_youtube_id(url: str) -> Optional[str]:
    match = _YOUTUBE_ID_RE.search(url)
    return match.group(1) if match else None


def parse_x_url(url: str) -> Tuple[str, str]:
    """Return (username, status_id) from an X/Twitter status URL."""
    match = _X_STATUS_RE.search(url)
    if not match:
        return "unknown", "unknown"
    return match.group(1), match.group(2)


def _fetch_oembed(endpoint: str, url: str, **params) -> Optional[dict]:
    """GET an oEmbed endpoint. Returns None on any failure."""
    try:
        with httpx.Client(
            timeout=settings.fetch_timeout,
            headers={"User-Agent": USER_AGENT},
            follow_redirects=True,
        ) as client:
            response = client.get(endpoint, params={"url": url, **params})
            response.raise_for_status()
            return response.json()
    except (httpx.HTTPError, ValueError) as e:
        logger.info(f"oEmbed lookup failed for {url}: {e}")
        return None


def _fetch_transcript(video_id: str) -> Optional[str]:
    try:
        transcript = YouTubeTranscriptApi().fetch(video_id)
    except Exception as e:
        # The library raises a family of its own errors for private,
        # age-restricted or transcript-less videos
        logger.info(f"No transcript for video {video_id}: {e}")
        return None

    text = " ".join(snippet.text for snippet in transcript).strip()
    if len(text) > settings.max_content_size:
        text = text[:settings.max_content_size]
    return text or None


def _extract_youtube(url: str) -> ExtractedContent:
    video_id = extract_youtube_id(url)

    oembed = _fetch_oembed(YOUTUBE_OEMBED, url, format="json")
    if oembed and oembed.get("title"):
        title = oembed["title"]
    elif video_id:
        title = f"YouTube Video: {video_id}"
    else:
        title = "YouTube Video"

    transcript = _fetch_transcript(video_id) if video_id else None
    if transcript:
        body = transcript
    else:
        body = (
            "Could not retrieve transcript for this video. It may be private, "
            f"age-restricted, or have transcripts disabled. URL: {url}"
        )

    return ExtractedContent(title=title, text_for_embedding=body,
                            content_type=ContentType.YOUTUBE_LINK)


def _post_text_from_html(html: str) -> str:
    soup = BeautifulSoup(html, "html.parser")
    paragraphs = soup.find_all("p") or [soup]
    text = " ".join(p.get_text(" ", strip=True) for p in paragraphs)
    words = [w for w in text.split() if "pic.twitter.com" not in w]
    return " ".join(words)


def _extract_x_post(url: str) -> ExtractedContent:
    username, status_id = parse_x_url(url)
    title = f"X Post by @{username}"
    content = f"X/Twitter post from @{username} (ID: {status_id})."

    oembed = _fetch_oembed(X_OEMBED, url, omit_script="true")
    if oembed:
        post_text = _post_text_from_html(oembed.get("html", ""))
        if len(post_text) > 20:
            content = post_text[:X_BODY_LIMIT] + ("..." if len(post_text) > X_BODY_LIMIT else "")
            title = f"X Post by @{username}: {post_text[:LINK_TITLE_LIMIT]}"
            if len(post_text) > LINK_TITLE_LIMIT:
                title += "..."
        if oembed.get("author_name"):
            title = f"X Post by {oembed['author_name']}"

    return ExtractedContent(title=title, text_for_embedding=f"{content} URL: {url}",
                            content_type=ContentType.X_POST_LINK)


def extract_content(url: str) -> ExtractedContent:
    """
    Extract a title and searchable text from a submitted URL.

    Blocking: performs network I/O. Async callers should run it in a thread.
    """
    content_type = detect_content_type(url)

    if content_type is ContentType.YOUTUBE_LINK:
        return _extract_youtube(url)
    if content_type is ContentType.X_POST_LINK:
        return _extract_x_post(url)

    title = url[:LINK_TITLE_LIMIT] + ("..." if len(url) > LINK_TITLE_LIMIT else "")
    return ExtractedContent(title=title, text_for_embedding=url, content_type=ContentType.TEXT)
