"""
metadata.py — App metadata lookup from a Google Play listing.

  detect_play_store_package(text) → package id or None
  PlayStoreLookup(timeout).lookup(package_id) → AppMetadata

The lookup reads the public listing page (OpenGraph tags) and downloads the
https icon it points at. The whole lookup, body reads included, shares one
fixed time budget; on timeout or any HTTP failure it fails closed with
ExternalServiceError, no retry.
"""

from __future__ import annotations

import html
import logging
import re
import socket
import time
from typing import Optional
from urllib.error import HTTPError, URLError
from urllib.parse import quote, urlparse
from urllib.request import Request, urlopen

from .errors import ExternalServiceError, InputValidationError
from .images import payload_from_bytes
from .models import AppMetadata
from .validators import MAX_DESCRIPTION_LENGTH, MAX_FIELD_LENGTH, sanitize

logger = logging.getLogger(__name__)

PLAY_STORE_PATTERN = re.compile(r"play\.google\.com/store/apps/details\?id=([a-zA-Z0-9._]+)")
PLAY_STORE_DETAILS_URL = "https://play.google.com/store/apps/details?id={package_id}&hl=en"
PLAY_STORE_TITLE_SUFFIX = " - Apps on Google Play"

DEFAULT_TIMEOUT = 5.0
CHUNK_SIZE = 16 * 1024
USER_AGENT = "Mozilla/5.0 (compatible; icon-evolver/0.1)"
STAGE = "metadata"


def detect_play_store_package(text: str) -> Optional[str]:
    if not text or not isinstance(text, str):
        return None
    m = PLAY_STORE_PATTERN.search(text)
    return m.group(1) if m else None


def play_store_url(package_id: str) -> str:
    return f"https://play.google.com/store/apps/details?id={package_id}"


def _meta(page: str, key: str) -> str:
    """Content of <meta property|name="key" content="...">, either attribute order."""
    patterns = (
        rf'<meta[^>]+(?:property|name)="{re.escape(key)}"[^>]*content="([^"]*)"',
        rf'<meta[^>]+content="([^"]*)"[^>]*(?:property|name)="{re.escape(key)}"',
    )
    for pattern in patterns:
        m = re.search(pattern, page, re.IGNORECASE)
        if m:
            return html.unescape(m.group(1)).strip()
    return ""


def _genre(page: str) -> str:
    m = re.search(r'itemprop="genre"[^>]*>([^<]+)<', page)
    return html.unescape(m.group(1)).strip() if m else ""


class PlayStoreLookup:
    """Looks up icon, name, category and description for a Play Store package."""

    def __init__(self, timeout: float = DEFAULT_TIMEOUT) -> None:
        self.timeout = timeout

    def _get(self, url: str, deadline: float) -> bytes:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise ExternalServiceError(f"Metadata lookup timed out after {self.timeout:g}s", stage=STAGE)
        req = Request(url, headers={"User-Agent": USER_AGENT})
        try:
            with urlopen(req, timeout=remaining) as resp:  # nosec - https only
                chunks = []
                while True:
                    if deadline - time.monotonic() <= 0:
                        raise ExternalServiceError(f"Metadata lookup timed out after {self.timeout:g}s", stage=STAGE)
                    chunk = resp.read(CHUNK_SIZE)
                    if not chunk:
                        return b"".join(chunks)
                    chunks.append(chunk)
        except HTTPError as e:
            raise ExternalServiceError(f"Metadata request failed: HTTP {e.code}", stage=STAGE, cause=e) from e
        except (URLError, socket.timeout, TimeoutError) as e:
            raise ExternalServiceError(f"Metadata request failed: {e}", stage=STAGE, cause=e) from e

    def lookup(self, package_id: str) -> AppMetadata:
        deadline = time.monotonic() + self.timeout
        logger.info(f"Looking up Play Store listing for {package_id}")

        raw = self._get(PLAY_STORE_DETAILS_URL.format(package_id=quote(package_id, safe="._")), deadline)
        page = raw.decode("utf-8", errors="replace")

        name = _meta(page, "og:title")
        if name.endswith(PLAY_STORE_TITLE_SUFFIX):
            name = name[: -len(PLAY_STORE_TITLE_SUFFIX)]
        icon_url = _meta(page, "og:image")
        description = _meta(page, "og:description") or _meta(page, "description")
        if not name or not icon_url:
            raise ExternalServiceError(f"Play Store listing for {package_id} has no name or icon", stage=STAGE)
        if urlparse(icon_url).scheme != "https":
            raise ExternalServiceError(f"Play Store icon URL for {package_id} is not https", stage=STAGE)

        icon_raw = self._get(icon_url, deadline)
        try:
            icon = payload_from_bytes(icon_raw)
        except InputValidationError as e:
            raise ExternalServiceError(f"Play Store icon for {package_id} is unreadable", stage=STAGE, cause=e) from e

        return AppMetadata(
            package_id=package_id,
            name=sanitize(name, MAX_FIELD_LENGTH),
            category=sanitize(_genre(page), MAX_FIELD_LENGTH) or "Other",
            description=sanitize(description, MAX_DESCRIPTION_LENGTH),
            icon=icon,
        )
