"""quarry_import.media

Media reference resolution.

A media cell holds either a bare media id or a URL.  Resolution order:
  1. Purely numeric and an existing media record → that id.
  2. URL already imported (matched on url or source_url) → that id.
  3. URL not yet known → download it and create a new media record.

Any failure yields None ("no media set"); a bad media cell never fails a row.
This is the only decode path with network I/O.
"""

from __future__ import annotations

import logging
import mimetypes
import posixpath
from dataclasses import dataclass, field
from typing import Protocol
from urllib.parse import unquote, urlparse

import requests

from quarry_import.normalize import is_identity, is_url, trim
from quarry_import.store import RecordStore, StoreError

log = logging.getLogger(__name__)

_ALLOWED_CONTENT_PREFIXES = ("image/", "application/pdf", "video/", "audio/")


# ---------------------------------------------------------------------------
# Fetchers
# ---------------------------------------------------------------------------

@dataclass
class FetchedMedia:
    filename: str
    content_type: str | None
    content: bytes


class MediaFetcher(Protocol):
    def fetch(self, url: str) -> FetchedMedia | None:
        """Return the downloaded resource, or None if it could not be fetched."""
        ...


def _filename_from_url(url: str) -> str:
    path = unquote(urlparse(url).path)
    name = posixpath.basename(path.rstrip("/"))
    return name or "media"


@dataclass
class HttpMediaFetcher:
    """Download media over HTTP(S) with a shared requests.Session."""

    timeout: int = 30
    max_bytes: int = 25 * 1024 * 1024
    session: requests.Session = field(default_factory=requests.Session)

    def fetch(self, url: str) -> FetchedMedia | None:
        try:
            resp = self.session.get(url, timeout=self.timeout, stream=True)
        except requests.RequestException as exc:
            log.warning("media fetch failed for %s: %s", url, exc)
            return None

        try:
            if resp.status_code != 200:
                log.warning("media fetch for %s returned HTTP %s", url, resp.status_code)
                return None

            filename = _filename_from_url(url)
            content_type = (resp.headers.get("Content-Type") or "").split(";")[0].strip() or None
            if content_type is None:
                content_type, _ = mimetypes.guess_type(filename)
            if content_type and not content_type.startswith(_ALLOWED_CONTENT_PREFIXES):
                log.warning("media at %s has unsupported content type %s", url, content_type)
                return None

            declared = resp.headers.get("Content-Length")
            if declared and declared.isdigit() and int(declared) > self.max_bytes:
                log.warning("media at %s declares %s bytes (limit %d); skipped", url, declared, self.max_bytes)
                return None

            content = self._read_limited(resp, url)
        except requests.RequestException as exc:
            log.warning("media download failed for %s: %s", url, exc)
            return None
        finally:
            resp.close()

        if content is None:
            return None
        if not content:
            log.warning("media fetch for %s returned an empty body", url)
            return None
        return FetchedMedia(filename=filename, content_type=content_type, content=content)

    def _read_limited(self, resp: requests.Response, url: str) -> bytes | None:
        """Read the body in chunks; None once it grows past max_bytes."""
        buf = bytearray()
        for chunk in resp.iter_content(chunk_size=64 * 1024):
            buf.extend(chunk)
            if len(buf) > self.max_bytes:
                log.warning("media at %s exceeds %d bytes; skipped", url, self.max_bytes)
                return None
        return bytes(buf)


@dataclass
class NullMediaFetcher:
    """Never downloads; used for previews and offline runs."""

    def fetch(self, url: str) -> FetchedMedia | None:
        return None


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------

class MediaResolver:
    """Resolve media cells to media ids, sideloading unknown URLs."""

    def __init__(self, store: RecordStore, fetcher: MediaFetcher | None = None) -> None:
        self._store = store
        self._fetcher = fetcher or NullMediaFetcher()

    def lookup(self, value: str | None) -> int | None:
        """Steps 1–2 only: resolve without creating anything."""
        v = trim(value)
        if v is None:
            return None
        if is_identity(v):
            media = self._store.find_media(int(v))
            return media.id if media else None
        if is_url(v):
            media = self._store.find_media_by_url(v)
            return media.id if media else None
        return None

    def resolve(self, value: str | None, parent_id: int | None = None) -> int | None:
        """Steps 1–3: resolve, downloading and creating the media when needed."""
        v = trim(value)
        if v is None:
            return None

        found = self.lookup(v)
        if found is not None:
            return found
        if not is_url(v):
            log.warning("media reference %r is neither a known id nor a URL", v)
            return None

        fetched = self._fetcher.fetch(v)
        if fetched is None:
            return None
        try:
            return self._store.create_media(
                source_url=v,
                filename=fetched.filename,
                content_type=fetched.content_type,
                content=fetched.content,
                parent_id=parent_id,
            )
        except StoreError as exc:
            log.warning("media record for %s could not be created: %s", v, exc)
            return None
