"""
Imagery provider: builds slippy-tile URLs and fetches tile bytes over HTTP.

Usage:
    provider = ImageryProvider("https://server.arcgisonline.com/.../tile/{z}/{y}/{x}")
    data = provider.fetch(provider.tile_url(TileAddress(17, 71829, 41234)))

No retry, no backoff, no rate limiting: one failed request is a FetchError for
that tile and the caller decides what to skip. Bytes are returned as served;
the cache re-encodes them when they do not match its tile store format.
"""

from __future__ import annotations

import logging
from typing import Optional

import requests

from common.config import ARCGIS_WORLD_IMAGERY
from common.errors import FetchError
from common.types import TileAddress


log = logging.getLogger(__name__)


class ImageryProvider:
    def __init__(
        self,
        url_template: str = ARCGIS_WORLD_IMAGERY,
        session: Optional[requests.Session] = None,
        timeout: float = 10.0,
    ):
        """
        Params:
            url_template: URL with {z}, {x} and {y} placeholders, in whatever
                          order the provider expects them
            session: optional requests.Session for connection reuse
            timeout: per-request timeout in seconds
        """
        self.url_template = url_template
        self.session = session or requests.Session()
        self.timeout = float(timeout)

    # ----------------------------
    # Public API
    # ----------------------------
    def tile_url(self, address: TileAddress) -> str:
        """Fully-qualified URL for one tile (no request performed)."""
        return self.url_template.format(z=address.zoom, x=address.x, y=address.y)

    def fetch(self, url: str) -> bytes:
        """
        GET `url` and return the body.

        Raises:
            FetchError: network failure, non-200 status or empty body.
        """
        try:
            r = self.session.get(url, timeout=self.timeout)
        except requests.RequestException as e:
            log.warning("Imagery request failed: %s", e, extra={"extra": {"url": url}})
            raise FetchError(f"request to {url} failed: {e}") from e

        if r.status_code != 200 or not r.content:
            log.warning(
                "Imagery request failed: %s %s",
                r.status_code,
                (r.text or "")[:200] if r.status_code != 200 else "empty body",
                extra={"extra": {"url": url}},
            )
            raise FetchError(f"{url} -> HTTP {r.status_code}, {len(r.content or b'')} bytes")
        return r.content
