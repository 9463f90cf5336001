from __future__ import annotations

import json
import logging
from typing import Any, Optional
from urllib.parse import urlparse

import httpx

logger = logging.getLogger("vocalshop.fetcher")

DEFAULT_TIMEOUT = 8.0
DEFAULT_MAX_BYTES = 2_000_000


class FetchError(Exception):
    """Remote fetch failure carrying the HTTP status to return to the caller."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message


def is_http_url(value: Optional[str]) -> bool:
    """Return True for absolute http(s) URLs with a host."""
    if not value:
        return False
    try:
        parsed = urlparse(value)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


class RemoteFetcher:
    """Same-origin JSON fetch proxy with hard timeout and size cap."""

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        max_bytes: int = DEFAULT_MAX_BYTES,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        """Purpose: Configure the outbound HTTP client used for remote catalogs.
        Inputs/Outputs: Inputs are the timeout (seconds), the byte cap, and an optional
            httpx transport (tests inject httpx.MockTransport); no return value.
        Side Effects / State: Creates a reusable httpx.Client.
        Dependencies: httpx.
        Failure Modes: None at init.
        If Removed: The widget cannot load partner catalogs from other origins.
        Testing Notes: Use httpx.MockTransport to simulate slow, large or non-JSON bodies.
        """
        # One client per fetcher; JSON is the only accepted payload.
        self._max_bytes = max_bytes
        self._client = httpx.Client(
            timeout=timeout,
            follow_redirects=True,
            headers={"Accept": "application/json"},
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def fetch_json(self, url: Optional[str]) -> Any:
        """Purpose: Fetch a remote URL and return its decoded JSON body.
        Inputs/Outputs: Input is a caller-supplied URL; output is decoded JSON.
        Side Effects / State: One outbound GET; no retry.
        Dependencies: httpx.Client streaming API, json.
        Failure Modes: Raises FetchError with 400 (bad URL), 413 (too large),
            415 (not JSON), 502 (upstream error or non-2xx) or 504 (timeout).
        If Removed: /api/fetch and remote catalogs stop working.
        Testing Notes: A body over max_bytes without Content-Length still yields 413.
        """
        # Validate, stream with a byte cap, then decode.
        if not is_http_url(url):
            raise FetchError(400, "Paramètre 'url' manquant ou invalide.")
        try:
            with self._client.stream("GET", url) as response:
                if response.status_code < 200 or response.status_code >= 300:
                    raise FetchError(502, f"Erreur HTTP {response.status_code}")
                declared = response.headers.get("content-length")
                if declared and declared.isdigit() and int(declared) > self._max_bytes:
                    raise FetchError(413, "Fichier trop volumineux.")
                body = bytearray()
                for chunk in response.iter_bytes():
                    body.extend(chunk)
                    if len(body) > self._max_bytes:
                        raise FetchError(413, "Fichier trop volumineux.")
        except httpx.TimeoutException as exc:
            logger.warning("fetch url=%s timeout: %s", url, exc)
            raise FetchError(504, "Délai dépassé") from exc
        except httpx.HTTPError as exc:
            logger.warning("fetch url=%s failed: %s", url, exc)
            raise FetchError(502, "Échec du chargement distant") from exc

        try:
            return json.loads(bytes(body).decode("utf-8-sig"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise FetchError(415, "Réponse distante non-JSON.") from exc
