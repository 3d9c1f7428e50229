"""
FlickrClient: signed, read-only access to the Flickr REST API.

Every request is OAuth 1.0a signed (``shared.oauth``) and restricted to an
explicit allow-list of read methods; anything else raises
``PermissionError`` before a request is even built and is logged as a
security event.

Responses are classified into exactly three outcomes:
    - success: the inner payload of a ``stat == "ok"`` envelope;
    - ``AuthorizationError``: HTTP 401 or an authorisation error code
      (the operator has to redo the OAuth login);
    - ``UpstreamAPIError``: anything else, including transport failures.

Nothing is retried here.  The whole run repeats on the next schedule tick.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, List, Optional

import httpx

from shared.errors import AuthorizationError, UpstreamAPIError
from shared.oauth import OAuthCredentials, sign_request

logger = logging.getLogger("syncer.flickr_client")

REST_ENDPOINT = "https://www.flickr.com/services/rest"

# ---------------------------------------------------------------------------
# Allowed methods: read-only Flickr operations.
# Do NOT add anything that uploads, edits, deletes or comments.
# ---------------------------------------------------------------------------
ALLOWED_METHODS: FrozenSet[str] = frozenset(
    {
        "flickr.photos.recentlyUpdated",
        "flickr.photos.getInfo",
        "flickr.photos.getExif",
    }
)

# Flickr error codes that mean the stored token is unusable:
# 96 invalid signature, 97 missing signature, 98 invalid/expired token,
# 99 insufficient permissions.
AUTH_ERROR_CODES: FrozenSet[int] = frozenset({96, 97, 98, 99})

# Extra fields returned by recentlyUpdated so the listing alone is enough
# to map the photo row.
_LIST_EXTRAS = "date_upload,date_taken,last_update,original_format,views"


@dataclass
class Page:
    """One page of a paginated listing."""

    page: int
    pages: int
    total: int
    photos: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def is_last(self) -> bool:
        return self.page >= self.pages


def _as_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


class FlickrClient:
    """Async Flickr REST client.

    Usage::

        async with FlickrClient(settings.oauth_credentials) as flickr:
            page = await flickr.fetch_page("recentlyUpdated", cursor, 1)

    Args:
        credentials: Consumer and token credentials used to sign requests.
        reauthorize_url: Shown to the operator when authorisation fails.
        per_page: Page size for listings.
        timeout: Per-request timeout in seconds.
        http_client: Pre-built ``httpx.AsyncClient`` (tests inject one with a
            mock transport).  Owned by the caller when given.
    """

    def __init__(
        self,
        credentials: OAuthCredentials,
        reauthorize_url: Optional[str] = None,
        per_page: int = 100,
        timeout: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._credentials = credentials
        self._reauthorize_url = reauthorize_url
        self._per_page = per_page
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout)

    # ----- async context manager ------------------------------------------

    async def __aenter__(self) -> "FlickrClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    # ----- public API -----------------------------------------------------

    async def fetch_page(self, action: str, cursor: int, page_number: int) -> Page:
        """Fetch one page of ``flickr.photos.<action>`` since ``cursor``.

        Args:
            action: Listing action name, e.g. ``"recentlyUpdated"``.
            cursor: Lower bound (epoch seconds) passed as ``min_date``.
            page_number: 1-based page index.

        Returns:
            The page, with ``pages`` taken from the server's envelope.

        Raises:
            PermissionError: ``action`` is not an allowed read method.
            AuthorizationError: Flickr rejected the credentials.
            UpstreamAPIError: Any other failure.
        """
        method = f"flickr.photos.{action}"
        data = await self.call(
            method,
            {
                "min_date": str(cursor),
                "page": str(page_number),
                "per_page": str(self._per_page),
                "extras": _LIST_EXTRAS,
            },
        )
        photos = data.get("photos")
        if not isinstance(photos, dict):
            raise UpstreamAPIError(
                "response has no photos collection",
                method,
                {"min_date": cursor, "page": page_number},
            )
        page = Page(
            page=_as_int(photos.get("page"), page_number),
            pages=_as_int(photos.get("pages")),
            total=_as_int(photos.get("total")),
            photos=list(photos.get("photo") or []),
        )
        logger.debug(
            "Fetched %s page %d/%d (%d photos)",
            action,
            page.page,
            page.pages,
            len(page.photos),
        )
        return page

    async def get_info(self, photo_id: str, secret: Optional[str] = None) -> Dict[str, Any]:
        """Return the ``photo`` object of ``flickr.photos.getInfo``."""
        return await self._photo_call("flickr.photos.getInfo", photo_id, secret)

    async def get_exif(self, photo_id: str, secret: Optional[str] = None) -> Dict[str, Any]:
        """Return the ``photo`` object of ``flickr.photos.getExif``."""
        return await self._photo_call("flickr.photos.getExif", photo_id, secret)

    # ----- request plumbing -----------------------------------------------

    async def _photo_call(
        self, method: str, photo_id: str, secret: Optional[str]
    ) -> Dict[str, Any]:
        params = {"photo_id": str(photo_id)}
        if secret:
            params["secret"] = str(secret)
        data = await self.call(method, params)
        photo = data.get("photo")
        if not isinstance(photo, dict):
            raise UpstreamAPIError("response has no photo object", method, {"photo_id": photo_id})
        return photo

    async def call(self, method: str, params: Dict[str, str]) -> Dict[str, Any]:
        """Sign and perform one allowed API call; return the decoded envelope.

        Raises:
            PermissionError: ``method`` is not in ``ALLOWED_METHODS``.
            AuthorizationError: HTTP 401 or an authorisation error code.
            UpstreamAPIError: Any other non-success outcome.
        """
        if method not in ALLOWED_METHODS:
            logger.critical("BLOCKED  | method=%-30s  PermissionError raised", method)
            raise PermissionError(
                f"FlickrClient: method '{method}' is not allowed. "
                f"Only these methods are permitted: {sorted(ALLOWED_METHODS)}"
            )

        query = {"method": method, "format": "json", "nojsoncallback": "1"}
        query.update(params)
        signed = sign_request("GET", REST_ENDPOINT, query, self._credentials)

        try:
            response = await self._http.get(REST_ENDPOINT, params=signed)
        except httpx.HTTPError as exc:
            raise UpstreamAPIError(
                f"transport error: {exc.__class__.__name__}: {exc}", method, params
            ) from exc

        return self._classify(method, params, response)

    def _classify(
        self, method: str, params: Dict[str, str], response: httpx.Response
    ) -> Dict[str, Any]:
        if response.status_code == 401:
            raise AuthorizationError(
                f"{method} returned HTTP 401", reauthorize_url=self._reauthorize_url
            )
        if response.status_code != 200:
            raise UpstreamAPIError(
                f"HTTP {response.status_code}",
                method,
                params,
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except (json.JSONDecodeError, ValueError) as exc:
            raise UpstreamAPIError(
                "response is not valid JSON", method, params, status_code=200
            ) from exc
        if not isinstance(data, dict):
            raise UpstreamAPIError("malformed response envelope", method, params)

        stat = data.get("stat")
        if stat == "ok":
            return data

        code = data.get("code")
        message = str(data.get("message") or "unknown error")
        code_int = _as_int(code, -1) if code is not None else None
        if stat == "fail" and code_int in AUTH_ERROR_CODES:
            raise AuthorizationError(
                f"{method}: {message} (code {code_int})",
                reauthorize_url=self._reauthorize_url,
            )
        raise UpstreamAPIError(
            f"{message} (stat={stat!r}, code={code})",
            method,
            params,
            code=code_int,
            status_code=200,
        )
