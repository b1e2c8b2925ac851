"""MOT trade API page fetcher."""

from __future__ import annotations

from typing import Any, Optional

import httpx
import orjson

from motingest.config import Settings
from motingest.errors import TransientNetworkError
from motingest.models import Cursor, PageResult, PageStatus
from motingest.utils.logging import get_logger
from motingest.utils.time import format_date_filter


logger = get_logger(__name__)

MOT_TESTS_PATH = "/trade/vehicles/mot-tests"
API_KEY_HEADER = "x-api-key"


class MotApiClient:
    """Fetch single pages of vehicle MOT history.

    One call to :meth:`fetch_page` is one HTTP request; retrying is left to
    :func:`motingest.ingestion.retry.with_retry`.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        api_key: Optional[str] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.settings = settings or Settings()
        key = self.settings.require_api_key(api_key)
        self._client = httpx.Client(
            base_url=self.settings.mot_api_base_url,
            headers={API_KEY_HEADER: key},
            timeout=self.settings.mot_timeout_seconds,
            transport=transport,
        )

    def __enter__(self) -> "MotApiClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    def fetch_page(self, cursor: Cursor) -> PageResult:
        """Fetch the page at ``cursor``; raise TransientNetworkError on retryable failures."""
        params: dict[str, str | int] = {"page": cursor.page}
        if cursor.date_filter is not None:
            params["date"] = format_date_filter(cursor.date_filter)

        try:
            response = self._client.get(MOT_TESTS_PATH, params=params)
        except httpx.RequestError as exc:
            raise TransientNetworkError(
                f"request for page {cursor.page} failed: {exc.__class__.__name__}: {exc}"
            ) from exc

        if response.status_code == 404:
            logger.info("fetch_page.not_found page=%s", cursor.page)
            return PageResult.not_found(cursor.page)

        if not response.is_success:
            raise TransientNetworkError(
                f"page {cursor.page} returned HTTP {response.status_code}",
                status_code=response.status_code,
            )

        vehicles = _decode_vehicles(response.content, cursor.page)
        return PageResult(status=PageStatus.OK, page=cursor.page, vehicles=vehicles)


def _decode_vehicles(content: bytes, page: int) -> list[Any]:
    if not content.strip():
        return []
    try:
        payload = orjson.loads(content)
    except orjson.JSONDecodeError as exc:
        raise TransientNetworkError(f"page {page} returned invalid JSON: {exc}") from exc

    if payload is None:
        return []
    if not isinstance(payload, list):
        raise TransientNetworkError(
            f"page {page} returned {type(payload).__name__}, expected a list of vehicles"
        )
    return payload
