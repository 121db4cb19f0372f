"""REST client for the remote time-series backend."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import httpx

from dirwatch.backend.base import Backend
from dirwatch.config import BackendSettings
from dirwatch.exceptions import BackendError
from dirwatch.resilience.circuit_breaker import CircuitBreaker, CircuitBreakerConfig

if TYPE_CHECKING:
    from collections.abc import Sequence

    from pydantic import BaseModel

    from dirwatch.ingestion.models import Interval, LeafRequest, NodeRequest, RelationshipRequest, Sample

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"


class HttpBackend(Backend):
    """Backend reached over HTTP with a bearer token.

    Every request passes through a circuit breaker so that a dead backend
    fails fast instead of tying up each directory's callback thread for a
    full timeout per call.
    """

    def __init__(
        self,
        settings: BackendSettings,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize HTTP backend.

        Args:
            settings: URL, token, timeout, page size and breaker thresholds
            transport: Optional httpx transport (tests pass httpx.MockTransport)
        """
        super().__init__(settings.page_size)
        self.settings = settings

        headers = {"Accept": "application/json"}
        if settings.api_token:
            headers["Authorization"] = f"Bearer {settings.api_token}"

        self._client = httpx.Client(
            base_url=settings.base_url,
            headers=headers,
            timeout=settings.timeout_seconds,
            transport=transport,
        )
        self._breaker = CircuitBreaker(
            "backend",
            CircuitBreakerConfig(
                failure_threshold=settings.failure_threshold,
                reset_timeout=settings.reset_timeout_seconds,
            ),
        )

    @property
    def breaker(self) -> CircuitBreaker:
        return self._breaker

    def _request(self, method: str, path: str, json: Any = None, allow_missing: bool = False) -> Any:
        return self._breaker.call(self._send, method, path, json, allow_missing)

    def _send(self, method: str, path: str, json: Any, allow_missing: bool) -> Any:
        url = f"{API_PREFIX}{path}"
        try:
            response = self._client.request(method, url, json=json)
        except httpx.HTTPError as e:
            raise BackendError(f"{method} {url} failed: {e}") from e

        if allow_missing and response.status_code == 404:
            return None
        if response.is_error:
            raise BackendError(
                f"{method} {url} returned {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )
        if not response.content:
            return None
        return response.json()

    def _upsert(self, path: str, batch: Sequence[BaseModel], operation: str) -> list[str]:
        self._check_page(batch, operation)
        payload = {"items": [item.model_dump(mode="json") for item in batch]}
        body = self._request("POST", path, json=payload) or {}
        return list(body.get("ids", []))

    def upsert_nodes(self, batch: Sequence[NodeRequest]) -> list[str]:
        return self._upsert("/nodes/batch", batch, "upsert_nodes")

    def upsert_leaves(self, batch: Sequence[LeafRequest]) -> list[str]:
        return self._upsert("/leaves/batch", batch, "upsert_leaves")

    def upsert_relationships(self, batch: Sequence[RelationshipRequest]) -> None:
        self._upsert("/relationships/batch", batch, "upsert_relationships")

    def get_property(self, item_id: str, name: str) -> Any | None:
        body = self._request("GET", f"/items/{item_id}/properties/{name}", allow_missing=True)
        if body is None:
            return None
        return body.get("value")

    def set_property(self, item_id: str, name: str, value: Any) -> None:
        self._request("PUT", f"/items/{item_id}/properties/{name}", json={"value": value})

    def write_samples(self, leaf_id: str, samples: Sequence[Sample]) -> None:
        self._request("POST", f"/leaves/{leaf_id}/samples", json={"samples": [s.to_dict() for s in samples]})

    def write_intervals(self, leaf_id: str, intervals: Sequence[Interval]) -> None:
        self._request(
            "POST",
            f"/leaves/{leaf_id}/intervals",
            json={"intervals": [i.to_dict() for i in intervals]},
        )

    def health_check(self) -> bool:
        try:
            self._request("GET", "/health")
        except BackendError as e:
            logger.warning(f"Backend health check failed: {e}")
            return False
        return True

    def close(self) -> None:
        self._client.close()
