"""Elasticsearch REST backend built on httpx.

Targets the typeless document API (Elasticsearch 7+). Each
``BackendLocation`` maps onto one physical index named ``{index}-{table}``.
"""

from __future__ import annotations

from collections.abc import Mapping
import json
import logging
import shlex
from typing import Any

import httpx

from search_mirror.adapters.search_backend import SearchBackend, build_source_filter
from search_mirror.config import Settings
from search_mirror.deployment_config import BackendLocation
from search_mirror.domain.model import SearchOptions
from search_mirror.errors import BackendError


logger = logging.getLogger(__name__)

_ALREADY_EXISTS = "resource_already_exists_exception"


class ElasticsearchBackend(SearchBackend):
    """Index documents for one location stored in Elasticsearch."""

    def __init__(
        self,
        location: BackendLocation,
        *,
        client: httpx.Client | None = None,
        timeout: float = 30.0,
        refresh: str = "wait_for",
    ) -> None:
        self.location = location
        self.refresh = refresh
        self._client = client or httpx.Client(
            base_url=location.base_url,
            timeout=httpx.Timeout(timeout, connect=min(timeout, 10.0)),
            headers={"Content-Type": "application/json"},
        )
        self.last: dict[str, Any] = {}

    @classmethod
    def from_settings(cls, location: BackendLocation, settings: Settings) -> ElasticsearchBackend:
        return cls(location, timeout=settings.search_backend_timeout, refresh=settings.search_backend_refresh)

    def close(self) -> None:
        self._client.close()

    # --- provisioning -----------------------------------------------------

    def create_index(self, name: str, config: Mapping[str, Any] | None = None) -> bool:
        settings = dict((config or {}).get("settings") or {})
        response = self._request("PUT", f"/{name}", body={"settings": settings} if settings else None, allow={400})
        if response.status_code == 400:
            if _ALREADY_EXISTS not in response.text:
                raise BackendError(f"Failed to create index {name}: {response.text}", status_code=400)
            logger.debug("Index %s already exists", name)
        return True

    def create_mapping(self, schema: Mapping[str, Any], config: Mapping[str, Any] | None = None) -> bool:
        self._request("PUT", f"/{self.location.physical_index}/_mapping", body={"properties": dict(schema)})
        return True

    # --- documents --------------------------------------------------------

    def exists(self, doc_id: str) -> bool:
        response = self._request("HEAD", self._doc_path(doc_id), allow={404})
        return response.status_code == 200

    def create_record(self, doc: Mapping[str, Any]) -> str | None:
        response = self._request(
            "POST",
            f"/{self.location.physical_index}/_doc",
            body=dict(doc),
            params={"refresh": self.refresh},
        )
        return response.json().get("_id")

    def update_record(self, doc_id: str, doc: Mapping[str, Any]) -> str | None:
        response = self._request("PUT", self._doc_path(doc_id), body=dict(doc), params={"refresh": self.refresh})
        return response.json().get("_id")

    def delete_record(self, doc_id: str) -> bool:
        response = self._request("DELETE", self._doc_path(doc_id), params={"refresh": self.refresh}, allow={404})
        return response.status_code != 404

    # --- search -----------------------------------------------------------

    def search(self, query: Mapping[str, Any], options: SearchOptions) -> list[dict[str, Any]]:
        body: dict[str, Any] = dict(query)
        body["_source"] = build_source_filter(options)
        body["from"] = options.offset(options.size or 0)
        if options.size is not None:
            body["size"] = options.size
        if options.min_score is not None:
            body["min_score"] = options.min_score

        response = self._request("POST", f"/{self.location.physical_index}/_search", body=body)
        hits = response.json().get("hits", {}).get("hits", [])
        return [{"_id": hit.get("_id"), "_score": hit.get("_score"), **(hit.get("_source") or {})} for hit in hits]

    def describe_last_request(self) -> str | None:
        request = self.last.get("request")
        if not request:
            return None
        return self.as_curl_request(request)

    @staticmethod
    def as_curl_request(request: Mapping[str, Any]) -> str:
        """Render a recorded request as a copy-pasteable curl command."""
        parts = ["curl", "-X", request["method"], shlex.quote(request["url"])]
        if request.get("body") is not None:
            parts.extend(["-H", shlex.quote("Content-Type: application/json")])
            parts.extend(["-d", shlex.quote(json.dumps(request["body"]))])
        return " ".join(parts)

    # --- internal helpers -------------------------------------------------

    def _doc_path(self, doc_id: str) -> str:
        return f"/{self.location.physical_index}/_doc/{doc_id}"

    def _request(
        self,
        method: str,
        path: str,
        *,
        body: Any = None,
        params: Mapping[str, str] | None = None,
        allow: set[int] | None = None,
    ) -> httpx.Response:
        self.last = {
            "request": {"method": method, "url": f"{self.location.base_url}{path}", "body": body},
            "response": None,
            "error": None,
        }
        try:
            response = self._client.request(method, path, json=body, params=params)
        except httpx.HTTPError as exc:
            self.last["error"] = str(exc)
            raise BackendError(f"{method} {path} failed: {exc}") from exc

        self.last["response"] = response.status_code
        if response.is_success or response.status_code in (allow or set()):
            return response

        self.last["error"] = response.text
        raise BackendError(
            f"{method} {path} returned HTTP {response.status_code}: {response.text[:500]}",
            status_code=response.status_code,
        )
