"""
HTTP client used by the shim to reach the team gateway.
"""

from __future__ import annotations

from typing import List, Optional

import httpx

import core.config as config
from core.errors import GatewayError, NotFoundError
from core.gitinfo import GitInfo
from core.models import Memory

logger = config.logger


class GatewayClient:
    """Forwards memory operations to the gateway over HTTP.

    Identity headers from the local git configuration are attached to every
    request. There is no retry queue: transport failures raise
    ``GatewayError`` right away.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        git_info: Optional[GitInfo] = None,
        timeout_seconds: Optional[float] = None,
        client: Optional[httpx.Client] = None,
    ):
        self.base_url = (base_url or config.EC_API_URL).rstrip("/")
        self.git_info = git_info or GitInfo()
        self._owns_client = client is None
        self._client = client or httpx.Client(
            timeout=timeout_seconds or config.GATEWAY_TIMEOUT_SECONDS
        )

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.git_info.author_name:
            headers[config.AUTHOR_NAME_HEADER] = self.git_info.author_name
        if self.git_info.author_email:
            headers[config.AUTHOR_EMAIL_HEADER] = self.git_info.author_email
        if self.git_info.repo:
            headers[config.PROJECT_SCOPE_HEADER] = self.git_info.repo
        return headers

    def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            response = self._client.request(
                method,
                f"{self.base_url}{path}",
                headers=self._headers(),
                **kwargs,
            )
        except httpx.HTTPError as exc:
            logger.warning("gateway_request_failed", extra={"path": path, "detail": str(exc)})
            raise GatewayError(f"gateway request failed: {exc}") from exc
        logger.debug(
            "gateway_response",
            extra={"method": method, "path": path, "status_code": response.status_code},
        )
        return response

    @staticmethod
    def _raise_for_error(response: httpx.Response) -> None:
        if response.is_success:
            return
        try:
            message = response.json().get("error")
        except (ValueError, AttributeError):
            message = None
        detail = message or f"status {response.status_code}"
        raise GatewayError(f"API error: {detail}", status_code=response.status_code)

    def add(
        self,
        memory_type,
        area: str,
        content: str,
        rationale: Optional[str] = None,
    ) -> Memory:
        payload = {
            "type": getattr(memory_type, "value", memory_type),
            "area": area,
            "content": content,
        }
        if rationale:
            payload["rationale"] = rationale
        response = self._request("POST", "/v1/memories", json=payload)
        self._raise_for_error(response)
        return Memory.from_dict(response.json()["memory"])

    def search(
        self,
        query: str,
        limit: int = config.DEFAULT_SEARCH_LIMIT,
        memory_type=None,
        area: Optional[str] = None,
    ) -> List[Memory]:
        payload = {"query": query, "limit": limit}
        if memory_type:
            payload["type"] = getattr(memory_type, "value", memory_type)
        if area:
            payload["area"] = area
        response = self._request("POST", "/v1/memories/search", json=payload)
        self._raise_for_error(response)
        return [Memory.from_dict(item) for item in response.json().get("memories") or []]

    def list(
        self,
        limit: int = config.DEFAULT_LIST_LIMIT,
        memory_type=None,
        area: Optional[str] = None,
        include_invalid: bool = False,
        offset: int = 0,
    ) -> List[Memory]:
        params = {"limit": limit}
        if offset:
            params["offset"] = offset
        if memory_type:
            params["type"] = getattr(memory_type, "value", memory_type)
        if area:
            params["area"] = area
        if include_invalid:
            params["include_invalid"] = "true"
        response = self._request("GET", "/v1/memories", params=params)
        self._raise_for_error(response)
        return [Memory.from_dict(item) for item in response.json().get("memories") or []]

    def invalidate(self, memory_id: int, superseded_by: Optional[int] = None) -> None:
        payload = {"superseded_by": superseded_by} if superseded_by is not None else {}
        response = self._request("PUT", f"/v1/memories/{memory_id}/invalidate", json=payload)
        if response.status_code == 404:
            raise NotFoundError(memory_id)
        self._raise_for_error(response)

    def close(self) -> None:
        if self._owns_client:
            self._client.close()


__all__ = ["GatewayClient"]
