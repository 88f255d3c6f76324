# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
n8n public REST API transport (``/api/v1/workflows``) built on httpx.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

import httpx

from ..exceptions import TransportError
from ..models import Workflow
from .base import WorkflowTransport

logger = logging.getLogger("flowmigrate.transport.n8n")

RETRYABLE_STATUS = {429, 500, 502, 503, 504}
PAGE_LIMIT = 250


class N8nTransport(WorkflowTransport):
    """
    Async client for one n8n instance.

    Usage:
        async with N8nTransport("https://n8n.example.com", api_key="...") as dst:
            created = await dst.create(workflow.to_upload_payload())
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout_seconds: float = 30.0,
        max_retries: int = 3,
        retry_delay_seconds: float = 1.0,
        retry_backoff: float = 2.0,
        verify_ssl: bool = True,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
        name: Optional[str] = None,
    ):
        if not base_url:
            raise ValueError("base_url is required")
        if not api_key:
            raise ValueError("api_key is required")

        self.base_url = base_url.rstrip("/")
        self.name = name or self.base_url
        self.max_retries = max_retries
        self.retry_delay_seconds = retry_delay_seconds
        self.retry_backoff = retry_backoff
        self.stats = {"listed": 0, "created": 0, "updated": 0, "fetched": 0, "retries": 0}

        self._client = httpx.AsyncClient(
            base_url=f"{self.base_url}/api/v1",
            headers={"X-N8N-API-KEY": api_key, "Accept": "application/json"},
            timeout=timeout_seconds,
            verify=verify_ssl,
            transport=http_transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        """Send a request, retrying network errors and 429/5xx with backoff"""
        delay = self.retry_delay_seconds

        for attempt in range(self.max_retries + 1):
            try:
                response = await self._client.request(method, url, **kwargs)
            except httpx.HTTPError as e:
                if attempt < self.max_retries:
                    self.stats["retries"] += 1
                    logger.warning(
                        f"{method} {url} failed ({e}) - retry "
                        f"{attempt + 1}/{self.max_retries} after {delay:.1f}s"
                    )
                    await asyncio.sleep(delay)
                    delay *= self.retry_backoff
                    continue
                raise TransportError(
                    f"{method} {url} failed: {e}",
                    url=f"{self.base_url}/api/v1{url}",
                    cause=e,
                )

            if response.status_code in RETRYABLE_STATUS and attempt < self.max_retries:
                self.stats["retries"] += 1
                logger.warning(
                    f"{method} {url} returned {response.status_code} - retry "
                    f"{attempt + 1}/{self.max_retries} after {delay:.1f}s"
                )
                await asyncio.sleep(delay)
                delay *= self.retry_backoff
                continue

            return response

        # Loop always returns or raises
        raise TransportError(f"{method} {url} exhausted retries")

    def _check(self, response: httpx.Response, action: str) -> Any:
        if response.is_success:
            try:
                return response.json()
            except ValueError as e:
                raise TransportError(
                    f"{action}: invalid JSON response",
                    url=str(response.request.url),
                    status_code=response.status_code,
                    cause=e,
                )

        try:
            body = response.json()
        except ValueError:
            body = None
        message = (body.get("message") if isinstance(body, dict) else None) or response.text
        raise TransportError(
            f"{action} failed with HTTP {response.status_code}: {message}",
            url=str(response.request.url),
            status_code=response.status_code,
        )

    async def list(self, filter: Optional[Dict[str, Any]] = None) -> List[Workflow]:
        params: Dict[str, Any] = {"limit": PAGE_LIMIT}
        params.update(filter or {})

        workflows: List[Workflow] = []
        while True:
            response = await self._request("GET", "/workflows", params=params)
            body = self._check(response, "List workflows")
            for item in body.get("data", []):
                workflows.append(Workflow.from_dict(item))

            cursor = body.get("nextCursor")
            if not cursor:
                break
            params["cursor"] = cursor

        self.stats["listed"] += len(workflows)
        logger.debug(f"Listed {len(workflows)} workflows from {self.name}")
        return workflows

    async def create(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        if not payload.get("name"):
            raise ValueError("payload.name is required")
        if not isinstance(payload.get("nodes"), list):
            raise ValueError("payload.nodes must be a list")

        response = await self._request("POST", "/workflows", json=payload)
        created = self._check(response, f"Create workflow {payload['name']!r}")
        if not created.get("id"):
            raise TransportError(
                f"Create workflow {payload['name']!r}: response has no id",
                url=str(response.request.url),
                status_code=response.status_code,
            )

        self.stats["created"] += 1
        logger.info(f"Created workflow {payload['name']!r} ({created['id']})")
        return created

    async def update(self, workflow_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        if not workflow_id:
            raise ValueError("workflow_id is required")

        response = await self._request("PUT", f"/workflows/{workflow_id}", json=payload)
        updated = self._check(response, f"Update workflow {workflow_id}")
        self.stats["updated"] += 1
        logger.info(f"Updated workflow {workflow_id}")
        return updated

    async def get(self, workflow_id: str) -> Optional[Workflow]:
        response = await self._request("GET", f"/workflows/{workflow_id}")
        if response.status_code == 404:
            return None
        self.stats["fetched"] += 1
        return Workflow.from_dict(self._check(response, f"Get workflow {workflow_id}"))
