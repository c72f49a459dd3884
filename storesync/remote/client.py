"""HTTP client for the remote shop platform (Shopify REST shaped).

Every failure is surfaced as ``RemoteUnavailable`` (transport, timeout,
throttling, 5xx) or ``RemoteRejected`` (the remote refused the payload).
"""
import asyncio
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol
from urllib.parse import parse_qs, urlparse

import aiohttp

from ..common.config import settings
from ..common.errors import RemoteRejected, RemoteUnavailable

_logger = logging.getLogger(__name__)

_NEXT_LINK = re.compile(r'<([^>]+)>;\s*rel="next"')


@dataclass
class Page:
    records: List[Dict[str, Any]] = field(default_factory=list)
    next_token: Optional[str] = None


class RemoteClient(Protocol):
    async def get_collection(self, resource: str, limit: int, page_token: Optional[str] = None) -> Page:
        ...

    async def create(self, resource: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        ...

    async def update(self, resource: str, remote_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        ...


def singular(resource: str) -> str:
    return resource[:-1] if resource.endswith("s") else resource


def next_page_token(link_header: Optional[str]) -> Optional[str]:
    if not link_header:
        return None
    match = _NEXT_LINK.search(link_header)
    if not match:
        return None
    values = parse_qs(urlparse(match.group(1)).query).get("page_info")
    return values[0] if values else None


class ShopifyClient:
    def __init__(
        self,
        shop_domain: str,
        access_token: str,
        api_version: Optional[str] = None,
        timeout: Optional[float] = None,
        base_url: Optional[str] = None,
    ):
        self.shop_domain = shop_domain
        self._access_token = access_token
        version = api_version or settings.SHOPIFY_API_VERSION
        self._base_url = (base_url or f"https://{shop_domain}/admin/api/{version}").rstrip("/")
        self._timeout = aiohttp.ClientTimeout(total=timeout or settings.REMOTE_TIMEOUT_SECONDS)
        self._session: Optional[aiohttp.ClientSession] = None
        self._lock = asyncio.Lock()

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            async with self._lock:
                if self._session is None or self._session.closed:
                    self._session = aiohttp.ClientSession(
                        timeout=self._timeout,
                        headers={
                            "X-Shopify-Access-Token": self._access_token,
                            "Content-Type": "application/json",
                        },
                    )
        return self._session

    async def close(self) -> None:
        if self._session is not None:
            try:
                await self._session.close()
            finally:
                self._session = None

    async def get_collection(self, resource: str, limit: int, page_token: Optional[str] = None) -> Page:
        params = {"limit": str(limit)} if limit > 0 else {}
        if page_token:
            params["page_info"] = page_token
        data, headers = await self._request("GET", f"/{resource}.json", params=params)
        records = data.get(resource) or []
        _logger.info("Fetched %s %s from shop %s", len(records), resource, self.shop_domain)
        return Page(records=list(records), next_token=next_page_token(headers.get("Link")))

    async def create(self, resource: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        key = singular(resource)
        data, _ = await self._request("POST", f"/{resource}.json", payload={key: payload})
        record = data.get(key)
        if not isinstance(record, dict) or "id" not in record:
            raise RemoteRejected(200, f"Missing {key} in create response")
        _logger.info("Created %s %s in shop %s", key, record["id"], self.shop_domain)
        return record

    async def update(self, resource: str, remote_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        key = singular(resource)
        data, _ = await self._request("PUT", f"/{resource}/{remote_id}.json", payload={key: payload})
        _logger.info("Updated %s %s in shop %s", key, remote_id, self.shop_domain)
        return data.get(key) or {}

    async def _request(self, method: str, path: str, params=None, payload=None):
        session = await self._get_session()
        url = f"{self._base_url}{path}"
        try:
            async with session.request(method, url, params=params, json=payload) as resp:
                body = await resp.text()
                if resp.status == 429 or resp.status >= 500:
                    raise RemoteUnavailable(f"{method} {path} -> {resp.status}")
                if resp.status >= 400:
                    raise RemoteRejected(resp.status, body)
                try:
                    data = json.loads(body) if body else {}
                except ValueError as e:
                    raise RemoteRejected(resp.status, "Response is not JSON") from e
                return data, resp.headers
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            _logger.warning("Remote call failed | shop=%s %s %s err=%s", self.shop_domain, method, path, e)
            raise RemoteUnavailable(f"{method} {path}: {e!r}") from e
