import logging
from typing import Callable, Dict, Optional

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import async_sessionmaker

from .client import RemoteClient, ShopifyClient
from .model import ShopConnection

_logger = logging.getLogger(__name__)

ClientFactory = Callable[[str, str], RemoteClient]


class ShopRegistry:
    """Per-owner remote connections. An owner without one is never synced."""

    def __init__(self, session_factory: async_sessionmaker, client_factory: ClientFactory = ShopifyClient):
        self._session_factory = session_factory
        self._client_factory = client_factory
        self._clients: Dict[str, RemoteClient] = {}

    async def connect(self, owner_id: int, shop_domain: str, access_token: str) -> ShopConnection:
        shop_domain = shop_domain.strip().lower()
        async with self._session_factory() as session:
            async with session.begin():
                conn = await session.scalar(sa.select(ShopConnection).where(ShopConnection.shop_domain == shop_domain))
                if conn is None:
                    conn = ShopConnection(owner_id=owner_id, shop_domain=shop_domain, access_token=access_token)
                    session.add(conn)
                else:
                    conn.owner_id = owner_id
                    conn.access_token = access_token
                    conn.is_active = True
        await self._drop_client(shop_domain)
        _logger.info("Shop connected | owner_id=%s shop=%s", owner_id, shop_domain)
        return conn

    async def for_owner(self, owner_id: int) -> Optional[RemoteClient]:
        stmt = (
            sa.select(ShopConnection)
            .where(ShopConnection.owner_id == owner_id, ShopConnection.is_active.is_(True))
            .order_by(ShopConnection.id)
        )
        async with self._session_factory() as session:
            conn = (await session.execute(stmt)).scalars().first()
        if conn is None:
            return None
        client = self._clients.get(conn.shop_domain)
        if client is None:
            client = self._client_factory(conn.shop_domain, conn.access_token)
            self._clients[conn.shop_domain] = client
        return client

    async def owner_for_domain(self, shop_domain: str) -> Optional[int]:
        stmt = sa.select(ShopConnection.owner_id).where(
            ShopConnection.shop_domain == shop_domain, ShopConnection.is_active.is_(True)
        )
        async with self._session_factory() as session:
            return await session.scalar(stmt)

    async def deactivate(self, shop_domain: str) -> bool:
        stmt = (
            sa.update(ShopConnection)
            .where(ShopConnection.shop_domain == shop_domain, ShopConnection.is_active.is_(True))
            .values(is_active=False)
        )
        async with self._session_factory() as session:
            async with session.begin():
                res = await session.execute(stmt)
        await self._drop_client(shop_domain)
        changed = (res.rowcount or 0) > 0
        if changed:
            _logger.info("Shop connection deactivated | shop=%s", shop_domain)
        return changed

    async def close(self) -> None:
        for domain in list(self._clients):
            await self._drop_client(domain)

    async def _drop_client(self, shop_domain: str) -> None:
        client = self._clients.pop(shop_domain, None)
        close = getattr(client, "close", None)
        if close is not None:
            await close()
