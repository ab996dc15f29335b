"""
Broker hierarchy traversal.

The ancestor chain of a broker is the ordered path self -> parent -> ... ->
root. The walk is iterative and bounded by COMMISSION_MAX_HIERARCHY_DEPTH;
anything that would make it loop or skip a generation is reported as a
HierarchyIntegrityError instead of being worked around.

Two lookup strategies share the same walk:
- HierarchyWalker: one query per level (default, payments touch one chain)
- BrokerTree: whole tenant loaded once, walked in memory (bulk traversal)
"""
import logging
import uuid
from collections import deque
from typing import Awaitable, Callable, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from school_crm.config import settings
from school_crm.models.broker import Broker
from school_crm.services.commission.exceptions import (
    BrokerNotFoundError,
    HierarchyIntegrityError,
)

logger = logging.getLogger(__name__)

BrokerLookup = Callable[[uuid.UUID], Awaitable[Optional[Broker]]]


async def walk_ancestors(
    broker_id: uuid.UUID,
    lookup: BrokerLookup,
    max_depth: int,
) -> List[Broker]:
    """
    Follow parent links from broker_id to the root.

    Raises:
        BrokerNotFoundError: the starting broker does not resolve
        HierarchyIntegrityError: depth bound exceeded, cycle, dangling
            parent, or a level that is not parent level + 1
    """
    chain: List[Broker] = []
    seen: set = set()
    current_id: Optional[uuid.UUID] = broker_id

    while current_id is not None:
        if len(chain) >= max_depth:
            logger.error(
                f"Broker hierarchy from {broker_id} exceeds depth bound {max_depth}"
            )
            raise HierarchyIntegrityError(
                f"Broker hierarchy starting at {broker_id} is deeper than {max_depth} levels"
            )

        broker = await lookup(current_id)
        if broker is None:
            if not chain:
                raise BrokerNotFoundError(broker_id)
            raise HierarchyIntegrityError(
                f"Broker {chain[-1].code} references parent {current_id} which does not exist in this tenant"
            )

        if broker.id in seen:
            logger.error(f"Cycle detected in broker hierarchy at {broker.code}")
            raise HierarchyIntegrityError(f"Broker hierarchy contains a cycle at {broker.code}")

        if chain and broker.level != chain[-1].level - 1:
            raise HierarchyIntegrityError(
                f"Broker {chain[-1].code} has level {chain[-1].level} "
                f"but its parent {broker.code} has level {broker.level}"
            )

        seen.add(broker.id)
        chain.append(broker)
        current_id = broker.parent_broker_id

    if chain[-1].level != 0:
        raise HierarchyIntegrityError(
            f"Root broker {chain[-1].code} has level {chain[-1].level}, expected 0"
        )

    return chain


class HierarchyWalker:
    """Walks the broker hierarchy with one tenant-scoped query per level."""

    def __init__(self, db: AsyncSession, max_depth: Optional[int] = None):
        self.db = db
        self.max_depth = max_depth or settings.COMMISSION_MAX_HIERARCHY_DEPTH

    async def ancestor_chain(self, broker_id: uuid.UUID, tenant_id: uuid.UUID) -> List[Broker]:
        """Ordered list of brokers, self first, root last."""

        async def lookup(current_id: uuid.UUID) -> Optional[Broker]:
            result = await self.db.execute(
                select(Broker).where(
                    Broker.id == current_id,
                    Broker.tenant_id == tenant_id,
                )
            )
            return result.scalar_one_or_none()

        return await walk_ancestors(broker_id, lookup, self.max_depth)


class BrokerTree:
    """
    In-memory adjacency list of every broker in a tenant.

    Load once with BrokerTree.load() and reuse for many walks.
    """

    def __init__(self, brokers: List[Broker], max_depth: Optional[int] = None):
        self.max_depth = max_depth or settings.COMMISSION_MAX_HIERARCHY_DEPTH
        self._by_id: Dict[uuid.UUID, Broker] = {b.id: b for b in brokers}
        self._children: Dict[uuid.UUID, List[Broker]] = {}
        for broker in sorted(brokers, key=lambda b: (b.level, b.name, b.code)):
            if broker.parent_broker_id is not None:
                self._children.setdefault(broker.parent_broker_id, []).append(broker)

    @classmethod
    async def load(
        cls,
        db: AsyncSession,
        tenant_id: uuid.UUID,
        max_depth: Optional[int] = None,
    ) -> "BrokerTree":
        result = await db.execute(select(Broker).where(Broker.tenant_id == tenant_id))
        return cls(list(result.scalars().all()), max_depth=max_depth)

    def __len__(self) -> int:
        return len(self._by_id)

    def __contains__(self, broker_id: uuid.UUID) -> bool:
        return broker_id in self._by_id

    def get(self, broker_id: uuid.UUID) -> Optional[Broker]:
        return self._by_id.get(broker_id)

    def parent_of(self, broker_id: uuid.UUID) -> Optional[Broker]:
        broker = self._by_id.get(broker_id)
        if broker is None or broker.parent_broker_id is None:
            return None
        return self._by_id.get(broker.parent_broker_id)

    def children_of(self, broker_id: uuid.UUID) -> List[Broker]:
        return list(self._children.get(broker_id, []))

    def descendants_of(self, broker_id: uuid.UUID) -> List[Broker]:
        """All descendants, breadth first (children, then grandchildren, ...)."""
        descendants: List[Broker] = []
        seen = {broker_id}
        queue = deque([(broker_id, 0)])
        while queue:
            current_id, depth = queue.popleft()
            if depth >= self.max_depth:
                raise HierarchyIntegrityError(
                    f"Broker subtree under {broker_id} is deeper than {self.max_depth} levels"
                )
            for child in self._children.get(current_id, []):
                if child.id in seen:
                    raise HierarchyIntegrityError(f"Broker hierarchy contains a cycle at {child.code}")
                seen.add(child.id)
                descendants.append(child)
                queue.append((child.id, depth + 1))
        return descendants

    async def ancestor_chain(self, broker_id: uuid.UUID) -> List[Broker]:
        async def lookup(current_id: uuid.UUID) -> Optional[Broker]:
            return self._by_id.get(current_id)

        return await walk_ancestors(broker_id, lookup, self.max_depth)
