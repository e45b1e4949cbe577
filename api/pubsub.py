"""
Progress notification fan-out.

Every processing state change is published to two groups:

- user:{owner_id}    - the uploader's private group
- tenant:{tenant_id} - shared by everyone in the tenant (admins/editors dashboards)

Subscribers join groups explicitly by declaring a user id and/or tenant id
and receive events through a bounded queue. Delivery is best effort: there is
no persistence or replay, late subscribers miss earlier events, and a
subscriber whose queue is full loses the event rather than slowing the
publisher down. A subscription that joined both groups receives each event
once.

When Redis is configured, events are also relayed to the channels
``{prefix}:user:{owner_id}`` and ``{prefix}:tenant:{tenant_id}`` so other
processes can listen in. Relay failures never affect local delivery.
"""

import asyncio
import json
import logging
import uuid
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from api.metrics import PROGRESS_EVENTS_DROPPED_TOTAL, PROGRESS_EVENTS_TOTAL, SUBSCRIBERS_ACTIVE
from api.redis_client import get_redis, record_redis_result
from api.schemas import ProgressEvent
from config import REDIS_PUBSUB_PREFIX, REDIS_URL, SUBSCRIBER_QUEUE_SIZE

logger = logging.getLogger(__name__)

PROGRESS_EVENT_NAME = "video:progress"


def group_name(kind: str, entity_id: str) -> str:
    """Local group name, e.g. ``user:42`` or ``tenant:acme``."""
    return f"{kind}:{entity_id}"


def channel_name(kind: str, entity_id: Optional[str] = None) -> str:
    """Redis channel name, e.g. ``vidshield:tenant:acme``."""
    if entity_id:
        return f"{REDIS_PUBSUB_PREFIX}:{kind}:{entity_id}"
    return f"{REDIS_PUBSUB_PREFIX}:{kind}"


class Subscription:
    """One connected subscriber's membership and event buffer."""

    def __init__(self, user_id: Optional[str], tenant_id: Optional[str], queue_size: int) -> None:
        self.id = uuid.uuid4().hex
        self.user_id = user_id
        self.tenant_id = tenant_id
        self.groups: Set[str] = set()
        self.dropped = 0
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)

    def deliver(self, message: Dict[str, Any]) -> bool:
        try:
            self._queue.put_nowait(message)
            return True
        except asyncio.QueueFull:
            self.dropped += 1
            PROGRESS_EVENTS_DROPPED_TOTAL.inc()
            logger.debug(f"Subscriber {self.id} queue full, dropped event for {message.get('videoId')}")
            return False

    async def get(self, timeout: Optional[float] = None) -> Optional[Dict[str, Any]]:
        """Next event, or None if ``timeout`` elapses first."""
        if timeout is None:
            return await self._queue.get()
        try:
            return await asyncio.wait_for(self._queue.get(), timeout=timeout)
        except asyncio.TimeoutError:
            return None

    def pending(self) -> int:
        return self._queue.qsize()

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> Dict[str, Any]:
        return await self._queue.get()

    def __repr__(self) -> str:
        return f"Subscription(id={self.id!r}, groups={sorted(self.groups)!r})"


class ProgressNotifier:
    """Holds group memberships and delivers progress events to them."""

    def __init__(
        self,
        queue_size: int = SUBSCRIBER_QUEUE_SIZE,
        relay_enabled: bool = bool(REDIS_URL),
        redis_getter: Callable[[], Awaitable[Any]] = get_redis,
        relay_result: Callable[[bool], None] = record_redis_result,
    ) -> None:
        self.queue_size = queue_size
        self.relay_enabled = relay_enabled
        self._redis_getter = redis_getter
        self._relay_result = relay_result
        self._groups: Dict[str, Set[Subscription]] = {}

    def join(self, user_id: Optional[str] = None, tenant_id: Optional[str] = None) -> Subscription:
        """Register a subscriber in its user and/or tenant group."""
        if not user_id and not tenant_id:
            raise ValueError("A subscriber must declare a user id or a tenant id")

        subscription = Subscription(user_id, tenant_id, self.queue_size)
        if user_id:
            subscription.groups.add(group_name("user", user_id))
        if tenant_id:
            subscription.groups.add(group_name("tenant", tenant_id))

        for group in subscription.groups:
            self._groups.setdefault(group, set()).add(subscription)

        SUBSCRIBERS_ACTIVE.inc()
        logger.info(f"Subscriber {subscription.id} joined {', '.join(sorted(subscription.groups))}")
        return subscription

    def leave(self, subscription: Subscription) -> None:
        removed = False
        for group in subscription.groups:
            members = self._groups.get(group)
            if members is None or subscription not in members:
                continue
            members.discard(subscription)
            removed = True
            if not members:
                del self._groups[group]
        if removed:
            SUBSCRIBERS_ACTIVE.dec()
            logger.info(f"Subscriber {subscription.id} left")

    def group_size(self, group: str) -> int:
        return len(self._groups.get(group, ()))

    @property
    def subscriber_count(self) -> int:
        members: Set[Subscription] = set()
        for group_members in self._groups.values():
            members.update(group_members)
        return len(members)

    async def publish(self, video_id: str, owner_id: str, tenant_id: str, event: ProgressEvent) -> int:
        """
        Deliver ``event`` to the owner's and tenant's groups.

        Returns:
            Number of local subscribers the event was handed to
        """
        message = event.to_wire()
        groups = (group_name("user", owner_id), group_name("tenant", tenant_id))

        reached: Set[Subscription] = set()
        for group in groups:
            for subscription in list(self._groups.get(group, ())):
                if subscription in reached:
                    continue
                reached.add(subscription)
                subscription.deliver(message)

        PROGRESS_EVENTS_TOTAL.labels(status=event.status.value).inc()
        logger.debug(f"Progress for {video_id}: {event.progress}% {event.status.value} -> {len(reached)} subscriber(s)")

        if self.relay_enabled:
            await self._relay(owner_id, tenant_id, message)

        return len(reached)

    async def _relay(self, owner_id: str, tenant_id: str, message: Dict[str, Any]) -> bool:
        redis = await self._redis_getter()
        if not redis:
            return False

        try:
            payload = json.dumps({"type": PROGRESS_EVENT_NAME, **message})
            await redis.publish(channel_name("user", owner_id), payload)
            await redis.publish(channel_name("tenant", tenant_id), payload)
        except Exception as e:
            logger.warning(f"Failed to relay progress event: {e}")
            self._relay_result(False)
            return False
        self._relay_result(True)
        return True
