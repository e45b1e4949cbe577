"""
Server-Sent Events endpoint for processing progress.

A connection joins the caller's ``user:`` group and, for editors and admins,
the ``tenant:`` group, then receives ``video:progress`` events as processing
advances. Viewers only ever see their own videos, so they join their user
group alone.

SSE Message Format:
    event: video:progress
    data: {"videoId": "...", "progress": 40, "status": "processing", ...}

    event: heartbeat
    data: {"timestamp": "..."}
"""

import json
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request
from sse_starlette.sse import EventSourceResponse

from api.auth import Principal, get_principal
from api.common import get_notifier
from api.pubsub import PROGRESS_EVENT_NAME, ProgressNotifier, Subscription
from config import SSE_HEARTBEAT_INTERVAL, SSE_RECONNECT_TIMEOUT_MS

logger = logging.getLogger(__name__)

router = APIRouter(tags=["events"])


def _heartbeat() -> dict:
    return {
        "event": "heartbeat",
        "data": json.dumps({"timestamp": datetime.now(timezone.utc).isoformat()}),
    }


async def progress_event_stream(
    request: Request,
    notifier: ProgressNotifier,
    subscription: Subscription,
    heartbeat_interval: float = SSE_HEARTBEAT_INTERVAL,
):
    """Yield SSE messages for ``subscription`` until the client goes away."""
    try:
        # Send retry interval for client reconnection
        yield {"event": "retry", "data": str(SSE_RECONNECT_TIMEOUT_MS)}
        yield {"event": "joined", "data": json.dumps({"groups": sorted(subscription.groups)})}

        while not await request.is_disconnected():
            message = await subscription.get(timeout=heartbeat_interval)
            if message is None:
                yield _heartbeat()
                continue
            yield {"event": PROGRESS_EVENT_NAME, "data": json.dumps(message)}
    finally:
        notifier.leave(subscription)


@router.get("/events")
async def progress_events(
    request: Request,
    principal: Principal = Depends(get_principal),
    notifier: ProgressNotifier = Depends(get_notifier),
):
    """Stream ``video:progress`` events for the caller's videos and tenant."""
    subscription = notifier.join(user_id=principal.user_id, tenant_id=principal.tenant_id)
    return EventSourceResponse(progress_event_stream(request, notifier, subscription))
