"""Best-effort Redis pub/sub broadcasts for the notification layer."""

from __future__ import annotations

import json
import logging

logger = logging.getLogger(__name__)

CHANNEL_LEVEL_UP = "pubsub:level_up"
CHANNEL_BADGE_EARNED = "pubsub:badge_earned"
CHANNEL_STREAK_UPDATE = "pubsub:streak_update"
CHANNEL_POINTS_UPDATE = "pubsub:points_update"


async def publish_event(redis: object | None, channel: str, payload: dict) -> None:
    """Publish ``payload`` as JSON. Failures are logged, never raised."""
    if redis is None:
        return
    try:
        await redis.publish(channel, json.dumps(payload))  # type: ignore[attr-defined]
    except Exception:
        logger.warning("Failed to publish %s event", channel, exc_info=True)
