"""
Profile change stream over Redis pub/sub.
Credit and subscription mutations publish to profile:{user_id}; the SSE
endpoint relays that channel to the browser.
"""
import json
import logging

import redis

from app.models.profile import Profile

logger = logging.getLogger(__name__)

CHANNEL_PREFIX = "profile:"


def channel_for(user_id: str) -> str:
    return f"{CHANNEL_PREFIX}{user_id}"


def profile_event(profile: Profile) -> dict:
    return {
        "type": "profile_changed",
        "userId": profile.id,
        "remainingCredits": profile.remaining_credits,
        "subscriptionStatus": profile.subscription_status,
        "subscriptionPlan": profile.subscription_plan,
    }


class ProfileEventPublisher:
    def __init__(self, client: redis.Redis) -> None:
        self.client = client

    def publish(self, profile: Profile) -> None:
        """Fire-and-forget: a dead Redis never fails the mutation that triggered it."""
        try:
            self.client.publish(channel_for(profile.id), json.dumps(profile_event(profile)))
        except redis.RedisError as e:
            logger.warning(
                "profile_event_publish_failed",
                extra={"user_id": profile.id, "error": str(e)},
            )

    def subscribe(self, user_id: str) -> "redis.client.PubSub":
        pubsub = self.client.pubsub(ignore_subscribe_messages=True)
        pubsub.subscribe(channel_for(user_id))
        return pubsub
