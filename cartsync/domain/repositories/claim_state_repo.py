# cartsync/domain/repositories/claim_state_repo.py
import logging
from typing import Dict, Optional

from redis.asyncio import Redis
from redis.exceptions import RedisError

from cartsync.domain.models.rewards import GiftClaimState

logger = logging.getLogger(__name__)


class ClaimStateRepo:
    """
    Per-session gift decline memory.
    Redis keys `{prefix}:{session}:{threshold_id}` expire with the session;
    without Redis the state lives in this process. Writes are mirrored
    locally so a Redis outage degrades to in-process memory.
    """

    def __init__(self, redis: Optional[Redis], session_id: str, *, ttl: int = 12 * 3600, prefix: str = "gift"):
        self.redis = redis
        self.session_id = session_id
        self.ttl = ttl
        self.prefix = prefix
        self._local: Dict[str, GiftClaimState] = {}

    def key(self, threshold_id: str) -> str:
        return f"{self.prefix}:{self.session_id}:{threshold_id}"

    def _local_get(self, threshold_id: str) -> GiftClaimState:
        return self._local.get(threshold_id) or GiftClaimState(threshold_id=threshold_id)

    async def get(self, threshold_id: str) -> GiftClaimState:
        if self.redis is None:
            return self._local_get(threshold_id)
        try:
            raw = await self.redis.get(self.key(threshold_id))
        except RedisError as e:
            logger.warning("claim state get error key=%s err=%s", self.key(threshold_id), e)
            return self._local_get(threshold_id)
        if not raw:
            return GiftClaimState(threshold_id=threshold_id)
        return GiftClaimState.model_validate_json(raw)

    async def is_declined(self, threshold_id: str) -> bool:
        return (await self.get(threshold_id)).declined

    async def set_declined(self, threshold_id: str) -> None:
        state = GiftClaimState(threshold_id=threshold_id, declined=True)
        self._local[threshold_id] = state
        if self.redis is None:
            return
        try:
            await self.redis.set(self.key(threshold_id), state.model_dump_json(), ex=self.ttl)
            logger.debug("claim state saved key=%s", self.key(threshold_id))
        except RedisError as e:
            logger.warning("claim state set error key=%s err=%s", self.key(threshold_id), e)

    async def clear(self, threshold_id: str) -> None:
        self._local.pop(threshold_id, None)
        if self.redis is None:
            return
        try:
            await self.redis.delete(self.key(threshold_id))
        except RedisError as e:
            logger.warning("claim state clear error key=%s err=%s", self.key(threshold_id), e)
