# cartsync/domain/repositories/analytics_repo.py
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase


class MongoAnalyticsSink:
    """
    Appends engine events to the 'events' collection, the same collection
    purchase events are mined from.
    """

    def __init__(self, db: AsyncIOMotorDatabase, *, session_id: Optional[str] = None, shop: Optional[str] = None):
        self.col = db["events"]
        self.session_id = session_id
        self.shop = shop

    async def emit(self, event_type: str, payload: Dict[str, Any]) -> None:
        data = dict(payload)
        event = {
            "event_type": event_type,
            "product_id": data.pop("product_id", None),
            "session_id": self.session_id,
            "shop": self.shop,
            "metadata": data,
            "timestamp": datetime.now(timezone.utc),
        }
        await self.col.insert_one(event)
