from enum import Enum
from typing import Dict, FrozenSet, List, Optional

from pydantic import BaseModel, Field, model_validator


class RewardKind(str, Enum):
    FREE_SHIPPING = "free-shipping"
    GIFT = "gift"


class RewardThreshold(BaseModel):
    amount_cents: int = Field(gt=0)
    kind: RewardKind
    product_id: Optional[str] = None
    product_handle: Optional[str] = None
    variant_id: Optional[str] = None
    title: str = ""

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _gift_needs_product(self):
        if self.kind == RewardKind.GIFT and not self.product_id:
            raise ValueError("gift threshold requires product_id")
        return self

    @property
    def id(self) -> str:
        if self.kind == RewardKind.GIFT:
            return f"gift:{self.product_id}:{self.amount_cents}"
        return f"free-shipping:{self.amount_cents}"

    @property
    def is_gift(self) -> bool:
        return self.kind == RewardKind.GIFT


class ThresholdStatus(str, Enum):
    LOCKED = "locked"
    READY_TO_CLAIM = "ready-to-claim"
    ACHIEVED = "achieved"


class ThresholdEvaluation(BaseModel):
    total_cents: int
    unlocked: FrozenSet[str] = frozenset()
    ready_to_claim: FrozenSet[str] = frozenset()
    statuses: Dict[str, ThresholdStatus] = {}
    next: Optional[RewardThreshold] = None
    remaining_cents: int = 0
    progress: float = 1.0

    model_config = {"frozen": True}

    @property
    def all_achieved(self) -> bool:
        return self.next is None


class GiftState(str, Enum):
    LOCKED = "locked"
    READY_TO_CLAIM = "ready-to-claim"
    CLAIMED = "claimed"


class GiftClaimState(BaseModel):
    threshold_id: str
    declined: bool = False


class RewardState(BaseModel):
    """What the presentation layer needs to draw progress bars and gift prompts."""
    evaluation: ThresholdEvaluation
    gifts: Dict[str, GiftState] = {}
    declined: List[str] = []
    awaiting_answer: List[str] = []  # prompted, neither claimed nor declined yet
