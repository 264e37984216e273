from typing import Optional


class CartSyncError(Exception):
    """Base class for failures surfaced to the presentation layer."""


class CartServiceError(CartSyncError):
    """Transient failure talking to the remote cart (network, 5xx, bad payload)."""


class RemoteRejectionError(CartSyncError):
    """The remote cart refused the write (invalid variant, out of stock...)."""

    def __init__(self, description: str, *, status_code: Optional[int] = None, variant_id: Optional[str] = None):
        super().__init__(description)
        self.description = description
        self.status_code = status_code
        self.variant_id = variant_id


class CartBusyError(CartSyncError):
    """A quantity change was dropped because another one is in flight."""


class CartInconsistencyError(CartSyncError):
    """A remove-then-add consolidation stopped half way; the next consolidation heals it."""

    def __init__(self, message: str, *, variant_id: Optional[str] = None):
        super().__init__(message)
        self.variant_id = variant_id


class RewardNotAvailableError(CartSyncError):
    """Claim requested for an unknown threshold or one that is not met."""


class CatalogError(CartSyncError):
    """Product catalog lookup failed."""
