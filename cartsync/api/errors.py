# cartsync/api/errors.py
from typing import TypeVar

from fastapi import HTTPException

from cartsync.domain.errors import (
    CartBusyError,
    CartInconsistencyError,
    CartSyncError,
    RemoteRejectionError,
    RewardNotAvailableError,
)
from cartsync.utils.result import Ok, Result

T = TypeVar("T")


def status_for(error: CartSyncError) -> int:
    if isinstance(error, CartBusyError):
        return 409
    if isinstance(error, RemoteRejectionError):
        return 422
    if isinstance(error, (RewardNotAvailableError, CartInconsistencyError)):
        return 409
    return 502


def unwrap(result: Result[T]) -> T:
    """Ok value, or the Err turned into an HTTPException."""
    if isinstance(result, Ok):
        return result.value
    error = result.error
    detail = {"error": type(error).__name__, "message": str(error)}
    if isinstance(error, RemoteRejectionError) and error.variant_id:
        detail["variant_id"] = error.variant_id
    raise HTTPException(status_code=status_for(error), detail=detail)
