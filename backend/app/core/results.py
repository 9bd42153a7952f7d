from dataclasses import dataclass, field
from typing import Any, Generic, Optional, TypeVar

from fastapi import HTTPException

T = TypeVar("T")


@dataclass
class ServiceResult(Generic[T]):
    """
    Uniform outcome of a service call.

    ``code`` is a short machine-readable reason on failure (``not_found``,
    ``forbidden``, ``last_admin``, ...) that routes map onto HTTP statuses.
    """

    success: bool
    data: Optional[T] = None
    error: Optional[str] = None
    code: Optional[str] = None
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, data: Optional[T] = None, **extra) -> "ServiceResult[T]":
        return cls(success=True, data=data, extra=extra)

    @classmethod
    def fail(cls, error: str, code: Optional[str] = None) -> "ServiceResult[T]":
        return cls(success=False, error=error, code=code)


STATUS_BY_CODE = {
    "not_found": 404,
    "forbidden": 403,
    "expired": 400,
    "invalid": 400,
    "last_admin": 400,
}


def raise_for_result(result: ServiceResult) -> ServiceResult:
    if not result.success:
        raise HTTPException(
            status_code=STATUS_BY_CODE.get(result.code, 500), detail=result.error
        )
    return result
