from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar, Union

T = TypeVar("T")

class ErrorKind(str, Enum):
    VALIDATION = "validation"
    RATE_LIMITED = "rate_limited"
    WORDING_REJECTED = "wording_rejected"
    NOT_FOUND = "not_found"
    TRANSPORT = "transport"

@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T
    ok: bool = True

@dataclass(frozen=True)
class Err:
    kind: ErrorKind
    message: str
    retry_after_seconds: int | None = None
    ok: bool = False

    def to_dict(self) -> dict:
        out = {"error": self.message}
        if self.retry_after_seconds is not None:
            out["retryAfterSeconds"] = self.retry_after_seconds
        return out

Result = Union[Ok[T], Err]
