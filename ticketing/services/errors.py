# ticketing/services/errors.py
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Dict, Generic, Optional, TypeVar

T = TypeVar("T")


class ErrorKind(str, enum.Enum):
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    INVALID_STATE = "invalid_state"
    FORBIDDEN = "forbidden"
    AUTHENTICATION = "authentication"
    UPSTREAM = "upstream"


@dataclass(frozen=True)
class EngineError:
    """
    领域错误（值，不是异常）：
    - kind：调用方据此分支（HTTP 层映射状态码）
    - code：稳定的机器可读错误码，如 insufficient_inventory
    """

    kind: ErrorKind
    code: str
    message: str
    context: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def not_found(cls, code: str, message: str, **context: Any) -> "EngineError":
        return cls(ErrorKind.NOT_FOUND, code, message, dict(context))

    @classmethod
    def conflict(cls, code: str, message: str, **context: Any) -> "EngineError":
        return cls(ErrorKind.CONFLICT, code, message, dict(context))

    @classmethod
    def invalid_state(cls, code: str, message: str, **context: Any) -> "EngineError":
        return cls(ErrorKind.INVALID_STATE, code, message, dict(context))

    @classmethod
    def forbidden(cls, code: str, message: str, **context: Any) -> "EngineError":
        return cls(ErrorKind.FORBIDDEN, code, message, dict(context))

    @classmethod
    def authentication(cls, code: str, message: str, **context: Any) -> "EngineError":
        return cls(ErrorKind.AUTHENTICATION, code, message, dict(context))

    @classmethod
    def upstream(cls, code: str, message: str, **context: Any) -> "EngineError":
        return cls(ErrorKind.UPSTREAM, code, message, dict(context))


class ResultError(Exception):
    """unwrap() 失败时抛出（只用于编程错误 / 测试断言）"""

    def __init__(self, error: EngineError) -> None:
        super().__init__(f"{error.kind.value}:{error.code}: {error.message}")
        self.error = error


@dataclass(frozen=True)
class Result(Generic[T]):
    value: Optional[T] = None
    error: Optional[EngineError] = None

    @classmethod
    def success(cls, value: T) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: EngineError) -> "Result[T]":
        return cls(error=error)

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        if self.error is not None:
            raise ResultError(self.error)
        return self.value  # type: ignore[return-value]
