# ticketing/api/problem.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, NoReturn, Optional

from fastapi import HTTPException

from ticketing.services.errors import EngineError, ErrorKind

# 领域错误种类 → HTTP 状态码
KIND_STATUS: Dict[ErrorKind, int] = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.INVALID_STATE: 422,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.AUTHENTICATION: 401,
    ErrorKind.UPSTREAM: 502,
}


@dataclass(frozen=True)
class Problem:
    error_code: str
    message: str
    http_status: int
    context: Optional[Dict[str, Any]] = None
    trace_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "error_code": self.error_code,
            "message": self.message,
            "http_status": int(self.http_status),
        }
        if self.context:
            out["context"] = self.context
        if self.trace_id:
            out["trace_id"] = self.trace_id
        return out


def make_problem(
    *,
    status_code: int,
    error_code: str,
    message: str,
    context: Optional[Dict[str, Any]] = None,
    trace_id: Optional[str] = None,
) -> Dict[str, Any]:
    p = Problem(
        error_code=str(error_code),
        message=str(message),
        http_status=int(status_code),
        context=context,
        trace_id=trace_id,
    )
    return p.to_dict()


def raise_problem(
    *,
    status_code: int,
    error_code: str,
    message: str,
    context: Optional[Dict[str, Any]] = None,
    trace_id: Optional[str] = None,
) -> NoReturn:
    raise HTTPException(
        status_code=int(status_code),
        detail=make_problem(
            status_code=int(status_code),
            error_code=error_code,
            message=message,
            context=context,
            trace_id=trace_id,
        ),
    )


def raise_engine_error(err: Optional[EngineError]) -> NoReturn:
    """Result 失败 → Problem（状态码按 kind 映射）。"""
    if err is None:
        raise_problem(status_code=500, error_code="internal_error", message="unknown error")
    raise_problem(
        status_code=KIND_STATUS.get(err.kind, 500),
        error_code=err.code,
        message=err.message,
        context={k: _plain(v) for k, v in err.context.items()} or None,
    )


def _plain(v: Any) -> Any:
    if v is None or isinstance(v, (str, int, float, bool)):
        return v
    return str(v)
