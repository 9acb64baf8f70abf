"""Rust 風格 Result 錯誤處理工具。

此模組提供：
- Ok / Err 包裝類型與 Result 聯集型別
- 基礎錯誤類型階層與日誌遮罩
- 將例外轉為 Err 的裝飾器（領域錯誤原樣透傳）
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import (
    Any,
    Awaitable,
    Callable,
    Generic,
    Mapping,
    ParamSpec,
    TypeVar,
    Union,
    cast,
)

import structlog

LOGGER = structlog.get_logger(__name__)

T = TypeVar("T")
E = TypeVar("E")
U = TypeVar("U")

P = ParamSpec("P")


_SENSITIVE_KEYS: tuple[str, ...] = (
    "private_key",
    "mnemonic",
    "seed",
    "password",
    "secret",
    "token_secret",
    "api_key",
    "authorization",
)


def _sanitize_context(context: Mapping[str, Any] | None) -> dict[str, Any]:
    """對錯誤 context 進行敏感資訊遮罩處理（遞迴處理巢狀 dict）。"""
    if not context:
        return {}

    def _sanitize(key: str, value: Any) -> Any:
        if any(sk in key.lower() for sk in _SENSITIVE_KEYS):
            return "***redacted***"
        if isinstance(value, dict):
            mapping = cast(Mapping[str, Any], value)
            return {k: _sanitize(str(k), v) for k, v in mapping.items()}
        return value

    return {key: _sanitize(str(key), value) for key, value in context.items()}


# --- 錯誤型別階層 ---


class Error(Exception):
    """Result 使用的基礎錯誤型別，攜帶訊息、可選上下文與 cause。"""

    def __init__(
        self,
        message: str,
        *,
        context: dict[str, Any] | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.context: dict[str, Any] = dict(context or {})
        self.cause: BaseException | None = cause

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": type(self).__name__,
            "message": self.message,
            "context": dict(self.context),
            "cause": repr(self.cause) if self.cause is not None else None,
        }

    def __str__(self) -> str:  # pragma: no cover - 委派給 message
        return self.message

    def log_safe_context(self) -> dict[str, Any]:
        """回傳已遮罩敏感資訊後可安全寫入日誌的 context。"""
        return _sanitize_context(self.context)


class DatabaseError(Error):
    """資料庫相關錯誤。"""


class ValidationError(Error):
    """驗證失敗錯誤。"""


class BusinessLogicError(Error):
    """業務規則違反（例如投票已截止、提案已執行）。"""


class PermissionDeniedError(Error):
    """權限拒絕錯誤。"""


class ExternalServiceError(Error):
    """外部協作者（NFT 合約、市場、轉帳）呼叫失敗。"""


# --- Result / Ok / Err ---


@dataclass(slots=True)
class Ok(Generic[T, E]):
    """代表成功結果的包裝類型。"""

    value: T

    def is_ok(self) -> bool:
        return True

    def is_err(self) -> bool:
        return False

    def unwrap(self) -> T:
        return self.value

    def unwrap_err(self) -> E:
        raise RuntimeError("Called unwrap_err() on Ok value.")

    def map(self, fn: Callable[[T], U]) -> "Result[U, E]":
        return Ok(fn(self.value))


@dataclass(slots=True)
class Err(Generic[T, E]):
    """代表失敗結果的包裝類型。"""

    error: E

    def is_ok(self) -> bool:
        return False

    def is_err(self) -> bool:
        return True

    def unwrap(self) -> T:
        raise RuntimeError(f"Called unwrap() on Err value: {self.error!r}")

    def unwrap_err(self) -> E:
        return self.error

    def map(self, fn: Callable[[T], U]) -> "Result[U, E]":
        return Err(self.error)


Result = Union[Ok[T, E], Err[T, E]]


# --- 裝飾器 ---


def _to_error(
    exc: Exception,
    default_error_type: type[Error],
    exception_map: Mapping[type[Exception], type[Error]] | None,
) -> Error:
    """已是 Error 的例外原樣保留；其餘依 exception_map 轉換。"""
    if isinstance(exc, Error):
        return exc
    selected = default_error_type
    if exception_map:
        for exc_type, err_type in exception_map.items():
            if isinstance(exc, exc_type):
                selected = err_type
                break
    return selected(str(exc), cause=exc)


def async_returns_result(
    error_type: type[Error] = Error,
    *,
    exception_map: Mapping[type[Exception], type[Error]] | None = None,
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[Result[T, Error]]]]:
    """將可能丟出例外的非同步函數包裝為回傳 Result。

    - 原函式回傳一般值 `T` 時包裝為 `Ok(T)`；已回傳 `Ok` / `Err` 則直接透傳。
    - 丟出 `Error` 子類別時保留原物件，呼叫端可依具名錯誤分支。
    - 其他例外依 `error_type` / `exception_map` 轉換，原始例外保存在 cause。
    """

    def decorator(
        func: Callable[P, Awaitable[T]],
    ) -> Callable[P, Awaitable[Result[T, Error]]]:
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> Result[T, Error]:
            try:
                value = await func(*args, **kwargs)
                if isinstance(value, (Ok, Err)):
                    return cast(Result[T, Error], value)
                return Ok(value)
            except Exception as exc:
                error_obj = _to_error(exc, error_type, exception_map)
                LOGGER.warning(
                    "result.async_returns_result.error",
                    function=getattr(func, "__name__", "<unknown>"),
                    error_type=type(error_obj).__name__,
                    error=str(error_obj),
                    context=error_obj.log_safe_context(),
                )
                return cast(Result[T, Error], Err(error_obj))

        wrapper.__name__ = getattr(func, "__name__", wrapper.__name__)
        wrapper.__doc__ = func.__doc__
        return wrapper

    return decorator


__all__ = [
    "Ok",
    "Err",
    "Result",
    "Error",
    "DatabaseError",
    "ValidationError",
    "BusinessLogicError",
    "PermissionDeniedError",
    "ExternalServiceError",
    "async_returns_result",
]
