"""DAO governance specific error types."""

from __future__ import annotations

from enum import Enum
from typing import Any

from cryptodevs_dao.infra.result import (
    BusinessLogicError,
    DatabaseError,
    Error,
    ExternalServiceError,
    PermissionDeniedError,
    ValidationError,
)


class DaoErrorCode(str, Enum):
    """DAO 操作錯誤代碼。

    命名規則: DAO_<CATEGORY>_<DETAIL>
    - AUTH: 身分 / 權限
    - LOOKUP: 查找失敗
    - TIMING: 投票期限
    - STATE: 狀態衝突
    - RESOURCE: 資金與轉帳
    - VALIDATION: 輸入驗證
    - EXTERNAL: 外部協作者
    - PERSISTENCE: 儲存層
    """

    DAO_AUTH_NOT_A_MEMBER = "DAO_AUTH_NOT_A_MEMBER"
    DAO_AUTH_NOT_OWNER = "DAO_AUTH_NOT_OWNER"

    DAO_LOOKUP_PROPOSAL_NOT_FOUND = "DAO_LOOKUP_PROPOSAL_NOT_FOUND"
    DAO_LOOKUP_TOKEN_NOT_AVAILABLE = "DAO_LOOKUP_TOKEN_NOT_AVAILABLE"

    DAO_TIMING_VOTING_CLOSED = "DAO_TIMING_VOTING_CLOSED"
    DAO_TIMING_VOTING_STILL_OPEN = "DAO_TIMING_VOTING_STILL_OPEN"

    DAO_STATE_ALREADY_VOTED = "DAO_STATE_ALREADY_VOTED"
    DAO_STATE_ALREADY_EXECUTED = "DAO_STATE_ALREADY_EXECUTED"

    DAO_RESOURCE_INSUFFICIENT_FUNDS = "DAO_RESOURCE_INSUFFICIENT_FUNDS"
    DAO_RESOURCE_TRANSFER_FAILED = "DAO_RESOURCE_TRANSFER_FAILED"

    DAO_VALIDATION_INVALID_AMOUNT = "DAO_VALIDATION_INVALID_AMOUNT"
    DAO_VALIDATION_INVALID_ADDRESS = "DAO_VALIDATION_INVALID_ADDRESS"
    DAO_VALIDATION_INVALID_CHOICE = "DAO_VALIDATION_INVALID_CHOICE"

    DAO_EXTERNAL_CALL_FAILED = "DAO_EXTERNAL_CALL_FAILED"
    DAO_PERSISTENCE_FAILED = "DAO_PERSISTENCE_FAILED"

    DAO_UNKNOWN_ERROR = "DAO_UNKNOWN_ERROR"


class DaoError(Error):
    """DAO 操作的基礎錯誤類型。"""

    error_code: DaoErrorCode = DaoErrorCode.DAO_UNKNOWN_ERROR
    default_message: str = "DAO 操作失敗。"

    def __init__(
        self,
        message: str | None = None,
        *,
        error_code: DaoErrorCode | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message or self.default_message, **kwargs)
        if error_code is not None:
            self.error_code = error_code

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload["error_code"] = self.error_code.value
        return payload


# --- Authorization ---


class NotAMemberError(DaoError, PermissionDeniedError):
    """呼叫者未持有任何 CryptoDevs NFT。"""

    error_code = DaoErrorCode.DAO_AUTH_NOT_A_MEMBER
    default_message = "NOT_A_DAO_MEMBER"


class NotOwnerError(DaoError, PermissionDeniedError):
    error_code = DaoErrorCode.DAO_AUTH_NOT_OWNER
    default_message = "Ownable: caller is not the owner"


# --- Lookup ---


class ProposalNotFoundError(DaoError):
    error_code = DaoErrorCode.DAO_LOOKUP_PROPOSAL_NOT_FOUND
    default_message = "找不到指定的提案。"


class TokenNotAvailableError(DaoError):
    error_code = DaoErrorCode.DAO_LOOKUP_TOKEN_NOT_AVAILABLE
    default_message = "NFT_NOT_FOR_SALE"


# --- Timing ---


class VotingClosedError(DaoError, BusinessLogicError):
    error_code = DaoErrorCode.DAO_TIMING_VOTING_CLOSED
    default_message = "DEADLINE_EXCEEDED"


class VotingStillOpenError(DaoError, BusinessLogicError):
    error_code = DaoErrorCode.DAO_TIMING_VOTING_STILL_OPEN
    default_message = "DEADLINE_NOT_EXCEEDED"


# --- State conflict ---


class AlreadyVotedError(DaoError, BusinessLogicError):
    """呼叫者持有的 NFT 皆已對此提案投過票。"""

    error_code = DaoErrorCode.DAO_STATE_ALREADY_VOTED
    default_message = "ALREADY_VOTED"


class AlreadyExecutedError(DaoError, BusinessLogicError):
    error_code = DaoErrorCode.DAO_STATE_ALREADY_EXECUTED
    default_message = "PROPOSAL_ALREADY_EXECUTED"


# --- Resource ---


class InsufficientTreasuryFundsError(DaoError, BusinessLogicError):
    error_code = DaoErrorCode.DAO_RESOURCE_INSUFFICIENT_FUNDS
    default_message = "NOT_ENOUGH_FUNDS"


class TransferFailedError(DaoError, ExternalServiceError):
    error_code = DaoErrorCode.DAO_RESOURCE_TRANSFER_FAILED
    default_message = "FAILED_TO_WITHDRAW_ETHER"


# --- Validation ---


class InvalidAmountError(DaoError, ValidationError):
    error_code = DaoErrorCode.DAO_VALIDATION_INVALID_AMOUNT
    default_message = "金額必須為非負整數。"


class InvalidAddressError(DaoError, ValidationError):
    error_code = DaoErrorCode.DAO_VALIDATION_INVALID_ADDRESS
    default_message = "Ownable: new owner is the zero address"


class InvalidVoteChoiceError(DaoError, ValidationError):
    error_code = DaoErrorCode.DAO_VALIDATION_INVALID_CHOICE
    default_message = "無效的投票選項。"


# --- Infrastructure ---


class ExternalCallFailedError(DaoError, ExternalServiceError):
    """NFT 合約或市場呼叫失敗；原始例外保存在 cause。"""

    error_code = DaoErrorCode.DAO_EXTERNAL_CALL_FAILED
    default_message = "外部合約呼叫失敗。"


class LedgerPersistenceError(DaoError, DatabaseError):
    error_code = DaoErrorCode.DAO_PERSISTENCE_FAILED
    default_message = "帳本狀態寫入失敗。"


__all__ = [
    "DaoErrorCode",
    "DaoError",
    "NotAMemberError",
    "NotOwnerError",
    "ProposalNotFoundError",
    "TokenNotAvailableError",
    "VotingClosedError",
    "VotingStillOpenError",
    "AlreadyVotedError",
    "AlreadyExecutedError",
    "InsufficientTreasuryFundsError",
    "TransferFailedError",
    "InvalidAmountError",
    "InvalidAddressError",
    "InvalidVoteChoiceError",
    "ExternalCallFailedError",
    "LedgerPersistenceError",
]
