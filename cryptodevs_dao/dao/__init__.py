"""CryptoDevs DAO governance core.

將常用名稱提升到套件層級，呼叫端可直接 `from cryptodevs_dao.dao import GovernanceLedger`。
"""

from .errors import DaoError, DaoErrorCode  # noqa: F401
from .ledger import GovernanceLedger  # noqa: F401
from .models import LedgerState, ProposalStatus, ProposalView, VoteChoice  # noqa: F401

__all__ = [
    "DaoError",
    "DaoErrorCode",
    "GovernanceLedger",
    "LedgerState",
    "ProposalStatus",
    "ProposalView",
    "VoteChoice",
]
