"""Service layer consumed by the dashboard client.

將子模組匯入為套件屬性，確保於套件命名空間可見。
"""

from . import dao_service as dao_service  # noqa: F401
from . import dashboard as dashboard  # noqa: F401

__all__ = ["dao_service", "dashboard"]
