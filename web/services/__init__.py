"""
Web services package

Request handling logic between routes and the engine
"""

from web.services.balance_service import BalanceService

__all__ = [
    "BalanceService",
]
