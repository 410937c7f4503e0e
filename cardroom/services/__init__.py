"""Workflow managers: every floor operation goes through one of these."""
from .base import Manager, ensure_self, ensure_self_or_staff
from .ledger import ChipLedger, replay, find_discrepancies
from .accounts import AccountManager, AuthTokens, InvalidCredentials
from .seat_manager import SeatManager
from .settlement_manager import SettlementManager
from .withdrawal_manager import WithdrawalManager
from .order_manager import OrderManager
from .waitlist_manager import WaitlistManager
from .catalog_manager import CatalogManager
from .announcement_manager import AnnouncementManager
from .game_sessions import GameSessionManager
from .reports import ReportManager, PatronSummary, StaleItem, format_summary_table

__all__ = [
    "Manager",
    "ensure_self",
    "ensure_self_or_staff",
    "ChipLedger",
    "replay",
    "find_discrepancies",
    "AccountManager",
    "AuthTokens",
    "InvalidCredentials",
    "SeatManager",
    "SettlementManager",
    "WithdrawalManager",
    "OrderManager",
    "WaitlistManager",
    "CatalogManager",
    "AnnouncementManager",
    "GameSessionManager",
    "ReportManager",
    "PatronSummary",
    "StaleItem",
    "format_summary_table",
]
