from __future__ import annotations

from .chat import ChatListItem, HistoryEntry, HistoryPage, LoginResult
from .decision import DecisionAction, InterruptDecision
from .draft import DraftEmail

__all__ = [
    "ChatListItem",
    "DecisionAction",
    "DraftEmail",
    "HistoryEntry",
    "HistoryPage",
    "InterruptDecision",
    "LoginResult",
]
