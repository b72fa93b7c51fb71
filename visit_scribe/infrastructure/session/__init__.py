#!/usr/bin/env python3
"""
Visit Scribe - Session Infrastructure
セッション台帳の保持とイベント配信
"""

from .dispatcher import EventDispatcher
from .store import SessionReceiver, SessionStore, Subscription

__all__ = [
    "EventDispatcher",
    "SessionReceiver",
    "SessionStore",
    "Subscription",
]
