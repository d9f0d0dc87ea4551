"""
Subscribers Module
==================

Provides:
- Public API for newsletter subscriptions (subscribe / unsubscribe)
- Subscriber listing and statistics
- SubscriberRegistry, the backend-agnostic lifecycle manager
- Storage adapters for a JSON file, SQLite and Supabase
"""

from flask import Blueprint

subscribers_bp = Blueprint(
    'subscribers',
    __name__,
    url_prefix='/api',
)

from . import routes
from .registry import SubscriberRegistry

__all__ = ['subscribers_bp', 'SubscriberRegistry']
