"""
Subscribely - Newsletter Subscriber Registry
============================================

A small Flask service for an embeddable subscription widget:
- Subscribe / reactivate / unsubscribe with per-email deduplication
- Unsubscribe tokens for one-click links
- Subscriber listing and statistics
- Pluggable storage: JSON file, SQLite or a hosted Supabase table

Usage:
    from flask import Flask
    from subscribely import Subscribely

    app = Flask(__name__)
    app.config['SUBSCRIBER_STORAGE'] = 'sqlite'
    Subscribely(app)
"""

import logging
from flask import Flask
from flask_cors import CORS

from .core.config import Config, get_config_value
from .modules.subscribers import subscribers_bp
from .modules.subscribers.registry import DEFAULT_SOURCE, SubscriberRegistry
from .modules.subscribers.storage import build_adapter

__version__ = '0.1.0'

logger = logging.getLogger(__name__)


class Subscribely:
    """
    Flask extension wiring storage, registry, routes and CORS together.

    The storage adapter is built once here and handed to the registry; routes
    reach it through ``app.extensions['subscribely']``.
    """

    def __init__(self, app=None, storage=None):
        self.storage = storage
        self.registry = None
        if app is not None:
            self.init_app(app)

    def init_app(self, app):
        if self.storage is None:
            self.storage = build_adapter(app)

        self.registry = SubscriberRegistry(
            self.storage,
            source=get_config_value('SUBSCRIBER_SOURCE', DEFAULT_SOURCE, app=app),
            lowercase_emails=bool(get_config_value('SUBSCRIBER_LOWERCASE_EMAILS', False, app=app)),
        )

        app.register_blueprint(subscribers_bp)
        CORS(
            app,
            resources={r"/api/*": {"origins": self._cors_origins(app)}},
            methods=['GET', 'POST', 'OPTIONS'],
            allow_headers=['Content-Type'],
        )

        app.extensions['subscribely'] = self
        logger.info(f"Subscribely initialised with {self.storage!r}")

    @staticmethod
    def _cors_origins(app):
        origins = get_config_value('CORS_ORIGINS', '*', app=app)
        if isinstance(origins, str):
            if origins.strip() == '*':
                return '*'
            return [o.strip() for o in origins.split(',') if o.strip()]
        return list(origins)


def create_app(config=None, storage=None):
    """Application factory: Config defaults, then overrides from ``config``"""
    app = Flask(__name__)
    app.config.from_object(Config)
    if config:
        app.config.update(config)

    Subscribely(app, storage=storage)

    @app.route('/health')
    def health():
        return {'status': 'ok', 'storage': type(app.extensions['subscribely'].storage).__name__}

    return app


__all__ = ['Subscribely', 'SubscriberRegistry', 'create_app', '__version__']
