import os
from dotenv import load_dotenv

load_dotenv(override=True)


def _as_bool(value):
    return str(value).strip().lower() in ('1', 'true', 'yes', 'on')


class Config:
    """
    Base configuration for the Subscribely service.
    Deployments provide storage paths and credentials via environment variables.
    """
    # Flask settings
    SECRET_KEY = os.getenv('FLASK_SECRET_KEY')

    # Get DB_DIR from environment, or use a default if not set
    DB_DIR = os.getenv('DB_DIR', os.path.join(os.getcwd(), 'databases'))

    # Storage backend: file | sqlite | remote
    SUBSCRIBER_STORAGE = os.getenv('SUBSCRIBER_STORAGE', 'sqlite')

    # Storage paths - use environment variables or fallback to DB_DIR
    SUBSCRIBERS_DB = os.getenv('SUBSCRIBERS_DB', os.path.join(DB_DIR, "subscribers.db"))
    SUBSCRIBERS_FILE = os.getenv('SUBSCRIBERS_FILE', os.path.join(DB_DIR, "subscribers.json"))
    LOGS_DB = os.getenv('LOGS_DB', os.path.join(DB_DIR, "app_logs.db"))

    # Hosted store (Supabase REST)
    SUPABASE_URL = os.getenv('SUPABASE_URL')
    SUPABASE_KEY = os.getenv('SUPABASE_KEY') or os.getenv('SUPABASE_ANON_KEY')
    SUPABASE_TABLE = os.getenv('SUPABASE_TABLE', 'subscribers')
    REMOTE_TIMEOUT = float(os.getenv('REMOTE_TIMEOUT', '10'))

    # Table names
    SUBSCRIBERS = "subscribers"
    LOGS_TABLE = "app_logs"

    # Subscriber settings
    SUBSCRIBER_SOURCE = os.getenv('SUBSCRIBER_SOURCE', 'emailjs-learning-tool')
    SUBSCRIBER_LOWERCASE_EMAILS = _as_bool(os.getenv('SUBSCRIBER_LOWERCASE_EMAILS', 'false'))

    # Comma separated list, or * for a publicly embeddable widget
    CORS_ORIGINS = os.getenv('CORS_ORIGINS', '*')

    # Port for local server (optional, deployments can set this)
    port = int(os.getenv('PORT', '3001'))


def get_config_value(key, default=None, app=None):
    """Resolve a setting: app.config > Config class > default (3-tier pattern)"""
    if app is None:
        try:
            from flask import current_app
            app = current_app._get_current_object()
        except RuntimeError:
            app = None
    if app is not None:
        val = app.config.get(key)
        if val is not None and val != '':
            return val
    if hasattr(Config, key):
        val = getattr(Config, key)
        if val is not None and val != '':
            return val
    return default
