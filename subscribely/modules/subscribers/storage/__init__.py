"""
Subscriber Storage
==================

Three interchangeable backends behind one contract:
- file   -- JSON array on disk (FileAdapter)
- sqlite -- embedded SQLite table (EmbeddedSqlAdapter)
- remote -- hosted Supabase table over REST (RemoteAdapter)

build_adapter() picks one from configuration at construction time.
"""

from ....core.config import Config, get_config_value
from ..models import InvalidArgumentError
from .base import StorageAdapter
from .file_store import FileAdapter
from .remote_store import RemoteAdapter
from .sqlite_store import EmbeddedSqlAdapter

BACKENDS = ('file', 'sqlite', 'remote')


def build_adapter(app=None, backend=None):
    """Construct the configured storage adapter (app.config > Config > default)"""
    backend = (backend or get_config_value('SUBSCRIBER_STORAGE', 'sqlite', app=app)).lower()

    if backend == 'file':
        return FileAdapter(get_config_value('SUBSCRIBERS_FILE', Config.SUBSCRIBERS_FILE, app=app))

    if backend == 'sqlite':
        return EmbeddedSqlAdapter(
            get_config_value('SUBSCRIBERS_DB', Config.SUBSCRIBERS_DB, app=app),
            table=get_config_value('SUBSCRIBERS', 'subscribers', app=app),
        )

    if backend == 'remote':
        return RemoteAdapter(
            get_config_value('SUPABASE_URL', app=app),
            get_config_value('SUPABASE_KEY', app=app),
            table=get_config_value('SUPABASE_TABLE', 'subscribers', app=app),
            timeout=float(get_config_value('REMOTE_TIMEOUT', 10, app=app)),
        )

    raise InvalidArgumentError(f"Unknown SUBSCRIBER_STORAGE backend: {backend!r} (expected one of {BACKENDS})")


__all__ = ['StorageAdapter', 'FileAdapter', 'EmbeddedSqlAdapter', 'RemoteAdapter', 'build_adapter', 'BACKENDS']
