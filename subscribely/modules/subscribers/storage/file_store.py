"""
Flat File Store
===============

Keeps every subscriber in a single JSON array. Each operation runs
load-modify-save under a process lock plus an advisory ``fcntl`` lock on a
sidecar ``.lock`` file, and saves go through a temp file and ``os.replace``
so readers never see a half-written file.
"""

import fcntl
import json
import logging
import os
import tempfile
import threading
from collections import Counter
from contextlib import contextmanager

from ..models import (
    STATUS_ACTIVE, DuplicateKeyError, NotFoundError, PagedRecords,
    StorageUnavailableError, Subscriber,
)
from .base import check_page_args

logger = logging.getLogger(__name__)


class FileAdapter:
    """Subscriber storage backed by one JSON file"""

    def __init__(self, path):
        self.path = path
        self.lock_path = f"{path}.lock"
        self._lock = threading.Lock()
        try:
            db_dir = os.path.dirname(path)
            if db_dir:
                os.makedirs(db_dir, exist_ok=True)
        except OSError as e:
            raise StorageUnavailableError(f"Cannot create directory for {path}: {e}") from e

    def __repr__(self):
        return f"FileAdapter({self.path!r})"

    # ===================
    # FILE PRIMITIVES
    # ===================

    @contextmanager
    def _locked(self):
        with self._lock:
            try:
                lock_file = open(self.lock_path, 'a')
            except OSError as e:
                raise StorageUnavailableError(f"Cannot open lock file {self.lock_path}: {e}") from e
            try:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX)
                yield
            finally:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)
                lock_file.close()

    def _load(self):
        if not os.path.exists(self.path):
            return []
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                content = f.read()
        except OSError as e:
            raise StorageUnavailableError(f"Cannot read {self.path}: {e}") from e
        if not content.strip():
            return []
        try:
            records = json.loads(content)
        except ValueError as e:
            raise StorageUnavailableError(f"Corrupt subscriber file {self.path}: {e}") from e
        if not isinstance(records, list):
            raise StorageUnavailableError(f"Subscriber file {self.path} is not a JSON array")
        try:
            subscribers = [Subscriber.from_record(r) for r in records]
            backfilled = sum(1 for r in records if Subscriber.needs_backfill(r))
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise StorageUnavailableError(f"Malformed record in {self.path}: {e}") from e
        if backfilled:
            # Older files only hold email/subscribedAt/source; pin the generated ids and tokens
            self._save(subscribers)
            logger.info(f"Backfilled id/token for {backfilled} legacy record(s) in {self.path}")
        return subscribers

    def _save(self, subscribers):
        db_dir = os.path.dirname(self.path) or '.'
        try:
            fd, tmp_path = tempfile.mkstemp(prefix='.subscribers-', suffix='.tmp', dir=db_dir)
            try:
                with os.fdopen(fd, 'w', encoding='utf-8') as f:
                    json.dump([s.to_record() for s in subscribers], f, indent=2, ensure_ascii=False)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_path, self.path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise
        except OSError as e:
            raise StorageUnavailableError(f"Cannot write {self.path}: {e}") from e

    # ===================
    # ADAPTER CONTRACT
    # ===================

    def find_by_email(self, email):
        with self._locked():
            return next((s for s in self._load() if s.email == email), None)

    def find_by_token(self, token):
        if not token:
            return None
        with self._locked():
            return next((s for s in self._load() if s.unsubscribe_token == token), None)

    def insert(self, subscriber):
        with self._locked():
            subscribers = self._load()
            if any(s.email == subscriber.email for s in subscribers):
                raise DuplicateKeyError(f"Email already stored: {subscriber.email}")
            subscribers.append(subscriber)
            self._save(subscribers)
        logger.debug(f"Inserted subscriber {subscriber.id} into {self.path}")
        return subscriber

    def update_status(self, email, status, updated_at):
        with self._locked():
            subscribers = self._load()
            for index, existing in enumerate(subscribers):
                if existing.email == email:
                    updated = existing.with_status(status, updated_at)
                    subscribers[index] = updated
                    self._save(subscribers)
                    return updated
        raise NotFoundError(f"No subscriber with email {email}")

    def count(self, status=None, subscribed_since=None):
        with self._locked():
            subscribers = self._load()
        return sum(1 for s in subscribers if _matches(s, status, subscribed_since))

    def list(self, page, page_size, status=None):
        offset = check_page_args(page, page_size)
        with self._locked():
            matching = [s for s in self._load() if _matches(s, status, None)]
        matching.sort(key=lambda s: s.subscribed_at, reverse=True)
        return PagedRecords(records=matching[offset:offset + page_size], total_count=len(matching))

    def count_by_source(self):
        with self._locked():
            subscribers = self._load()
        totals = Counter(s.source for s in subscribers)
        active = Counter(s.source for s in subscribers if s.status == STATUS_ACTIVE)
        return [
            {'source': source, 'count': count, 'active_count': active.get(source, 0)}
            for source, count in sorted(totals.items(), key=lambda item: (-item[1], item[0]))
        ]


def _matches(subscriber, status, subscribed_since):
    if status is not None and subscriber.status != status:
        return False
    if subscribed_since is not None and subscriber.subscribed_at < subscribed_since:
        return False
    return True
