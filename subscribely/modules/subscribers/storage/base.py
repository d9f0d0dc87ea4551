"""
Storage Adapter Contract
========================

Every backend implements this protocol and behaves identically with
respect to it. Backends report failures with the error types from
``subscribers.models`` and never leak their own exception shapes.
"""

from datetime import datetime
from typing import List, Optional, Protocol, runtime_checkable

from ..models import InvalidArgumentError, PagedRecords, Subscriber


@runtime_checkable
class StorageAdapter(Protocol):

    def find_by_email(self, email: str) -> Optional[Subscriber]:
        ...

    def find_by_token(self, token: str) -> Optional[Subscriber]:
        ...

    def insert(self, subscriber: Subscriber) -> Subscriber:
        """Persist a new record; raises DuplicateKeyError if the email exists"""
        ...

    def update_status(self, email: str, status: str, updated_at: datetime) -> Subscriber:
        """Change status and updated_at; raises NotFoundError if absent"""
        ...

    def count(self, status: Optional[str] = None,
              subscribed_since: Optional[datetime] = None) -> int:
        ...

    def list(self, page: int, page_size: int, status: Optional[str] = None) -> PagedRecords:
        """Newest subscribed_at first; page is 1-indexed"""
        ...

    def count_by_source(self) -> List[dict]:
        """[{source, count, active_count}] ordered by count descending"""
        ...


def check_page_args(page, page_size):
    """Shared pagination guard; returns the zero-based offset"""
    if not isinstance(page_size, int) or isinstance(page_size, bool) or page_size <= 0:
        raise InvalidArgumentError('page_size must be a positive integer')
    if not isinstance(page, int) or isinstance(page, bool) or page < 1:
        raise InvalidArgumentError('page must be an integer >= 1')
    return (page - 1) * page_size
