"""
Subscriber Registry
===================

The subscription lifecycle per email address:

    Unknown -> Active -> Unsubscribed -> Active -> ...

register() creates, reactivates or reports an already active address;
unsubscribe() is idempotent. The registry holds no state of its own: every
call is one read followed by at most one write against the storage adapter.
"""

import logging
from datetime import timedelta, timezone

from ...core.logging_service import db_log
from .models import (
    ALREADY_ACTIVE, ALREADY_UNSUBSCRIBED, CREATED, REACTIVATED, STATUS_ACTIVE,
    STATUS_ALL, STATUS_UNSUBSCRIBED, STATUSES, UNSUBSCRIBED,
    DEFAULT_SOURCE, DuplicateKeyError, InvalidArgumentError, InvalidEmailError, NotFoundError,
    PagedResult, RegisterResult, Stats, Subscriber, UnsubscribeResult,
    next_update_time, utcnow, validate_email,
)

logger = logging.getLogger(__name__)


class SubscriberRegistry:
    """Applies register / reactivate / unsubscribe transitions over a StorageAdapter"""

    def __init__(self, storage, source=DEFAULT_SOURCE, lowercase_emails=False, clock=utcnow):
        self.storage = storage
        self.source = source
        self.lowercase_emails = lowercase_emails
        self.clock = clock

    def normalize_email(self, email):
        """Validate an address as given (optionally lowercased), raising InvalidEmailError if malformed"""
        if not isinstance(email, str):
            raise InvalidEmailError('Email address is required')
        if self.lowercase_emails:
            email = email.lower()
        if not validate_email(email):
            raise InvalidEmailError('Invalid email address')
        return email

    # ===================
    # REGISTER
    # ===================

    def register(self, email, ip_address=None, user_agent=None):
        """
        Register an email address.

        Returns:
            RegisterResult with outcome created, already_active or reactivated.

        Raises:
            InvalidEmailError before any storage access; StorageUnavailableError
            from the adapter.
        """
        email = self.normalize_email(email)

        existing = self.storage.find_by_email(email)
        if existing is None:
            subscriber = Subscriber.new(
                email, self.source,
                ip_address=ip_address, user_agent=user_agent, now=self.clock()
            )
            try:
                created = self.storage.insert(subscriber)
            except DuplicateKeyError:
                # Lost the insert race to a concurrent register; the stored row is authoritative
                logger.info(f"Concurrent registration detected for {email}, re-reading")
                existing = self.storage.find_by_email(email)
                if existing is None:
                    raise
            else:
                logger.info(f"New subscription added: {email}")
                db_log('info', 'subscribers', f'New subscriber: {email}', {'id': created.id, 'ip': ip_address})
                return RegisterResult(CREATED, created)

        if existing.status == STATUS_ACTIVE:
            return RegisterResult(ALREADY_ACTIVE, existing)

        updated = self.storage.update_status(
            email, STATUS_ACTIVE, next_update_time(existing.updated_at, self.clock())
        )
        logger.info(f"Reactivated subscription for: {email}")
        db_log('info', 'subscribers', f'Reactivated subscriber: {email}', {'id': updated.id})
        return RegisterResult(REACTIVATED, updated)

    # ===================
    # UNSUBSCRIBE
    # ===================

    def unsubscribe(self, token=None, email=None):
        """
        Unsubscribe by token (preferred) or email; repeating it is harmless.

        Identifiers are looked up exactly as given. A blank value counts as
        missing.
        """
        if is_present(token):
            subscriber = self.storage.find_by_token(token)
        elif is_present(email):
            subscriber = self.storage.find_by_email(email.lower() if self.lowercase_emails else email)
        else:
            raise InvalidArgumentError('An unsubscribe token or email address is required')

        if subscriber is None:
            raise NotFoundError('Subscriber not found')

        if subscriber.status == STATUS_UNSUBSCRIBED:
            return UnsubscribeResult(ALREADY_UNSUBSCRIBED, subscriber)

        updated = self.storage.update_status(
            subscriber.email, STATUS_UNSUBSCRIBED,
            next_update_time(subscriber.updated_at, self.clock())
        )
        logger.info(f"Unsubscribed: {subscriber.email}")
        db_log('info', 'subscribers', f'Unsubscribed: {subscriber.email}', {'id': updated.id})
        return UnsubscribeResult(UNSUBSCRIBED, updated)

    # ===================
    # QUERIES
    # ===================

    def get_statistics(self, now=None):
        """
        Totals plus signups for today, the last 7 and the last 30 days.

        Windows are whole UTC calendar days ending with (and including) today,
        compared against subscribed_at.
        """
        now = (now or self.clock()).astimezone(timezone.utc)
        today = now.replace(hour=0, minute=0, second=0, microsecond=0)
        count = self.storage.count

        total = count()
        active = count(status=STATUS_ACTIVE)
        return Stats(
            total_subscribers=total,
            active_subscribers=active,
            unsubscribed_count=count(status=STATUS_UNSUBSCRIBED),
            today_subscribers=count(subscribed_since=today),
            week_subscribers=count(subscribed_since=today - timedelta(days=6)),
            month_subscribers=count(subscribed_since=today - timedelta(days=29)),
            by_source=self.storage.count_by_source(),
        )

    def list_subscribers(self, page=1, page_size=50, status=STATUS_ACTIVE):
        """Page through subscribers, newest first; status 'all' drops the filter"""
        if status == STATUS_ALL:
            status_filter = None
        elif status in STATUSES:
            status_filter = status
        else:
            raise InvalidArgumentError(f"Unknown status filter: {status!r}")

        paged = self.storage.list(page, page_size, status=status_filter)
        return PagedResult(
            subscribers=paged.records,
            current_page=page,
            per_page=page_size,
            total_count=paged.total_count,
        )


def is_present(value):
    """True for a string identifier that is not empty or whitespace-only"""
    return isinstance(value, str) and bool(value.strip())
