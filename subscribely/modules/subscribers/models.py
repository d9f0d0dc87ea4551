"""
Subscribers Models
==================

Subscriber record, operation outcomes and the error taxonomy shared by the
registry, the storage adapters and the HTTP routes.
"""

import re
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import List, Optional

EMAIL_REGEX = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')
_FRACTION_REGEX = re.compile(r'\.(\d+)')

STATUS_ACTIVE = 'active'
STATUS_UNSUBSCRIBED = 'unsubscribed'
STATUSES = (STATUS_ACTIVE, STATUS_UNSUBSCRIBED)
STATUS_ALL = 'all'

DEFAULT_SOURCE = 'emailjs-learning-tool'

# Register outcomes
CREATED = 'created'
ALREADY_ACTIVE = 'already_active'
REACTIVATED = 'reactivated'

# Unsubscribe outcomes
UNSUBSCRIBED = 'unsubscribed'
ALREADY_UNSUBSCRIBED = 'already_unsubscribed'


# ===================
# ERRORS
# ===================

class SubscriberError(Exception):
    """Base class for every failure the registry reports"""


class InvalidEmailError(SubscriberError):
    pass


class InvalidArgumentError(SubscriberError):
    pass


class NotFoundError(SubscriberError):
    pass


class DuplicateKeyError(SubscriberError):
    """Insert lost a uniqueness race; recovered inside the registry"""


class StorageUnavailableError(SubscriberError):
    """Backend I/O failure. Message is safe to log, never shown to clients"""


# ===================
# TIME HELPERS
# ===================

def utcnow():
    return datetime.now(timezone.utc)


def parse_timestamp(value):
    """Parse an ISO-8601 string (or pass through a datetime) as aware UTC"""
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        text = str(value).strip().replace('Z', '+00:00')
        # SQLite CURRENT_TIMESTAMP style: "2024-01-01 10:00:00"
        if 'T' not in text and ' ' in text:
            text = text.replace(' ', 'T', 1)
        # Postgres trims trailing zeros from fractional seconds
        text = _FRACTION_REGEX.sub(lambda m: '.' + m.group(1).ljust(6, '0')[:6], text)
        dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_timestamp(dt):
    """Fixed-width ISO-8601 so stored strings sort chronologically"""
    if dt is None:
        return None
    return dt.astimezone(timezone.utc).strftime('%Y-%m-%dT%H:%M:%S.%f+00:00')


def next_update_time(previous, now=None):
    """updated_at for a transition: now, but strictly after the previous value"""
    now = now or utcnow()
    if previous is not None and now <= previous:
        return previous + timedelta(microseconds=1)
    return now


# ===================
# RECORDS
# ===================

@dataclass
class Subscriber:
    id: str
    email: str
    status: str
    source: str
    subscribed_at: datetime
    created_at: datetime
    updated_at: datetime
    unsubscribe_token: str
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    @property
    def is_active(self):
        return self.status == STATUS_ACTIVE

    @classmethod
    def new(cls, email, source, ip_address=None, user_agent=None, now=None):
        """Build a fresh active record with new id and unsubscribe token"""
        now = now or utcnow()
        return cls(
            id=uuid.uuid4().hex,
            email=email,
            status=STATUS_ACTIVE,
            source=source,
            subscribed_at=now,
            created_at=now,
            updated_at=now,
            unsubscribe_token=str(uuid.uuid4()),
            ip_address=ip_address,
            user_agent=user_agent,
        )

    def with_status(self, status, updated_at):
        return replace(self, status=status, updated_at=updated_at)

    def to_dict(self):
        """snake_case row, used by the SQL/remote stores and API responses"""
        return {
            'id': self.id,
            'email': self.email,
            'status': self.status,
            'source': self.source,
            'subscribed_at': format_timestamp(self.subscribed_at),
            'created_at': format_timestamp(self.created_at),
            'updated_at': format_timestamp(self.updated_at),
            'unsubscribe_token': self.unsubscribe_token,
            'ip_address': self.ip_address,
            'user_agent': self.user_agent,
        }

    def to_public_dict(self):
        """API representation: the unsubscribe token stays server side"""
        data = self.to_dict()
        data.pop('unsubscribe_token')
        return data

    @classmethod
    def from_dict(cls, row):
        row = dict(row)
        subscribed_at = parse_timestamp(row.get('subscribed_at'))
        created_at = parse_timestamp(row.get('created_at')) or subscribed_at
        return cls(
            id=str(row['id']),
            email=row['email'],
            status=row.get('status') or STATUS_ACTIVE,
            source=row.get('source') or '',
            subscribed_at=subscribed_at,
            created_at=created_at,
            updated_at=parse_timestamp(row.get('updated_at')) or created_at,
            unsubscribe_token=row.get('unsubscribe_token'),
            ip_address=row.get('ip_address'),
            user_agent=row.get('user_agent'),
        )

    def to_record(self):
        """camelCase layout persisted by the flat file store"""
        return {
            'id': self.id,
            'email': self.email,
            'subscribedAt': format_timestamp(self.subscribed_at),
            'source': self.source,
            'status': self.status,
            'unsubscribeToken': self.unsubscribe_token,
            'createdAt': format_timestamp(self.created_at),
            'updatedAt': format_timestamp(self.updated_at),
            'ipAddress': self.ip_address,
            'userAgent': self.user_agent,
        }

    @staticmethod
    def needs_backfill(record):
        """True if from_record() would invent an id, token or subscribedAt for this record"""
        return not (record.get('id') and record.get('unsubscribeToken') and record.get('subscribedAt'))

    @classmethod
    def from_record(cls, record):
        """
        Parse a stored file record. Records written before ids and tokens
        existed (just email, subscribedAt and source) get a fresh id and
        unsubscribe token; see needs_backfill().
        """
        subscribed_at = parse_timestamp(record.get('subscribedAt')) or utcnow()
        created_at = parse_timestamp(record.get('createdAt')) or subscribed_at
        return cls(
            id=str(record.get('id') or uuid.uuid4().hex),
            email=record['email'],
            status=record.get('status') or STATUS_ACTIVE,
            source=record.get('source') or DEFAULT_SOURCE,
            subscribed_at=subscribed_at,
            created_at=created_at,
            updated_at=parse_timestamp(record.get('updatedAt')) or created_at,
            unsubscribe_token=record.get('unsubscribeToken') or str(uuid.uuid4()),
            ip_address=record.get('ipAddress'),
            user_agent=record.get('userAgent'),
        )


@dataclass
class PagedRecords:
    records: List[Subscriber]
    total_count: int


@dataclass
class RegisterResult:
    outcome: str
    subscriber: Optional[Subscriber] = None


@dataclass
class UnsubscribeResult:
    outcome: str
    subscriber: Optional[Subscriber] = None


@dataclass
class PagedResult:
    subscribers: List[Subscriber]
    current_page: int
    per_page: int
    total_count: int

    @property
    def total_pages(self):
        return -(-self.total_count // self.per_page) if self.per_page else 0

    def to_dict(self):
        return {
            'subscribers': [s.to_public_dict() for s in self.subscribers],
            'pagination': {
                'current_page': self.current_page,
                'per_page': self.per_page,
                'total_count': self.total_count,
                'total_pages': self.total_pages,
            }
        }


@dataclass
class Stats:
    total_subscribers: int
    active_subscribers: int
    unsubscribed_count: int
    today_subscribers: int
    week_subscribers: int
    month_subscribers: int
    by_source: list = field(default_factory=list)

    def to_dict(self):
        return {
            'total_subscribers': self.total_subscribers,
            'active_subscribers': self.active_subscribers,
            'unsubscribed_count': self.unsubscribed_count,
            'today_subscribers': self.today_subscribers,
            'week_subscribers': self.week_subscribers,
            'month_subscribers': self.month_subscribers,
            'by_source': self.by_source,
        }


def validate_email(email):
    """Validate email format"""
    if not email or not isinstance(email, str):
        return False
    return EMAIL_REGEX.fullmatch(email) is not None
