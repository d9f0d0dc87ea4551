"""
Remote Store (Supabase)
=======================

Talks to a hosted Postgres table through the Supabase REST (PostgREST) API.
Requires SUPABASE_URL and a service or anon key with access to the table.

Backend errors never escape in their own shape: a unique violation becomes
DuplicateKeyError, everything else StorageUnavailableError.
"""

import logging
import requests

from ..models import (
    STATUS_ACTIVE, DuplicateKeyError, NotFoundError, PagedRecords,
    StorageUnavailableError, Subscriber, format_timestamp,
)
from .base import check_page_args

logger = logging.getLogger(__name__)

# Postgres unique_violation
UNIQUE_VIOLATION = '23505'

# Rows per request when scanning; the server may cap it lower (max-rows)
SCAN_PAGE_SIZE = 1000


class RemoteAdapter:
    """Subscriber storage in a Supabase table"""

    def __init__(self, base_url, api_key, table='subscribers', timeout=10, session=None):
        if not base_url or not api_key:
            raise StorageUnavailableError('SUPABASE_URL and SUPABASE_KEY must be configured')
        self.endpoint = f"{base_url.rstrip('/')}/rest/v1/{table}"
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            'apikey': api_key,
            'Authorization': f'Bearer {api_key}',
            'Content-Type': 'application/json',
            'Accept': 'application/json',
        })

    def __repr__(self):
        return f"RemoteAdapter({self.endpoint!r})"

    # ===================
    # HTTP PRIMITIVES
    # ===================

    def _request(self, method, params=None, json=None, headers=None):
        try:
            resp = self.session.request(
                method, self.endpoint,
                params=params, json=json, headers=headers or {},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise StorageUnavailableError(f"Supabase {method} failed: {type(e).__name__}") from e

        if resp.status_code >= 400:
            code = ''
            try:
                body = resp.json()
                if isinstance(body, dict):
                    code = body.get('code') or ''
            except ValueError:
                pass
            if resp.status_code == 409 or code == UNIQUE_VIOLATION:
                raise DuplicateKeyError('Supabase rejected a duplicate row')
            logger.error(f"Supabase {method} returned {resp.status_code}: {resp.text[:500]}")
            raise StorageUnavailableError(f"Supabase {method} returned HTTP {resp.status_code}")
        return resp

    @staticmethod
    def _rows(resp):
        try:
            rows = resp.json()
        except ValueError as e:
            raise StorageUnavailableError('Supabase returned a non-JSON body') from e
        if not isinstance(rows, list):
            raise StorageUnavailableError('Supabase returned an unexpected payload')
        return rows

    @staticmethod
    def _total(resp):
        """Parse the total from a Content-Range header like ``0-9/42`` or ``*/0``"""
        content_range = resp.headers.get('Content-Range', '')
        total = content_range.rsplit('/', 1)[-1] if '/' in content_range else ''
        if not total.isdigit():
            raise StorageUnavailableError('Supabase response is missing an exact count')
        return int(total)

    def _find(self, column, value):
        resp = self._request('GET', params={column: f'eq.{value}', 'select': '*', 'limit': '1'})
        rows = self._rows(resp)
        return _parse(rows[0]) if rows else None

    # ===================
    # ADAPTER CONTRACT
    # ===================

    def find_by_email(self, email):
        return self._find('email', email)

    def find_by_token(self, token):
        if not token:
            return None
        return self._find('unsubscribe_token', token)

    def insert(self, subscriber):
        resp = self._request(
            'POST', json=subscriber.to_dict(),
            headers={'Prefer': 'return=representation'}
        )
        rows = self._rows(resp)
        return _parse(rows[0]) if rows else subscriber

    def update_status(self, email, status, updated_at):
        resp = self._request(
            'PATCH',
            params={'email': f'eq.{email}'},
            json={'status': status, 'updated_at': format_timestamp(updated_at)},
            headers={'Prefer': 'return=representation'}
        )
        rows = self._rows(resp)
        if not rows:
            raise NotFoundError(f"No subscriber with email {email}")
        return _parse(rows[0])

    def count(self, status=None, subscribed_since=None):
        params = {'select': 'id', 'limit': '1'}
        if status is not None:
            params['status'] = f'eq.{status}'
        if subscribed_since is not None:
            params['subscribed_at'] = f'gte.{format_timestamp(subscribed_since)}'
        resp = self._request('GET', params=params, headers={'Prefer': 'count=exact'})
        return self._total(resp)

    def list(self, page, page_size, status=None):
        offset = check_page_args(page, page_size)
        params = {
            'select': '*',
            'order': 'subscribed_at.desc',
            'offset': str(offset),
            'limit': str(page_size),
        }
        if status is not None:
            params['status'] = f'eq.{status}'
        resp = self._request('GET', params=params, headers={'Prefer': 'count=exact'})
        records = [_parse(r) for r in self._rows(resp)]
        return PagedRecords(records=records, total_count=self._total(resp))

    def _scan(self, select):
        """Yield every row for ``select``, paging until the exact count is reached"""
        offset = 0
        while True:
            resp = self._request('GET', params={
                'select': select,
                'order': 'id.asc',
                'offset': str(offset),
                'limit': str(SCAN_PAGE_SIZE),
            }, headers={'Prefer': 'count=exact'})
            rows = self._rows(resp)
            yield from rows
            offset += len(rows)
            if not rows or offset >= self._total(resp):
                return

    def count_by_source(self):
        # PostgREST has no GROUP BY without a view; aggregate the two columns locally
        totals = {}
        for row in self._scan('source,status'):
            entry = totals.setdefault(row.get('source') or '', {'count': 0, 'active_count': 0})
            entry['count'] += 1
            if row.get('status') == STATUS_ACTIVE:
                entry['active_count'] += 1
        return [
            {'source': source, **counts}
            for source, counts in sorted(totals.items(), key=lambda item: (-item[1]['count'], item[0]))
        ]


def _parse(row):
    try:
        return Subscriber.from_dict(row)
    except (KeyError, TypeError, ValueError) as e:
        raise StorageUnavailableError(f"Malformed subscriber row from Supabase: {e}") from e
