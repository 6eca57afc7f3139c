"""
CouchDB change-feed client.

Reads `/{db}/_changes` with `include_docs=true` in normal (non-continuous)
mode. Every transport problem is raised as ChangeSourceError so the sync
loop can leave its cursor untouched and retry the same position later.
"""
import logging
from dataclasses import dataclass, field
from typing import List, Optional
from urllib.parse import quote

import requests
from django.conf import settings

from .exceptions import ChangeSourceError

logger = logging.getLogger(__name__)


@dataclass
class ChangeRecord:
    """One entry of the change feed."""
    doc_id: str
    seq: str
    rev: Optional[str]
    doc: Optional[dict]
    deleted: bool = False


@dataclass
class ChangeBatch:
    """
    One page of the change feed.

    `last_seq` is the position to resume from after every change in the
    batch has been processed. `has_more` is true when the page was full
    or CouchDB reported pending changes.
    """
    changes: List[ChangeRecord] = field(default_factory=list)
    last_seq: str = '0'
    pending: int = 0
    has_more: bool = False


class CouchDbClient:
    """
    Thin client over the CouchDB HTTP API.

    Usage:
        with CouchDbClient.from_settings() as client:
            batch = client.fetch_changes(since='0', limit=100)
    """

    def __init__(self, host, database, username='', password='', timeout=30.0, session=None):
        self.host = host.rstrip('/')
        self.database = database
        self.timeout = timeout
        self.session = session or requests.Session()
        if username:
            self.session.auth = (username, password)
        self.session.headers.update({'Accept': 'application/json'})

    @classmethod
    def from_settings(cls, **overrides):
        options = {
            'host': settings.COUCHDB_HOST,
            'database': settings.COUCHDB_DATABASE,
            'username': settings.COUCHDB_USERNAME,
            'password': settings.COUCHDB_PASSWORD,
            'timeout': settings.COUCHDB_TIMEOUT,
        }
        options.update(overrides)
        return cls(**options)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def close(self):
        self.session.close()

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    def url(self, path=''):
        base = f'{self.host}/{self.database}'
        return f'{base}/{path.lstrip("/")}' if path else base

    def _get(self, path='', params=None, allow_404=False):
        url = self.url(path)
        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
        except requests.RequestException as e:
            raise ChangeSourceError(f'GET {url} failed: {e}') from e

        if allow_404 and response.status_code == 404:
            return None

        if not 200 <= response.status_code < 300:
            raise ChangeSourceError(
                f'GET {url} returned HTTP {response.status_code}: {response.text[:200]}'
            )

        try:
            return response.json()
        except ValueError as e:
            raise ChangeSourceError(f'GET {url} returned a non-JSON body') from e

    # ------------------------------------------------------------------
    # Database
    # ------------------------------------------------------------------

    def database_exists(self):
        return self._get(allow_404=True) is not None

    def get_database_info(self):
        """Database metadata (`doc_count`, `update_seq`, ...)."""
        return self._get()

    def get_document(self, doc_id):
        return self._get(quote(doc_id, safe=''), allow_404=True)

    # ------------------------------------------------------------------
    # Changes feed
    # ------------------------------------------------------------------

    def fetch_changes(self, since='0', limit=100):
        """
        Fetch the next page of changes after `since`.

        Args:
            since: CouchDB sequence to resume from ('0' = full history)
            limit: maximum number of changes to return

        Returns:
            ChangeBatch

        Raises:
            ChangeSourceError: transport failure or malformed response
        """
        body = self._get('_changes', params={
            'include_docs': 'true',
            'feed': 'normal',
            'since': since or '0',
            'limit': limit,
        })

        if not isinstance(body, dict) or not isinstance(body.get('results'), list):
            raise ChangeSourceError('_changes response has no "results" list')

        changes = [self._parse_change(row) for row in body['results']]
        pending = int(body.get('pending') or 0)
        last_seq = body.get('last_seq')
        if last_seq is None:
            last_seq = changes[-1].seq if changes else since

        logger.debug(
            'Fetched changes page',
            extra={
                'event': 'couchdb_changes_fetched',
                'since': str(since),
                'count': len(changes),
                'pending': pending,
            }
        )

        return ChangeBatch(
            changes=changes,
            last_seq=str(last_seq),
            pending=pending,
            has_more=pending > 0 or len(changes) >= limit,
        )

    @staticmethod
    def _parse_change(row):
        try:
            doc_id = row['id']
            seq = row['seq']
        except (KeyError, TypeError) as e:
            raise ChangeSourceError(f'malformed change row: {row!r}') from e

        doc = row.get('doc')
        rev = None
        if row.get('changes'):
            rev = row['changes'][0].get('rev')
        if rev is None and isinstance(doc, dict):
            rev = doc.get('_rev')

        return ChangeRecord(
            doc_id=doc_id,
            seq=str(seq),
            rev=rev,
            doc=doc,
            deleted=bool(row.get('deleted', False)),
        )
