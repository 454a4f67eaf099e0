"""
Microsoft Graph directory client (app-only, client-credentials auth).

The sync engine only depends on four calls:
  list_users(page_token)       → UserPage(records, next_page_token)
  get_manager(external_id)     → user dict, or None when the user has no manager
  get_direct_reports(external) → list of user dicts ([] when none / unknown)
  get_profile(external_id)     → user dict, GraphNotFound if absent

Every HTTP call goes through the shared 'graph' circuit breaker and carries
GRAPH_REQUEST_TIMEOUT. A 429 is retried once after its Retry-After delay.
"""
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import msal
import requests

from greenbook.config import (
    GRAPH_API_URL, GRAPH_SCOPES, GRAPH_USER_FILTER, GRAPH_PAGE_SIZE,
    GRAPH_REQUEST_TIMEOUT, GRAPH_USER_FIELDS, GRAPH_RELATION_FIELDS,
    MICROSOFT_TENANT_ID, MICROSOFT_CLIENT_ID, MICROSOFT_CLIENT_SECRET,
)
from greenbook.sync.base import GreenbookError

logger = logging.getLogger('services.graph')

# Upper bound on a honoured Retry-After, seconds
MAX_RETRY_AFTER = 60


class GraphError(GreenbookError):
    """Graph returned an error response or no token could be acquired."""

    def __init__(self, message, status_code=None):
        self.status_code = status_code
        super().__init__(message)


class GraphNotFound(GraphError):
    """Graph answered 404 for the requested object."""


@dataclass
class UserPage:
    records: List[Dict[str, Any]] = field(default_factory=list)
    next_page_token: Optional[str] = None


def _retry_after_seconds(response):
    try:
        seconds = float(response.headers.get('Retry-After', 5))
    except (TypeError, ValueError):
        seconds = 5.0
    return min(max(seconds, 0.0), MAX_RETRY_AFTER)


class GraphClient:
    """Directory source backed by Microsoft Graph v1.0."""

    def __init__(self, tenant_id=None, client_id=None, client_secret=None,
                 base_url=GRAPH_API_URL, timeout=GRAPH_REQUEST_TIMEOUT,
                 page_size=GRAPH_PAGE_SIZE, user_filter=GRAPH_USER_FILTER,
                 http=None, msal_app=None, breaker=None):
        self.tenant_id = tenant_id or MICROSOFT_TENANT_ID
        self.client_id = client_id or MICROSOFT_CLIENT_ID
        self.client_secret = client_secret or MICROSOFT_CLIENT_SECRET
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.page_size = page_size
        self.user_filter = user_filter
        self.http = http or requests.Session()
        self._msal_app = msal_app
        self._breaker = breaker

    # ── Auth ──────────────────────────────────────────────────────────

    @property
    def msal_app(self):
        if self._msal_app is None:
            if not (self.tenant_id and self.client_id and self.client_secret):
                raise GraphError('Microsoft Graph credentials are not configured')
            self._msal_app = msal.ConfidentialClientApplication(
                client_id=self.client_id,
                client_credential=self.client_secret,
                authority=f'https://login.microsoftonline.com/{self.tenant_id}',
            )
        return self._msal_app

    def _access_token(self):
        # MSAL serves cached app tokens until they near expiry
        result = self.msal_app.acquire_token_for_client(scopes=GRAPH_SCOPES)
        token = (result or {}).get('access_token')
        if not token:
            detail = (result or {}).get('error_description') or (result or {}).get('error') or 'unknown error'
            raise GraphError(f'Token acquisition failed: {detail}')
        return token

    # ── HTTP ──────────────────────────────────────────────────────────

    @property
    def breaker(self):
        if self._breaker is None:
            from greenbook.services.circuit_breaker import get_breaker
            self._breaker = get_breaker('graph', failure_threshold=5, reset_timeout=120, ignore=(GraphNotFound,))
        return self._breaker

    def _get(self, url, params=None):
        return self.breaker.call(self._send, url, params)

    def _send(self, url, params):
        headers = {
            'Authorization': f'Bearer {self._access_token()}',
            'ConsistencyLevel': 'eventual',
        }
        response = self.http.get(url, headers=headers, params=params, timeout=self.timeout)
        if response.status_code == 429:
            wait = _retry_after_seconds(response)
            logger.warning("Graph throttled %s, retrying in %.1fs", url, wait)
            time.sleep(wait)
            response = self.http.get(url, headers=headers, params=params, timeout=self.timeout)

        if response.status_code == 404:
            raise GraphNotFound(f'Graph object not found: {url}', status_code=404)
        if response.status_code >= 400:
            raise GraphError(
                f'Graph request failed ({response.status_code}): {response.text[:200]}',
                status_code=response.status_code,
            )
        return response.json()

    # ── Directory source API ──────────────────────────────────────────

    def list_users(self, page_token=None):
        """
        One page of enabled member users.

        page_token is the @odata.nextLink of the previous page (None for the
        first page); Graph encodes the full query in it.
        """
        if page_token:
            payload = self._get(page_token)
        else:
            payload = self._get(f'{self.base_url}/users', params={
                '$select': ','.join(GRAPH_USER_FIELDS),
                '$filter': self.user_filter,
                '$top': self.page_size,
                '$count': 'true',
            })
        return UserPage(
            records=payload.get('value', []),
            next_page_token=payload.get('@odata.nextLink'),
        )

    def get_manager(self, external_id):
        try:
            return self._get(
                f'{self.base_url}/users/{external_id}/manager',
                params={'$select': ','.join(GRAPH_RELATION_FIELDS)},
            )
        except GraphNotFound:
            return None

    def get_direct_reports(self, external_id):
        reports = []
        url = f'{self.base_url}/users/{external_id}/directReports'
        params = {'$select': ','.join(GRAPH_RELATION_FIELDS)}
        try:
            while url:
                payload = self._get(url, params=params)
                reports.extend(payload.get('value', []))
                url = payload.get('@odata.nextLink')
                params = None
        except GraphNotFound:
            return []
        return reports

    def get_profile(self, external_id):
        return self._get(
            f'{self.base_url}/users/{external_id}',
            params={'$select': ','.join(GRAPH_USER_FIELDS)},
        )
