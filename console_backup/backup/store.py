"""
Row store access for backups.

The backup pipeline only reads from the store (list/probe/list collections);
create/get/update/delete are exposed for collaborators such as the audit
reporter.

Supports:
- AppwriteRowStore: Appwrite TablesDB REST API
"""

import json
from typing import Any, Dict, List, Optional

import requests


class RowStoreError(Exception):
    """Raised when a row store operation fails."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RowStore:
    """
    Interface of the document database as seen by the backup pipeline.

    Rows are plain dicts; store metadata fields are prefixed with '$'.
    """

    def list_rows(self, database_id: str, collection_id: str) -> List[Dict[str, Any]]:
        """Return every row of a collection (implementations paginate internally)."""
        raise NotImplementedError

    def probe(self, database_id: str, collection_id: str):
        """Raise RowStoreError if the collection cannot be read."""
        raise NotImplementedError

    def list_collections(self, database_id: str) -> List[str]:
        """Return the identifiers of all collections in a database."""
        raise NotImplementedError

    def get_row(self, database_id: str, collection_id: str, row_id: str) -> Dict[str, Any]:
        raise NotImplementedError

    def create_row(self, database_id: str, collection_id: str, data: Dict[str, Any],
                   row_id: str = 'unique()') -> Dict[str, Any]:
        raise NotImplementedError

    def update_row(self, database_id: str, collection_id: str, row_id: str,
                   data: Dict[str, Any]) -> Dict[str, Any]:
        raise NotImplementedError

    def delete_row(self, database_id: str, collection_id: str, row_id: str):
        raise NotImplementedError


class AppwriteRowStore(RowStore):
    """
    Row store backed by the Appwrite TablesDB REST API.

    Every request carries the project id and server API key headers.
    Listing is paginated with limit/cursorAfter queries until a short page
    is returned.
    """

    def __init__(
        self,
        endpoint: str,
        project_id: str,
        api_key: Optional[str] = None,
        timeout: float = 30,
        page_size: int = 100,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize Appwrite row store.

        Args:
            endpoint: Appwrite API endpoint (e.g. https://cloud.appwrite.io/v1)
            project_id: Appwrite project ID
            api_key: Server API key (optional, but required to read protected tables)
            timeout: Per-request timeout in seconds
            page_size: Rows requested per page when listing
            session: Optional requests session (injected in tests)
        """
        if not project_id:
            raise ValueError('Appwrite project ID is required (set NEXT_PUBLIC_APPWRITE_PROJECT_ID)')

        self.endpoint = endpoint.rstrip('/')
        self.timeout = timeout
        self.page_size = page_size
        self.session = session or requests.Session()
        self.session.headers.update({
            'Content-Type': 'application/json',
            'X-Appwrite-Project': project_id,
        })
        if api_key:
            self.session.headers['X-Appwrite-Key'] = api_key

    def _request(self, method: str, path: str, params=None, body=None) -> Dict[str, Any]:
        """
        Perform an API request and return the decoded JSON body.

        Raises:
            RowStoreError: On transport errors or non-2xx responses
        """
        url = f"{self.endpoint}{path}"

        try:
            response = self.session.request(
                method,
                url,
                params=params,
                data=json.dumps(body) if body is not None else None,
                timeout=self.timeout
            )
        except requests.RequestException as e:
            raise RowStoreError(f"Request to {path} failed: {e}")

        if response.status_code >= 400:
            try:
                message = response.json().get('message') or response.reason
            except ValueError:
                message = response.text or response.reason
            raise RowStoreError(
                f"Appwrite error ({response.status_code}): {message}",
                status_code=response.status_code
            )

        if response.status_code == 204 or not response.content:
            return {}

        try:
            return response.json()
        except ValueError as e:
            raise RowStoreError(f"Invalid JSON response from {path}: {e}")

    @staticmethod
    def _query(method: str, *values) -> str:
        return json.dumps({'method': method, 'values': list(values)})

    def _rows_path(self, database_id: str, collection_id: str) -> str:
        return f"/tablesdb/{database_id}/tables/{collection_id}/rows"

    def list_rows(self, database_id: str, collection_id: str) -> List[Dict[str, Any]]:
        rows = []
        cursor = None

        while True:
            queries = [self._query('limit', self.page_size)]
            if cursor:
                queries.append(self._query('cursorAfter', cursor))

            page = self._request(
                'GET',
                self._rows_path(database_id, collection_id),
                params={'queries[]': queries}
            )
            batch = page.get('rows') or []
            rows.extend(batch)

            if len(batch) < self.page_size:
                break
            cursor = batch[-1].get('$id')
            if not cursor:
                break

        return rows

    def probe(self, database_id: str, collection_id: str):
        self._request(
            'GET',
            self._rows_path(database_id, collection_id),
            params={'queries[]': [self._query('limit', 1)]}
        )

    def list_collections(self, database_id: str) -> List[str]:
        collection_ids = []
        cursor = None

        while True:
            queries = [self._query('limit', self.page_size)]
            if cursor:
                queries.append(self._query('cursorAfter', cursor))

            page = self._request('GET', f"/tablesdb/{database_id}/tables",
                                 params={'queries[]': queries})
            batch = page.get('tables') or []
            collection_ids.extend(table['$id'] for table in batch if table.get('$id'))

            if len(batch) < self.page_size:
                break
            cursor = batch[-1].get('$id')
            if not cursor:
                break

        return collection_ids

    def get_row(self, database_id: str, collection_id: str, row_id: str) -> Dict[str, Any]:
        return self._request('GET', f"{self._rows_path(database_id, collection_id)}/{row_id}")

    def create_row(self, database_id: str, collection_id: str, data: Dict[str, Any],
                   row_id: str = 'unique()') -> Dict[str, Any]:
        return self._request(
            'POST',
            self._rows_path(database_id, collection_id),
            body={'rowId': row_id, 'data': data}
        )

    def update_row(self, database_id: str, collection_id: str, row_id: str,
                   data: Dict[str, Any]) -> Dict[str, Any]:
        return self._request(
            'PATCH',
            f"{self._rows_path(database_id, collection_id)}/{row_id}",
            body={'data': data}
        )

    def delete_row(self, database_id: str, collection_id: str, row_id: str):
        self._request('DELETE', f"{self._rows_path(database_id, collection_id)}/{row_id}")


def create_row_store(config) -> AppwriteRowStore:
    """
    Build the row store from configuration.

    Args:
        config: Mapping with APPWRITE_* keys

    Raises:
        ValueError: If the project ID is not configured
    """
    return AppwriteRowStore(
        endpoint=config['APPWRITE_ENDPOINT'],
        project_id=config.get('APPWRITE_PROJECT_ID'),
        api_key=config.get('APPWRITE_API_KEY'),
        timeout=config.get('APPWRITE_TIMEOUT', 30),
        page_size=config.get('APPWRITE_PAGE_SIZE', 100)
    )
