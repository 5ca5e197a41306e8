"""
HTTP document store for a PostgREST-style hosted backend.

This store talks to the application's hosted database through its REST
interface (the shape exposed by PostgREST and Supabase):

* ``GET  {base_url}/rest/v1/{table}?id=eq.<id>&select=content`` reads one
  document;
* ``PATCH {base_url}/rest/v1/{table}?id=eq.<id>`` replaces its ``content``;
* ``POST {base_url}/rest/v1/rpc/{query_function}`` with ``{"marker": ...}``
  runs the marker search server side, where the content column can be
  searched as text.  The function must return rows with ``id``, ``size``,
  ``last_modified`` and optionally ``title``.

A simple rate limiter keeps the request rate under the configured number
of requests per minute, and a generic retry wrapper handles transient
network errors and server-side rate limiting responses (429 or 5xx).
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Dict, List, Optional

import requests

from ..utils.errors import NotFoundError, QueryError, StoreError, WriteError
from .base import DocumentStore

logger = logging.getLogger(__name__)

###############################################################################
# Rate limiting and retry utilities
###############################################################################

class RateLimiter:
    """
    Simple time-based rate limiter.  Ensures that no more than ``rpm``
    requests are dispatched per minute, across all worker threads.
    """

    def __init__(self, rpm: int = 600) -> None:
        self.rpm = max(1, rpm)
        self.interval = 60.0 / float(self.rpm)
        self._last = 0.0
        self._lock = threading.Lock()

    def wait(self, time_fn: Callable[[], float] = time.time, sleep_fn: Callable[[float], None] = time.sleep) -> None:
        with self._lock:
            now = time_fn()
            dt = now - self._last
            if dt < self.interval:
                sleep_fn(self.interval - dt)
            self._last = time_fn()


def with_retries(
    fn: Callable[[], requests.Response],
    *,
    max_attempts: int = 5,
    base_delay: float = 0.7,
    sleep_fn: Callable[[float], None] = time.sleep,
) -> requests.Response:
    """
    Execute a function returning a ``requests.Response``, retrying on
    transient HTTP errors.  Retries are attempted on status codes 429
    (too many requests) and 5xx server errors.  Backoff is exponential,
    unless the server sends ``Retry-After``.

    :param fn: A zero-argument callable that performs the HTTP request.
    :param max_attempts: Maximum number of attempts before giving up.
    :param base_delay: Base delay in seconds for exponential backoff.
    :return: The successful ``requests.Response``.
    :raises requests.HTTPError: if all attempts fail.
    """
    attempt = 0
    while True:
        try:
            resp = fn()
            resp.raise_for_status()
            return resp
        except requests.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            if status not in (429, 500, 502, 503, 504) or attempt >= max_attempts - 1:
                raise
            retry_after = e.response.headers.get("Retry-After")
            if retry_after:
                wait = float(retry_after)
            else:
                wait = base_delay * (2 ** attempt)
            sleep_fn(wait)
            attempt += 1
        except requests.RequestException:
            if attempt >= max_attempts - 1:
                raise
            sleep_fn(base_delay * (2 ** attempt))
            attempt += 1


def rest_headers(cfg: Dict[str, Any]) -> Dict[str, str]:
    """
    Construct the headers required by the REST backend.

    :param cfg: A configuration dictionary with the ``api_key``.
    """
    return {
        "apikey": cfg["api_key"],
        "Authorization": f"Bearer {cfg['api_key']}",
        "Content-Type": "application/json",
    }


###############################################################################
# Store
###############################################################################

class RestDocumentStore(DocumentStore):
    def __init__(self, cfg: Dict[str, Any], *, session: Optional[requests.Session] = None, sleep_fn: Callable[[float], None] = time.sleep) -> None:
        self.cfg = cfg
        self.base = f"{cfg['base_url'].rstrip('/')}/rest/v1"
        self.table = cfg.get("table", "reviews")
        self.query_function = cfg.get("query_function", "documents_containing_marker")
        self.timeout = cfg.get("timeout", 30)
        self.session = session or requests.Session()
        self._limiter = RateLimiter(int(cfg.get("rpm", 600)))
        self._sleep = sleep_fn

    def _request(self, method: str, url: str, *, extra_headers: Optional[Dict[str, str]] = None, **kwargs: Any) -> requests.Response:
        headers = {**rest_headers(self.cfg), **(extra_headers or {})}

        def do_request() -> requests.Response:
            self._limiter.wait(sleep_fn=self._sleep)
            return self.session.request(method, url, headers=headers, timeout=self.timeout, **kwargs)

        return with_retries(do_request, sleep_fn=self._sleep)

    def read_document(self, document_id: str) -> Any:
        try:
            resp = self._request(
                "GET",
                f"{self.base}/{self.table}",
                params={"id": f"eq.{document_id}", "select": "content"},
            )
            rows = resp.json()
        except (requests.RequestException, ValueError) as e:
            raise StoreError(f"Failed to fetch document {document_id}: {e}") from e
        if not rows:
            raise NotFoundError(f"Document {document_id} not found")
        return rows[0].get("content")

    def write_document(self, document_id: str, content: Any) -> None:
        try:
            resp = self._request(
                "PATCH",
                f"{self.base}/{self.table}",
                params={"id": f"eq.{document_id}"},
                json={"content": content},
                # Ask for the updated rows so a missing id is detected
                extra_headers={"Prefer": "return=representation"},
            )
            updated = resp.json()
        except requests.RequestException as e:
            detail = e.response.text if getattr(e, "response", None) is not None else str(e)
            raise WriteError(f"Failed to update document {document_id}: {detail}") from e
        except ValueError as e:
            raise WriteError(f"Failed to update document {document_id}: unreadable response ({resp.status_code})") from e
        if not updated:
            raise WriteError(f"Failed to update document {document_id}: not found")

    def query_ids_containing_marker(self, marker: str) -> List[Dict[str, Any]]:
        try:
            resp = self._request(
                "POST",
                f"{self.base}/rpc/{self.query_function}",
                json={"marker": marker},
            )
            rows = resp.json()
        except (requests.RequestException, ValueError) as e:
            raise QueryError(f"Candidate query {self.query_function} failed: {e}") from e
        logger.debug("Candidate query %s returned %d rows", self.query_function, len(rows))
        return [
            {
                "id": row.get("id"),
                "size": row.get("size") or 0,
                "last_modified": row.get("last_modified") or row.get("updated_at"),
                "title": row.get("title"),
            }
            for row in rows
        ]

    def close(self) -> None:
        self.session.close()
