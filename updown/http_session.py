"""JSON-over-HTTPS access for the Polymarket REST APIs and the macro calendar.

Gamma, Data-API, CLOB midpoint and the economic calendar are all read-only
GETs that return JSON. ``get_json`` is the single entry point; every
failure it can produce (transport, HTTP status, non-JSON body) surfaces as
``ApiError`` so collaborators skip one lookup instead of aborting a cycle.
"""
from __future__ import annotations

import logging
import threading

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

log = logging.getLogger(__name__)

USER_AGENT = "updown/1.0"
DEFAULT_TIMEOUT = 15
RETRY_TOTAL = 3
RETRY_BACKOFF_S = 0.5
# Gamma and Data-API rate limit with 429; Cloudflare fronts them with 52x.
RETRY_STATUSES = (429, 500, 502, 503, 504, 520, 522, 524)


class ApiError(requests.RequestException):
    """A JSON lookup that produced no usable document."""

    def __init__(self, url: str, detail: str, status: int | None = None):
        super().__init__(f"{url}: {detail}")
        self.url = url
        self.status = status


def build_session(retries: int = RETRY_TOTAL, user_agent: str = USER_AGENT) -> requests.Session:
    """Session that retries idempotent lookups on resets and throttling.

    Status codes are left for ``get_json`` to map, so an exhausted retry
    budget still yields the last response rather than a urllib3 error.
    """
    retry = Retry(
        total=retries,
        backoff_factor=RETRY_BACKOFF_S,
        status_forcelist=RETRY_STATUSES,
        allowed_methods=frozenset({"GET"}),
        respect_retry_after_header=True,
        raise_on_status=False,
    )
    adapter = HTTPAdapter(max_retries=retry)
    session = requests.Session()
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    session.headers.update({"User-Agent": user_agent, "Accept": "application/json"})
    return session


_session: requests.Session | None = None
_session_lock = threading.Lock()


def get_session() -> requests.Session:
    global _session
    with _session_lock:
        if _session is None:
            _session = build_session()
            log.info("API session ready (%d retries on %s)", RETRY_TOTAL,
                     ",".join(str(s) for s in RETRY_STATUSES))
        return _session


def get_json(url: str, params: dict | None = None, timeout: float = DEFAULT_TIMEOUT,
             session: requests.Session | None = None):
    """GET ``url`` and decode its JSON body, raising ``ApiError`` on any failure."""
    try:
        resp = (session or get_session()).get(url, params=params, timeout=timeout)
    except requests.RequestException as exc:
        raise ApiError(url, f"{type(exc).__name__}: {exc}") from exc
    if resp.status_code >= 400:
        raise ApiError(url, f"HTTP {resp.status_code} {resp.reason or ''}".rstrip(),
                       status=resp.status_code)
    try:
        return resp.json()
    except ValueError as exc:
        raise ApiError(url, f"non-JSON body ({resp.headers.get('Content-Type', 'unknown')})",
                       status=resp.status_code) from exc
