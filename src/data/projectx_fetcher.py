"""
ProjectX gateway fill source (TopStepX, AlphaTicks): implements FillSource over HTTP.

Auth: POST /api/Auth/loginKey {userName, apiKey} -> session token (Bearer).
Fills: POST /api/Trade/search {accountId, startTimestamp, endTimestamp}.
Responses are either a bare list or an envelope ({trades|executions|data|results}).
One instance per sync run; close() releases the HTTP session.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from data.fetcher import FetchResult, FillSourceError
from data.ingest import normalize_fills

logger = logging.getLogger("recon.projectx")

SERVICE_BASE_URLS = {
    "topstepx": "https://api.topstepx.com",
    "alphaticks": "https://api.alphaticks.projectx.com",
}
LOGIN_PATH = "/api/Auth/loginKey"
SEARCH_PATH = "/api/Trade/search"
ENVELOPE_KEYS = ("trades", "executions", "data", "results")
DEFAULT_TIMEOUT = 15.0


def _iso(ts: datetime) -> str:
    return ts.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _build_session(max_retries: int) -> requests.Session:
    session = requests.Session()
    retry_strategy = Retry(
        total=max_retries,
        backoff_factor=1,
        status_forcelist=[408, 429, 500, 502, 503, 504],
        allowed_methods=["GET", "POST"],
    )
    adapter = HTTPAdapter(max_retries=retry_strategy)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    session.headers.update({"Accept": "application/json", "Content-Type": "application/json"})
    return session


def extract_records(payload: Any) -> list[Any]:
    """Pull the fill list out of a search response. Raises FillSourceError."""
    if isinstance(payload, list):
        return payload
    if not isinstance(payload, dict):
        raise FillSourceError(f"Unexpected response type: {type(payload).__name__}")
    error_code = payload.get("errorCode")
    if error_code not in (None, 0):
        raise FillSourceError(payload.get("errorMessage") or f"Trade search failed: errorCode={error_code}")
    for name in ENVELOPE_KEYS:
        if isinstance(payload.get(name), list):
            return payload[name]
    raise FillSourceError(f"Invalid response format, keys: {sorted(payload)}")


class ProjectXFillSource:
    """
    Fetch fills from a ProjectX gateway.

    Credentials via constructor (typically from ConnectionConfig, sourced
    from PROJECTX_USERNAME / PROJECTX_API_KEY).
    """

    def __init__(
        self,
        username: str,
        api_key: str,
        *,
        service: str = "topstepx",
        base_url: str = "",
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = 3,
        session: requests.Session | None = None,
    ) -> None:
        if not username or not api_key:
            raise ValueError(
                "ProjectX username and API key are required. "
                "Set PROJECTX_USERNAME and PROJECTX_API_KEY environment variables."
            )
        self._username = username
        self._api_key = api_key
        self._base_url = (base_url or SERVICE_BASE_URLS.get(service, SERVICE_BASE_URLS["topstepx"])).rstrip("/")
        self._timeout = timeout
        self._session = session or _build_session(max_retries)
        self._token: str | None = None

    @property
    def base_url(self) -> str:
        return self._base_url

    def _post(self, path: str, body: dict[str, Any]) -> Any:
        url = f"{self._base_url}{path}"
        headers = {"Authorization": f"Bearer {self._token}"} if self._token else {}
        try:
            response = self._session.post(url, json=body, headers=headers, timeout=self._timeout)
        except requests.RequestException as exc:
            raise FillSourceError(f"Request to {path} failed: {exc}") from exc
        if response.status_code >= 400:
            raise FillSourceError(f"{path} returned HTTP {response.status_code}: {response.text[:200]}")
        try:
            return response.json()
        except ValueError as exc:
            raise FillSourceError(f"{path} returned non-JSON body") from exc

    def authenticate(self) -> str:
        """Exchange username + API key for a session token (cached per instance)."""
        if self._token:
            return self._token
        data = self._post(LOGIN_PATH, {"userName": self._username, "apiKey": self._api_key})
        if not isinstance(data, dict):
            raise FillSourceError("Authentication response is not an object")
        token = data.get("token")
        if data.get("errorCode") not in (None, 0) or data.get("success") is False or not token:
            message = data.get("errorMessage") or f"errorCode={data.get('errorCode')}"
            raise FillSourceError(f"Authentication failed: {message}")
        self._token = token
        logger.info("Authenticated with ProjectX gateway %s", self._base_url)
        return token

    def fetch_fills(self, account_id: str, start: datetime, end: datetime) -> FetchResult:
        self.authenticate()
        body = {
            "accountId": int(account_id) if account_id.isdigit() else account_id,
            "startTimestamp": _iso(start),
            "endTimestamp": _iso(end),
        }
        records = extract_records(self._post(SEARCH_PATH, body))
        fills, skipped = normalize_fills(records, account_id)
        logger.info("Fetched %d fills (%d raw) for account %s", len(fills), len(records), account_id)
        return FetchResult(
            fills=fills,
            account_id=account_id,
            start=start,
            end=end,
            raw_count=len(records),
            skipped_records=skipped,
        )

    def close(self) -> None:
        self._session.close()

    def __enter__(self) -> "ProjectXFillSource":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()
