"""
Hosted object storage gateway.

Uploads supporting documents under
``{bucket}/{identity id}/{problem statement id}/{epoch ms}-{file name}``.
Existing objects are never overwritten (``x-upsert: false``); a clash is
reported as a StorageError like any other upload failure.
"""

from __future__ import annotations

import logging
import time

import requests

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT = 30
_CACHE_CONTROL = "3600"


class StorageError(Exception):
    """Upload refused or failed."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def build_object_path(identity_id: str, problem_statement_id: str, file_name: str,
                      now_ms: int | None = None) -> str:
    now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
    return f"{identity_id}/{problem_statement_id}/{now_ms}-{file_name}"


class StorageGateway:
    """Object storage client (``{BACKEND_URL}/storage/v1``).

    Pass a mock `session` in tests to intercept HTTP calls.
    """

    def __init__(
        self,
        base_url: str | None,
        api_key: str | None,
        bucket: str,
        *,
        session: requests.Session | None = None,
        timeout: int = _DEFAULT_TIMEOUT,
    ) -> None:
        self.base_url = (base_url or "").rstrip("/")
        self.api_key = api_key or ""
        self.bucket = bucket
        self.timeout = timeout
        self._session = session

    @property
    def session(self) -> requests.Session:
        if self._session is None:
            self._session = requests.Session()
        return self._session

    def upload(self, object_path: str, content: bytes, *, content_type: str | None,
               access_token: str | None) -> str:
        """Upload ``content`` to ``object_path``; returns the stored path."""
        if not self.base_url or not self.api_key:
            raise StorageError("Storage backend is not configured (BACKEND_URL / BACKEND_PUBLIC_KEY)")

        url = f"{self.base_url}/storage/v1/object/{self.bucket}/{object_path}"
        headers = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {access_token or self.api_key}",
            "Content-Type": content_type or "application/octet-stream",
            "cache-control": f"max-age={_CACHE_CONTROL}",
            "x-upsert": "false",
        }
        try:
            resp = self.session.post(url, data=content, headers=headers, timeout=self.timeout)
        except requests.RequestException as exc:
            logger.warning("Storage upload failed path=%s error=%s", object_path, exc)
            raise StorageError(str(exc)[:500]) from exc

        if not resp.ok:
            logger.warning("Storage upload rejected path=%s status=%d", object_path, resp.status_code)
            raise StorageError(_error_message(resp), status_code=resp.status_code)
        return object_path


def _error_message(resp: requests.Response) -> str:
    """Storage error bodies are usually ``{"message": ...}``; anything else falls back to text."""
    try:
        body = resp.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        for key in ("message", "error"):
            if body.get(key):
                return str(body[key])
    return resp.text[:500] or f"HTTP {resp.status_code}"
