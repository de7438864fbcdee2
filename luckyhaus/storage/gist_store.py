from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any, Dict, Mapping, Optional

import requests

from ..config import BackupStoreSettings
from ..schemas import LedgerDocument
from ..types import Found, NotFound, ReadResult, Unavailable, WriteResult
from .base import StorageBackend

logger = logging.getLogger("luckyhaus.storage.backup")

GIST_DESCRIPTION = "LuckyHaus Lottery Data Storage"
USER_AGENT = "LuckyHaus-Lottery"


class GistLedgerStore(StorageBackend):
    """Backup store: the ledger serialized as one JSON file inside a GitHub Gist.

    The gist is created on the first write when no id is configured and is
    updated in place afterwards. Versions are not compared here; the backup is
    a best-effort replica of whatever the writer last stored.
    """

    name = "backup"

    def __init__(self, settings: BackupStoreSettings, session: Optional[requests.Session] = None) -> None:
        self._settings = settings
        self._gist_id = settings.gist_id
        self._session = session or requests.Session()
        self._create_lock = threading.Lock()

    @property
    def gist_id(self) -> Optional[str]:
        return self._gist_id

    @property
    def gist_url(self) -> Optional[str]:
        if not self._gist_id:
            return None
        return f"https://gist.github.com/{self._gist_id}"

    async def get(self) -> ReadResult:
        if not self._gist_id:
            return NotFound()
        try:
            return await asyncio.to_thread(self._get_sync)
        except requests.RequestException as exc:
            logger.warning("Backup gist read failed: %s", exc)
            return Unavailable(f"gist request failed: {exc}")
        except ValueError as exc:
            logger.error("Backup gist holds an unreadable ledger document: %s", exc)
            return Unavailable(f"corrupt document: {exc}")

    async def put(self, document: LedgerDocument, expected_version: Optional[int] = None) -> WriteResult:
        try:
            return await asyncio.to_thread(self._put_sync, document)
        except requests.RequestException as exc:
            logger.warning("Backup gist write failed: %s", exc)
            return WriteResult.failure(f"gist request failed: {exc}")
        except (KeyError, ValueError) as exc:
            logger.warning("Backup gist returned an unexpected response: %s", exc)
            return WriteResult.failure(f"unexpected gist response: {exc}")

    # ------------------------------------------------------------------ #
    # Internal helpers
    # ------------------------------------------------------------------ #

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"token {self._settings.github_token}",
            "Accept": "application/vnd.github+json",
            "User-Agent": USER_AGENT,
        }

    def _gist_endpoint(self) -> str:
        return f"{self._settings.api_url}/gists/{self._gist_id}"

    def _get_sync(self) -> ReadResult:
        resp = self._session.get(
            self._gist_endpoint(), headers=self._headers(), timeout=self._settings.timeout_seconds
        )
        if resp.status_code == 404:
            return NotFound()
        resp.raise_for_status()
        data = resp.json()
        if not isinstance(data, Mapping):
            raise ValueError("gist API returned non-object payload")

        entry = (data.get("files") or {}).get(self._settings.filename)
        if not entry:
            return NotFound()
        content = self._file_content(entry)
        if not content:
            return NotFound()
        return Found(LedgerDocument.from_json(content))

    def _file_content(self, entry: Mapping[str, Any]) -> Optional[str]:
        # large files are truncated in the gist response and must be fetched raw
        if entry.get("truncated") and entry.get("raw_url"):
            resp = self._session.get(
                entry["raw_url"], headers=self._headers(), timeout=self._settings.timeout_seconds
            )
            resp.raise_for_status()
            return resp.text
        return entry.get("content")

    def _body(self, document: LedgerDocument) -> Dict[str, Any]:
        return {
            "description": GIST_DESCRIPTION,
            "files": {self._settings.filename: {"content": document.to_json()}},
        }

    def _put_sync(self, document: LedgerDocument) -> WriteResult:
        body = self._body(document)
        with self._create_lock:
            if not self._gist_id:
                return self._create_sync(body)

        resp = self._session.patch(
            self._gist_endpoint(),
            json=body,
            headers=self._headers(),
            timeout=self._settings.timeout_seconds,
        )
        resp.raise_for_status()
        return WriteResult.success()

    def _create_sync(self, body: Dict[str, Any]) -> WriteResult:
        resp = self._session.post(
            f"{self._settings.api_url}/gists",
            json={**body, "public": False},
            headers=self._headers(),
            timeout=self._settings.timeout_seconds,
        )
        resp.raise_for_status()
        self._gist_id = str(resp.json()["id"])
        logger.warning(
            "Created backup gist %s; set LOTTERY_GIST_ID=%s to reuse it after a restart",
            self._gist_id,
            self._gist_id,
        )
        return WriteResult.success()
