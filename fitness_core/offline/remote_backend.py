# =============================================================================
# fitness_core/offline/remote_backend.py
# Remote Backend Adapters for Outbox Delivery
# =============================================================================
"""
Remote backends translate one outbox entry into one remote call.

- SupabaseBackend: create/update -> upsert, delete -> delete().eq("id", ...)
- RestBackend: create -> POST /{table}, update -> PATCH /{table}/{id},
  delete -> DELETE /{table}/{id}; any 2xx is success, as is 409 on
  create and 404 on delete

Every failure is raised as a RemoteSyncError subclass so the sync processor
can record it on the entry.
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional
import logging

import requests

from fitness_core.errors import RemoteSyncError, RemoteTimeoutError
from fitness_core.offline.models import OutboxEntry, OutboxOperation

logger = logging.getLogger(__name__)


class RemoteBackend(ABC):
    """Applies outbox entries to a remote service."""

    name: str = "remote"

    @abstractmethod
    def apply(self, entry: OutboxEntry) -> None:
        """
        Deliver one entry.

        Returns normally on success; raises RemoteSyncError (or a subclass)
        on any failure.
        """

    def close(self) -> None:
        """Release network resources."""


class SupabaseBackend(RemoteBackend):
    """
    Outbox delivery through a Supabase client.

    Usage:
        backend = SupabaseBackend.from_credentials(url, key)
        backend.apply(entry)
    """

    name = "supabase"

    def __init__(self, client: Any, table_mapping: Optional[Dict[str, str]] = None):
        """
        Args:
            client: supabase.Client (or any object with the same table API)
            table_mapping: Local table name -> remote table name overrides
        """
        self.client = client
        self.table_mapping = table_mapping or {}

    @classmethod
    def from_credentials(cls, url: str, key: str, **kwargs) -> SupabaseBackend:
        from supabase import create_client
        return cls(create_client(url, key), **kwargs)

    def apply(self, entry: OutboxEntry) -> None:
        table = self.table_mapping.get(entry.table, entry.table)
        try:
            if entry.operation == OutboxOperation.DELETE:
                self.client.table(table).delete().eq("id", entry.record_id).execute()
            else:
                self.client.table(table).upsert(entry.payload).execute()
        except Exception as e:
            raise RemoteSyncError(
                f"Supabase {entry.operation.value} on {table} failed: {e}",
                table=table,
                operation=entry.operation.value,
            ) from e


# Status meaning "this entry was already applied" per operation
ALREADY_APPLIED = {
    OutboxOperation.CREATE: 409,
    OutboxOperation.DELETE: 404,
}


class RestBackend(RemoteBackend):
    """
    Outbox delivery to a plain REST API using a requests session.

    An entry may be sent again after a timeout while the first call still
    lands, so 409 on create and 404 on delete count as delivered.
    """

    name = "rest"

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: float = 30,
        headers: Optional[Dict[str, str]] = None,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

        # Set default headers
        self.session.headers.update({"Content-Type": "application/json"})
        if headers:
            self.session.headers.update(headers)

        # Add API key to headers if provided
        if api_key:
            self.session.headers["Authorization"] = f"Bearer {api_key}"

    def _request_for(self, entry: OutboxEntry):
        if entry.operation == OutboxOperation.CREATE:
            return "POST", f"{self.base_url}/{entry.table}", entry.payload
        if entry.operation == OutboxOperation.UPDATE:
            return "PATCH", f"{self.base_url}/{entry.table}/{entry.record_id}", entry.payload
        return "DELETE", f"{self.base_url}/{entry.table}/{entry.record_id}", None

    def apply(self, entry: OutboxEntry) -> None:
        method, url, body = self._request_for(entry)
        try:
            response = self.session.request(
                method=method,
                url=url,
                json=body,
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.exceptions.Timeout as e:
            raise RemoteTimeoutError(
                f"{method} {url} timed out",
                timeout_seconds=self.timeout,
                table=entry.table,
                operation=entry.operation.value,
            ) from e
        except requests.exceptions.HTTPError as e:
            status_code = e.response.status_code if e.response is not None else None
            if status_code == ALREADY_APPLIED.get(entry.operation):
                # A retried create or delete whose first attempt already landed
                logger.info(f"{method} {url} returned {status_code}, treating as delivered")
                return
            raise RemoteSyncError(
                f"{method} {url} rejected: {e}",
                table=entry.table,
                operation=entry.operation.value,
                status_code=status_code,
            ) from e
        except requests.exceptions.RequestException as e:
            raise RemoteSyncError(
                f"{method} {url} failed: {e}",
                table=entry.table,
                operation=entry.operation.value,
            ) from e

    def close(self) -> None:
        self.session.close()


def create_backend(config) -> Optional[RemoteBackend]:
    """
    Build the backend described by an OfflineConfig.

    Supabase wins when both are configured; None means local-only mode.
    """
    if config.supabase_url and config.supabase_key:
        logger.info("Using Supabase backend for sync")
        return SupabaseBackend.from_credentials(config.supabase_url, config.supabase_key)
    if config.rest_base_url:
        logger.info(f"Using REST backend for sync: {config.rest_base_url}")
        return RestBackend(
            config.rest_base_url,
            api_key=config.rest_api_key,
            timeout=config.remote_timeout_seconds,
        )
    logger.info("No remote backend configured, running local-only")
    return None
