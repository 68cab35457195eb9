"""Account directory: enumeration of managed accounts and password writes.

The directory is the source of truth for passwords. Listing is read-only;
writes go through the separate DirectoryWriter port, used only by the
platform credential store in set-new mode.
"""

import fnmatch
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Optional
from urllib.parse import quote

import requests
import yaml

from ..exceptions import DirectoryRejected, DirectoryUnavailable
from .models import ManagedAccount

logger = logging.getLogger(__name__)

MATCH_ALL = "*"


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO timestamp; naive values are taken as UTC."""
    if value is None or value == "":
        return None
    parsed = value if isinstance(value, datetime) else datetime.fromisoformat(str(value))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def account_from_dict(data: dict) -> ManagedAccount:
    """Build a ManagedAccount from an inventory or API record."""
    return ManagedAccount(
        identifier=str(data["identifier"]),
        status=str(data.get("status", "active")),
        last_rotated_at=parse_timestamp(data.get("last_rotated_at")),
    )


class AccountDirectory(ABC):
    """Read-only enumeration of candidate accounts."""

    @abstractmethod
    def _fetch(self) -> Iterable[ManagedAccount]:
        """Return every account known to the backing store.

        Raises:
            DirectoryUnavailable: if the store cannot be reached
        """

    def list(self, filter_pattern: Optional[str] = None) -> list[ManagedAccount]:
        """List accounts whose identifier matches a glob pattern.

        Matching is case-insensitive. Duplicate identifiers collapse to the
        first one seen. The result is sorted ascending by identifier.

        Args:
            filter_pattern: fnmatch-style glob; empty/None/"*" matches all

        Returns:
            Sorted, de-duplicated list of matching accounts
        """
        pattern = (filter_pattern or MATCH_ALL).casefold()
        seen: dict[str, ManagedAccount] = {}
        for account in self._fetch():
            if account.key in seen:
                logger.debug(f"Ignoring duplicate directory entry: {account.identifier}")
                continue
            if fnmatch.fnmatchcase(account.key, pattern):
                seen[account.key] = account

        accounts = sorted(seen.values(), key=lambda a: a.key)
        logger.info(f"Directory listing matched {len(accounts)} account(s) for filter '{pattern}'")
        return accounts


class DirectoryWriter(ABC):
    """Port for writing a new password to the directory."""

    @abstractmethod
    def set_password(self, identifier: str, secret: str) -> None:
        """Set the directory password for identifier.

        Raises:
            DirectoryRejected: if the write fails
        """


class StaticAccountDirectory(AccountDirectory):
    """In-memory directory for injected account lists."""

    def __init__(self, accounts: Iterable[ManagedAccount]):
        self._accounts = list(accounts)

    def _fetch(self) -> Iterable[ManagedAccount]:
        return list(self._accounts)


class FileAccountDirectory(AccountDirectory):
    """Directory backed by a YAML inventory exported by the operator.

    Expected layout:

        accounts:
          - identifier: CONTOSO\\svc-farm
            status: active
            last_rotated_at: 2026-01-31T09:00:00+00:00
    """

    def __init__(self, inventory_path: Path):
        self.inventory_path = Path(inventory_path)

    def _fetch(self) -> Iterable[ManagedAccount]:
        try:
            with open(self.inventory_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except OSError as e:
            raise DirectoryUnavailable(
                f"Cannot read account inventory {self.inventory_path}: {e}"
            ) from e
        except yaml.YAMLError as e:
            raise DirectoryUnavailable(
                f"Malformed account inventory {self.inventory_path}: {e}"
            ) from e

        records = data.get("accounts", []) if isinstance(data, dict) else []
        try:
            return [account_from_dict(record) for record in records]
        except (KeyError, TypeError, ValueError) as e:
            raise DirectoryUnavailable(
                f"Invalid account record in {self.inventory_path}: {e}"
            ) from e


class RestDirectoryClient(AccountDirectory, DirectoryWriter):
    """HTTP client for a directory service exposing managed accounts.

    Endpoints:
        GET  {base_url}/accounts                     -> [{identifier, status, last_rotated_at}]
        POST {base_url}/accounts/{identifier}/password  body {"password": ...}
    """

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        if token:
            self.session.headers["Authorization"] = f"Bearer {token}"

    def _account_url(self, identifier: str) -> str:
        return f"{self.base_url}/accounts/{quote(identifier, safe='')}"

    def _fetch(self) -> Iterable[ManagedAccount]:
        try:
            response = self.session.get(f"{self.base_url}/accounts", timeout=self.timeout)
            response.raise_for_status()
            records = response.json()
        except requests.RequestException as e:
            raise DirectoryUnavailable(f"Directory service unreachable: {e}") from e
        except ValueError as e:
            raise DirectoryUnavailable(f"Directory service returned invalid JSON: {e}") from e

        if isinstance(records, dict):
            records = records.get("accounts", [])
        try:
            return [account_from_dict(record) for record in records]
        except (KeyError, TypeError, ValueError) as e:
            raise DirectoryUnavailable(f"Invalid account record from directory: {e}") from e

    def set_password(self, identifier: str, secret: str) -> None:
        try:
            response = self.session.post(
                f"{self._account_url(identifier)}/password",
                json={"password": secret},
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.HTTPError as e:
            status = e.response.status_code if e.response is not None else "?"
            raise DirectoryRejected(
                f"Directory refused password change for {identifier} (HTTP {status})"
            ) from e
        except requests.RequestException as e:
            raise DirectoryRejected(
                f"Directory password change for {identifier} failed: {type(e).__name__}"
            ) from e
