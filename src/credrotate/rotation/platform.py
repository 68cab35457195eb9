"""Platform credential store.

Applies a credential change to the platform's managed-account registry and
verifies the result. The directory and platform writes are not transactional:
when the directory accepts a new password but the platform does not, the
store reports PartialApply rather than guessing at a rollback.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional
from urllib.parse import quote

import requests

from ..exceptions import (DirectoryRejected, PartialApply, PlatformRejected,
                          VerificationFailed)
from .directory import DirectoryWriter, parse_timestamp
from .models import ManagedAccount, RotationMode
from .secret_provider import Secret

logger = logging.getLogger(__name__)

DEFAULT_VERIFICATION_SKEW_SECONDS = 300.0


@dataclass(frozen=True)
class PlatformCredentialState:
    """Non-secret view of the platform's stored credential for one account."""

    identifier: str
    in_sync: bool  # Platform credential matches the directory
    last_changed_at: Optional[datetime] = None


class PlatformClient(ABC):
    """Port for the platform's managed-account registry."""

    @abstractmethod
    def sync_from_directory(self, identifier: str) -> None:
        """Make the platform adopt the directory's current password.

        Raises:
            PlatformRejected: if the platform refuses
        """

    @abstractmethod
    def set_credential(self, identifier: str, secret: str) -> None:
        """Store a new password in the platform.

        Raises:
            PlatformRejected: if the platform refuses
        """

    @abstractmethod
    def read_state(self, identifier: str) -> PlatformCredentialState:
        """Read the platform's current credential state."""


class RestPlatformClient(PlatformClient):
    """HTTP client for the platform's managed-account API.

    Endpoints:
        POST {base_url}/managed-accounts/{identifier}/adopt
        POST {base_url}/managed-accounts/{identifier}/credential  body {"password": ...}
        GET  {base_url}/managed-accounts/{identifier}  -> {in_sync, last_changed_at}
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
        return f"{self.base_url}/managed-accounts/{quote(identifier, safe='')}"

    def _post(self, url: str, identifier: str, action: str, payload: Optional[dict] = None) -> None:
        try:
            response = self.session.post(url, json=payload or {}, timeout=self.timeout)
            response.raise_for_status()
        except requests.HTTPError as e:
            status = e.response.status_code if e.response is not None else "?"
            raise PlatformRejected(
                f"Platform refused {action} for {identifier} (HTTP {status})"
            ) from e
        except requests.RequestException as e:
            raise PlatformRejected(
                f"Platform {action} for {identifier} failed: {type(e).__name__}"
            ) from e

    def sync_from_directory(self, identifier: str) -> None:
        self._post(f"{self._account_url(identifier)}/adopt", identifier, "adopt")

    def set_credential(self, identifier: str, secret: str) -> None:
        self._post(
            f"{self._account_url(identifier)}/credential",
            identifier,
            "credential update",
            {"password": secret},
        )

    def read_state(self, identifier: str) -> PlatformCredentialState:
        response = self.session.get(self._account_url(identifier), timeout=self.timeout)
        response.raise_for_status()
        data = response.json()
        return PlatformCredentialState(
            identifier=identifier,
            in_sync=bool(data.get("in_sync", False)),
            last_changed_at=parse_timestamp(data.get("last_changed_at")),
        )


class PlatformCredentialStore:
    """Applies and verifies credential changes for one platform instance.

    Example:
        store = PlatformCredentialStore(platform_client, directory_writer)
        store.apply(account, RotationMode.SET_NEW, secret)
        store.verify(account, RotationMode.SET_NEW, since=started)
    """

    def __init__(
        self,
        platform: PlatformClient,
        directory: Optional[DirectoryWriter] = None,
        verification_skew_seconds: float = DEFAULT_VERIFICATION_SKEW_SECONDS,
    ):
        """Initialize store.

        Args:
            platform: Platform registry client
            directory: Directory writer; required for set-new mode
            verification_skew_seconds: Tolerated clock difference between this
                host and the platform when checking set-new change times
        """
        self.platform = platform
        self.directory = directory
        self.verification_skew = timedelta(seconds=verification_skew_seconds)

    def apply(
        self,
        account: ManagedAccount,
        mode: RotationMode,
        secret: Optional[Secret] = None,
    ) -> None:
        """Apply a credential change for account.

        Raises:
            PlatformRejected: platform refused (adopt-existing)
            DirectoryRejected: directory write failed; platform untouched
            PartialApply: directory changed but platform write failed
        """
        if mode == RotationMode.ADOPT_EXISTING:
            self._adopt_existing(account)
        elif mode == RotationMode.SET_NEW:
            if secret is None:
                raise ValueError("set-new mode requires a secret")
            self._set_new(account, secret)
        else:
            raise ValueError(f"Unknown rotation mode: {mode}")

    def _adopt_existing(self, account: ManagedAccount) -> None:
        self.platform.sync_from_directory(account.identifier)
        logger.debug(f"Platform adopted directory password for {account.identifier}")

    def _set_new(self, account: ManagedAccount, secret: Secret) -> None:
        if self.directory is None:
            raise DirectoryRejected(f"No directory writer configured for {account.identifier}")

        self.directory.set_password(account.identifier, secret.reveal())
        logger.debug(f"Directory password updated for {account.identifier}")

        try:
            self.platform.set_credential(account.identifier, secret.reveal())
        except Exception as e:
            # Directory already holds the new password; any platform error is a partial apply
            logger.error(
                f"Directory updated but platform rejected credential for "
                f"{account.identifier}: manual remediation required"
            )
            raise PartialApply(
                f"Directory password changed but platform update failed: {e}", cause=e
            ) from e

    def verify(self, account: ManagedAccount, mode: RotationMode, since: datetime) -> None:
        """Confirm the platform reflects the change applied after `since`.

        Adopt-existing only requires the platform to be in sync, since the
        directory password was changed out of band before the run. Set-new
        also rejects a change time earlier than `since` minus the skew
        tolerance.

        Raises:
            VerificationFailed: state unreadable, out of sync, or stale
        """
        try:
            state = self.platform.read_state(account.identifier)
        except Exception as e:
            raise VerificationFailed(
                f"Could not read platform state for {account.identifier}: {type(e).__name__}"
            ) from e

        if not state.in_sync:
            raise VerificationFailed(
                f"Platform credential for {account.identifier} does not match directory"
            )
        if mode != RotationMode.SET_NEW or state.last_changed_at is None:
            return
        if state.last_changed_at < since - self.verification_skew:
            raise VerificationFailed(
                f"Platform credential for {account.identifier} was last changed "
                f"{state.last_changed_at.isoformat()}, before this {mode.value} rotation"
            )
