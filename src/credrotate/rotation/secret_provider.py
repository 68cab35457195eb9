"""Secret acquisition and strength policy.

Secrets only exist inside SecretProvider.acquire(); the context manager wipes
the buffer on every exit path, including when the caller raises.
"""

import logging
import secrets
import string
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import ContextManager, Iterator, Mapping, Optional, Union

import click

from ..exceptions import EmptySecret, WeakSecret
from ..logging_config import register_secret, unregister_secret
from .models import ManagedAccount

logger = logging.getLogger(__name__)

DEFAULT_MIN_LENGTH = 8
DEFAULT_ALPHABET = string.ascii_letters + string.digits + "!#$%&*+-=?@^_"


class Secret:
    """Mutable holder for a secret value.

    The value is kept in a bytearray so it can be overwritten in place.
    repr/str never reveal it.
    """

    __slots__ = ("_buffer", "_wiped")

    def __init__(self, value: str):
        self._buffer = bytearray(value.encode("utf-8"))
        self._wiped = False

    def reveal(self) -> str:
        if self._wiped:
            raise ValueError("secret has been wiped")
        return self._buffer.decode("utf-8")

    @property
    def wiped(self) -> bool:
        return self._wiped

    def wipe(self) -> None:
        for i in range(len(self._buffer)):
            self._buffer[i] = 0
        self._buffer = bytearray()
        self._wiped = True

    def __repr__(self) -> str:
        return "Secret(***)"

    __str__ = __repr__


class SecretProvider(ABC):
    """Supplies the new password for an account in set-new mode."""

    interactive = False

    def __init__(self, min_length: int = DEFAULT_MIN_LENGTH):
        self.min_length = min_length

    @abstractmethod
    def _read(self, account: ManagedAccount) -> Optional[str]:
        """Return the raw candidate value for account."""

    def obtain(self, account: ManagedAccount) -> Secret:
        """Read and validate a secret for account.

        Raises:
            EmptySecret: value is blank
            WeakSecret: value is shorter than min_length
        """
        raw = self._read(account)
        if raw is None or not raw.strip():
            raise EmptySecret(f"No secret supplied for {account.identifier}")
        if len(raw) < self.min_length:
            raise WeakSecret(
                f"Secret for {account.identifier} has {len(raw)} characters, "
                f"minimum is {self.min_length}"
            )
        return Secret(raw)

    @contextmanager
    def acquire(
        self, account: ManagedAccount, lock: Optional[ContextManager] = None
    ) -> Iterator[Secret]:
        """Yield a validated secret and wipe it when the block exits.

        Args:
            account: Account the secret is for
            lock: Held while reading the value if this provider is interactive
        """
        if lock is not None and self.interactive:
            with lock:
                secret = self.obtain(account)
        else:
            secret = self.obtain(account)
        value = secret.reveal()
        register_secret(value)
        try:
            yield secret
        finally:
            secret.wipe()
            unregister_secret(value)
            del value
            logger.debug(f"Secret for {account.identifier} discarded")


class StaticSecretProvider(SecretProvider):
    """Injected value, either one for all accounts or a per-identifier mapping."""

    def __init__(
        self,
        value: Union[str, Mapping[str, str], None],
        min_length: int = DEFAULT_MIN_LENGTH,
    ):
        super().__init__(min_length)
        self._value = value

    def _read(self, account: ManagedAccount) -> Optional[str]:
        if isinstance(self._value, Mapping):
            return self._value.get(account.identifier)
        return self._value


class GeneratedSecretProvider(SecretProvider):
    """Generates a random password per account with the secrets CSPRNG."""

    def __init__(
        self,
        length: int = 24,
        alphabet: str = DEFAULT_ALPHABET,
        min_length: int = DEFAULT_MIN_LENGTH,
    ):
        super().__init__(min_length)
        self.length = length
        self.alphabet = alphabet

    def _read(self, account: ManagedAccount) -> Optional[str]:
        return "".join(secrets.choice(self.alphabet) for _ in range(self.length))


class PromptSecretProvider(SecretProvider):
    """Asks the operator for the new password, hidden and confirmed."""

    interactive = True

    def _read(self, account: ManagedAccount) -> Optional[str]:
        return click.prompt(
            f"New password for {account.identifier}",
            hide_input=True,
            confirmation_prompt=True,
            default="",
            show_default=False,
        )
