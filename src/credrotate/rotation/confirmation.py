"""Operator confirmation port for per-account prompts."""

from abc import ABC, abstractmethod
from typing import Iterable, Mapping, Union

import click

from .models import ManagedAccount, RotationMode


class ConfirmationPort(ABC):
    """Asks whether an account should be rotated. Blocks until answered."""

    @abstractmethod
    def confirm(self, account: ManagedAccount, mode: RotationMode) -> bool:
        """Return True to proceed, False to skip the account."""


class ClickConfirmation(ConfirmationPort):
    """Interactive yes/no prompt on the terminal."""

    def confirm(self, account: ManagedAccount, mode: RotationMode) -> bool:
        return click.confirm(f"Rotate {account.identifier} ({mode.value})?", default=False)


class ScriptedConfirmation(ConfirmationPort):
    """Pre-recorded answers, keyed by identifier or consumed in order.

    Accounts missing from a mapping are declined; an exhausted sequence
    declines as well.
    """

    def __init__(self, answers: Union[Mapping[str, bool], Iterable[bool]]):
        if isinstance(answers, Mapping):
            self._by_account = dict(answers)
            self._sequence = None
        else:
            self._by_account = None
            self._sequence = iter(list(answers))
        self.asked: list[str] = []

    def confirm(self, account: ManagedAccount, mode: RotationMode) -> bool:
        self.asked.append(account.identifier)
        if self._by_account is not None:
            return bool(self._by_account.get(account.identifier, False))
        return bool(next(self._sequence, False))
