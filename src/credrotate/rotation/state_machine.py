"""Per-account rotation state machine.

States:
- PENDING: request created, nothing done yet
- CONFIRMING: waiting on the operator (only when confirmation is required)
- APPLYING: secret obtained (set-new) and change applied to directory/platform
- VERIFYING: platform state re-read to confirm the change landed
- SUCCEEDED / FAILED / SKIPPED: terminal, exactly one RotationOutcome emitted

Per-account errors never escape run(); they become a FAILED outcome.
"""

import logging
import threading
from datetime import datetime, timezone
from typing import Callable, ContextManager, Optional

from ..exceptions import ErrorKind, InvalidTransition, RotationError
from ..logging_config import redact
from .confirmation import ConfirmationPort
from .models import RotationMode, RotationOutcome, RotationRequest, RotationState
from .platform import PlatformCredentialStore
from .secret_provider import SecretProvider

logger = logging.getLogger(__name__)

_ALLOWED_TRANSITIONS = {
    RotationState.PENDING: {RotationState.CONFIRMING, RotationState.APPLYING, RotationState.FAILED},
    RotationState.CONFIRMING: {RotationState.APPLYING, RotationState.SKIPPED, RotationState.FAILED},
    RotationState.APPLYING: {RotationState.VERIFYING, RotationState.FAILED},
    RotationState.VERIFYING: {RotationState.SUCCEEDED, RotationState.FAILED},
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RotationStateMachine:
    """Drives one RotationRequest to a terminal state.

    A machine is single-use: run() may be called once.

    Example:
        machine = RotationStateMachine(request, store, secret_provider=provider)
        outcome = machine.run()
    """

    def __init__(
        self,
        request: RotationRequest,
        store: PlatformCredentialStore,
        secret_provider: Optional[SecretProvider] = None,
        confirmation: Optional[ConfirmationPort] = None,
        interactive_lock: Optional[ContextManager] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """Initialize state machine.

        Args:
            request: Account, mode and confirmation flag
            store: Platform credential store used to apply and verify
            secret_provider: Required for set-new mode
            confirmation: Required when request.require_confirmation is set
            interactive_lock: Serializes operator prompts across workers
            clock: Timestamp source for outcomes
        """
        self.request = request
        self.store = store
        self.secret_provider = secret_provider
        self.confirmation = confirmation
        self.interactive_lock = interactive_lock or threading.Lock()
        self.clock = clock

        self.state = RotationState.PENDING
        self.history: list[tuple[RotationState, RotationState]] = []
        self.outcome: Optional[RotationOutcome] = None
        self._started_at: Optional[datetime] = None
        self._error_detail: Optional[str] = None

    @property
    def account_id(self) -> str:
        return self.request.account.identifier

    def _transition(self, new_state: RotationState) -> None:
        if new_state not in _ALLOWED_TRANSITIONS.get(self.state, set()):
            raise InvalidTransition(
                f"{self.account_id}: illegal transition {self.state.value} -> {new_state.value}"
            )
        logger.info(f"{self.account_id}: {self.state.value} -> {new_state.value}")
        self.history.append((self.state, new_state))
        self.state = new_state

    def _finish(
        self,
        state: RotationState,
        error: Optional[BaseException] = None,
        detail: Optional[str] = None,
    ) -> RotationOutcome:
        self._transition(state)

        error_kind = None
        manual_remediation = False
        if error is not None:
            error_kind = error.kind if isinstance(error, RotationError) else ErrorKind.UNEXPECTED
            manual_remediation = isinstance(error, RotationError) and error.manual_remediation
            detail = self._error_detail or redact(str(error)) or type(error).__name__

        self.outcome = RotationOutcome(
            account_id=self.account_id,
            state=state,
            started_at=self._started_at,
            finished_at=self.clock(),
            error_kind=error_kind,
            error_detail=detail,
            manual_remediation=manual_remediation,
        )

        if manual_remediation:
            logger.error(
                f"{self.account_id}: {error_kind.value}: {detail} - manual remediation required"
            )
        elif error_kind is not None:
            logger.warning(f"{self.account_id}: {error_kind.value}: {detail}")
        return self.outcome

    def _confirm(self) -> bool:
        if self.confirmation is None:
            raise RotationError("Confirmation required but no confirmation port configured")
        with self.interactive_lock:
            return self.confirmation.confirm(self.request.account, self.request.mode)

    def _apply(self) -> None:
        account = self.request.account
        mode = self.request.mode

        if mode != RotationMode.SET_NEW:
            self.store.apply(account, mode)
            return

        if self.secret_provider is None:
            raise RotationError("set-new mode requires a secret provider")

        with self.secret_provider.acquire(account, lock=self.interactive_lock) as secret:
            try:
                self.store.apply(account, mode, secret)
            except Exception as e:
                # Scrub while the secret is still registered for redaction
                self._error_detail = redact(str(e)) or type(e).__name__
                raise

    def run(self) -> RotationOutcome:
        """Drive the request to a terminal state and return its outcome."""
        if self.state != RotationState.PENDING or self.outcome is not None:
            raise InvalidTransition(f"{self.account_id}: rotation already ran")

        self._started_at = self.clock()
        try:
            if self.request.require_confirmation:
                self._transition(RotationState.CONFIRMING)
                if not self._confirm():
                    return self._finish(RotationState.SKIPPED, detail="declined by operator")

            self._transition(RotationState.APPLYING)
            applied_since = self.clock()
            self._apply()

            self._transition(RotationState.VERIFYING)
            self.store.verify(self.request.account, self.request.mode, since=applied_since)
            return self._finish(RotationState.SUCCEEDED)
        except InvalidTransition:
            raise
        except RotationError as e:
            return self._finish(RotationState.FAILED, error=e)
        except Exception as e:
            logger.error(f"{self.account_id}: unexpected error during rotation: {type(e).__name__}")
            return self._finish(RotationState.FAILED, error=e)
