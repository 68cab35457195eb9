"""Batch rotation orchestrator.

Enumerates accounts, drives each through a RotationStateMachine with failure
isolation and optional bounded concurrency, then decides whether to trigger
propagation once every account has reached a terminal state.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime
from typing import Callable, Optional

from ..exceptions import ConfigurationError, PropagationFailed
from .confirmation import ConfirmationPort
from .directory import AccountDirectory
from .models import (BatchSummary, PropagationStatus, RotationMode,
                     RotationOutcome, RotationRequest, RotationState)
from .platform import PlatformCredentialStore
from .propagation import PropagationTrigger
from .secret_provider import SecretProvider
from .state_machine import RotationStateMachine, utcnow

logger = logging.getLogger(__name__)

ABORTED_DETAIL = "aborted before processing"


class BatchOrchestrator:
    """Runs one rotation batch against one directory and one platform.

    Abort semantics: abort() stops new accounts from starting, lets in-flight
    accounts finish, records never-started accounts as SKIPPED and skips
    propagation.
    """

    def __init__(
        self,
        directory: AccountDirectory,
        store: PlatformCredentialStore,
        secret_provider: Optional[SecretProvider] = None,
        confirmation: Optional[ConfirmationPort] = None,
        propagation: Optional[PropagationTrigger] = None,
        max_concurrency: int = 1,
        clock: Callable[[], datetime] = utcnow,
    ):
        """Initialize orchestrator.

        Args:
            directory: Source of candidate accounts
            store: Applies and verifies credential changes
            secret_provider: Supplies new passwords in set-new mode
            confirmation: Answers per-account prompts when confirm_each is set
            propagation: Restarts dependent services after a successful batch
            max_concurrency: Worker count; 1 processes accounts sequentially
            clock: Timestamp source for outcomes
        """
        if max_concurrency < 1:
            raise ConfigurationError(f"max_concurrency must be >= 1, got {max_concurrency}")

        self.directory = directory
        self.store = store
        self.secret_provider = secret_provider
        self.confirmation = confirmation
        self.propagation = propagation
        self.max_concurrency = max_concurrency
        self.clock = clock

        self._abort = threading.Event()
        self._interactive_lock = threading.Lock()

    def abort(self) -> None:
        """Request an operator abort of the current run."""
        if not self._abort.is_set():
            logger.warning("Abort requested: no further accounts will be started")
        self._abort.set()

    @property
    def aborted(self) -> bool:
        return self._abort.is_set()

    def run(
        self,
        filter_pattern: Optional[str] = None,
        mode: RotationMode = RotationMode.ADOPT_EXISTING,
        confirm_each: bool = False,
        suppress_propagation: bool = False,
    ) -> BatchSummary:
        """Rotate every account matching filter_pattern.

        Args:
            filter_pattern: Glob matched against account identifiers
            mode: Rotation mode applied uniformly to the batch
            confirm_each: Ask the operator before each account
            suppress_propagation: Never trigger propagation

        Returns:
            BatchSummary with one outcome per matched account

        Raises:
            DirectoryUnavailable: directory could not be listed; nothing processed
            ConfigurationError: mode or confirmation needs a missing collaborator
        """
        self._abort.clear()
        mode = RotationMode(mode)

        accounts = self.directory.list(filter_pattern)
        if not accounts:
            logger.info("No accounts matched; nothing to rotate")
            summary = BatchSummary(mode=mode)
            self._log_summary(summary)
            return summary

        if mode == RotationMode.SET_NEW and self.secret_provider is None:
            raise ConfigurationError("set-new mode requires a secret provider")
        if confirm_each and self.confirmation is None:
            raise ConfigurationError("confirm_each requires a confirmation port")

        requests = [RotationRequest(account, mode, confirm_each) for account in accounts]
        logger.info(
            f"Starting {mode.value} rotation for {len(requests)} account(s) "
            f"(max_concurrency={self.max_concurrency})"
        )

        if self.max_concurrency == 1:
            outcomes = [self._process(request) for request in requests]
        else:
            outcomes = self._process_concurrently(requests)

        summary = BatchSummary(mode=mode, outcomes=outcomes, aborted=self.aborted)
        self._propagate(summary, suppress_propagation)
        self._log_summary(summary)
        return summary

    def _process(self, request: RotationRequest) -> RotationOutcome:
        if self.aborted:
            now = self.clock()
            logger.info(f"{request.account.identifier}: skipped, run aborted")
            return RotationOutcome(
                account_id=request.account.identifier,
                state=RotationState.SKIPPED,
                started_at=now,
                finished_at=now,
                error_detail=ABORTED_DETAIL,
            )

        machine = RotationStateMachine(
            request,
            self.store,
            secret_provider=self.secret_provider,
            confirmation=self.confirmation,
            interactive_lock=self._interactive_lock,
            clock=self.clock,
        )
        return machine.run()

    def _process_concurrently(self, requests: list[RotationRequest]) -> list[RotationOutcome]:
        outcomes: list[RotationOutcome] = []
        with ThreadPoolExecutor(
            max_workers=self.max_concurrency, thread_name_prefix="credrotate"
        ) as executor:
            futures = [executor.submit(self._process, request) for request in requests]
            for future in as_completed(futures):
                outcomes.append(future.result())
        # Executor exit is the barrier: every account is terminal past this point
        return outcomes

    def _propagate(self, summary: BatchSummary, suppress: bool) -> None:
        if summary.aborted:
            logger.warning("Run aborted; propagation skipped")
            return
        if suppress:
            logger.info("Propagation suppressed by operator")
            return
        if not summary.any_succeeded:
            logger.info("No account succeeded; propagation not needed")
            return
        if self.propagation is None:
            logger.warning("No propagation trigger configured; dependent services not restarted")
            return

        try:
            self.propagation.trigger()
        except PropagationFailed as e:
            summary.propagation_status = PropagationStatus.FAILED
            summary.propagation_warning = str(e)
            logger.warning(f"Propagation failed, rotations remain applied: {e}")
            return
        except Exception as e:
            summary.propagation_status = PropagationStatus.FAILED
            summary.propagation_warning = f"{type(e).__name__}: {e}"
            logger.warning(f"Propagation failed, rotations remain applied: {type(e).__name__}: {e}")
            return

        summary.propagation_status = PropagationStatus.SUCCEEDED
        logger.info("Propagation completed")

    def _log_summary(self, summary: BatchSummary) -> None:
        for outcome in summary.outcomes:
            if outcome.manual_remediation:
                logger.error(
                    f"MANUAL REMEDIATION REQUIRED: {outcome.account_id} "
                    f"({outcome.error_kind.value}): directory and platform disagree"
                )
            elif outcome.failed:
                logger.warning(f"FAILED: {outcome.account_id} ({outcome.error_kind.value})")

        counts = summary.counts()
        logger.info(
            f"Rotation run complete: succeeded={counts['succeeded']} "
            f"skipped={counts['skipped']} failed={counts['failed']} "
            f"manual_remediation_needed={counts['manual_remediation_needed']} "
            f"propagation={summary.propagation_status.value}"
        )
