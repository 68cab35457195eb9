"""Tests for the batch rotation orchestrator.

Covers failure isolation, propagation gating, abort handling, concurrent
ordering and the end-to-end operator scenarios.
"""

import json
import logging
import threading
import time
from datetime import datetime, timezone

import pytest

from credrotate.exceptions import (ConfigurationError, DirectoryUnavailable,
                                   ErrorKind)
from credrotate.rotation import (BatchOrchestrator, PlatformCredentialStore,
                                 PropagationStatus, RotationMode,
                                 RotationState, ScriptedConfirmation,
                                 StaticAccountDirectory, StaticSecretProvider)
from credrotate.rotation.orchestrator import ABORTED_DETAIL

from .fakes import (TEST_SECRET, FakeDirectoryWriter, FakePlatformClient,
                    OverlapTracker, RecordingPropagation, SnapshotPropagation,
                    TrackingConfirmation, TrackingSecretProvider,
                    UnavailableDirectory, accounts)


def by_id(summary):
    return {o.account_id: o for o in summary.outcomes}


class TestScenarios:
    """Operator-facing scenarios."""

    def test_no_matching_accounts(self, make_orchestrator, propagation):
        """Zero matches is an empty summary, exit 0, no propagation."""
        summary = make_orchestrator().run("*", RotationMode.ADOPT_EXISTING)

        assert summary.is_empty
        assert summary.outcomes == []
        assert summary.exit_code() == 0
        assert propagation.calls == 0

    def test_adopt_existing_all_succeed(self, make_orchestrator, platform, propagation):
        """Three adopt-existing rotations succeed and propagate once."""
        summary = make_orchestrator("svc-1", "svc-2", "svc-3").run(
            "*", RotationMode.ADOPT_EXISTING
        )

        assert [o.state for o in summary.outcomes] == [RotationState.SUCCEEDED] * 3
        assert platform.adopted == ["svc-1", "svc-2", "svc-3"]
        assert propagation.calls == 1
        assert summary.propagation_status == PropagationStatus.SUCCEEDED
        assert summary.exit_code() == 0

    def test_adopt_existing_with_earlier_directory_change(self, writer, propagation):
        """Platform reports the out-of-band change time, which predates the run."""
        platform = FakePlatformClient(
            reported_changed_at=datetime(2026, 1, 1, tzinfo=timezone.utc)
        )
        orchestrator = BatchOrchestrator(
            directory=StaticAccountDirectory(accounts("svc-1", "svc-2")),
            store=PlatformCredentialStore(platform, writer),
            propagation=propagation,
        )

        summary = orchestrator.run("*", RotationMode.ADOPT_EXISTING)

        assert [o.state for o in summary.outcomes] == [RotationState.SUCCEEDED] * 2
        assert propagation.calls == 1
        assert summary.exit_code() == 0

    def test_weak_secret_fails_only_that_account(self, make_orchestrator, platform):
        """A 3-character secret under an 8-character policy fails svc-1 only."""
        provider = StaticSecretProvider(
            {"svc-1": "abc", "svc-2": TEST_SECRET, "svc-3": TEST_SECRET}, min_length=8
        )
        summary = make_orchestrator("svc-1", "svc-2", "svc-3", secret_provider=provider).run(
            "*", RotationMode.SET_NEW
        )

        outcomes = by_id(summary)
        assert outcomes["svc-1"].state == RotationState.FAILED
        assert outcomes["svc-1"].error_kind == ErrorKind.WEAK_SECRET
        assert outcomes["svc-2"].succeeded
        assert outcomes["svc-3"].succeeded
        assert "svc-1" not in platform.credentials
        assert summary.exit_code() == 1

    def test_partial_apply_flags_manual_remediation(self, make_orchestrator, writer, propagation):
        """Directory accepts, platform refuses: PartialApply needing follow-up."""
        platform = FakePlatformClient(reject_set={"svc-2"})
        store = PlatformCredentialStore(platform, writer)
        summary = make_orchestrator("svc-1", "svc-2", "svc-3", store=store).run(
            "*", RotationMode.SET_NEW
        )

        failed = by_id(summary)["svc-2"]
        assert failed.state == RotationState.FAILED
        assert failed.error_kind == ErrorKind.PARTIAL_APPLY
        assert failed.manual_remediation is True
        assert "svc-2" in writer.passwords
        assert summary.counts()["manual_remediation_needed"] == 1
        assert summary.exit_code() == 1

    def test_operator_declines_account(self, make_orchestrator, platform):
        """Declined account is skipped and never applied."""
        confirmation = ScriptedConfirmation({"svc-1": True, "svc-2": True, "svc-3": False})
        summary = make_orchestrator(
            "svc-1", "svc-2", "svc-3", confirmation=confirmation
        ).run("*", RotationMode.ADOPT_EXISTING, confirm_each=True)

        assert by_id(summary)["svc-3"].state == RotationState.SKIPPED
        assert "svc-3" not in platform.applied
        assert confirmation.asked == ["svc-1", "svc-2", "svc-3"]
        assert summary.exit_code() == 0

    def test_propagation_failure_keeps_rotations(self, make_orchestrator):
        """Propagation failure is a warning: outcomes stay succeeded, exit 3."""
        propagation = RecordingPropagation(fail=True)
        summary = make_orchestrator("svc-1", "svc-2", propagation=propagation).run(
            "*", RotationMode.ADOPT_EXISTING
        )

        assert all(o.succeeded for o in summary.outcomes)
        assert summary.propagation_status == PropagationStatus.FAILED
        assert "SPTimerV4" in summary.propagation_warning
        assert summary.exit_code() == 3


class TestFailureIsolation:
    """One account's failure never stops the batch."""

    def test_failure_does_not_halt_later_accounts(self, writer, propagation):
        platform = FakePlatformClient(reject_adopt={"svc-a"})
        orchestrator = BatchOrchestrator(
            directory=StaticAccountDirectory(accounts("svc-a", "svc-b", "svc-c")),
            store=PlatformCredentialStore(platform, writer),
            propagation=propagation,
        )
        summary = orchestrator.run("*", RotationMode.ADOPT_EXISTING)

        outcomes = by_id(summary)
        assert outcomes["svc-a"].error_kind == ErrorKind.PLATFORM_REJECTED
        assert outcomes["svc-b"].succeeded
        assert outcomes["svc-c"].succeeded
        assert propagation.calls == 1

    def test_unexpected_error_is_contained(self, writer, propagation):
        """Errors outside the taxonomy still become a failed outcome."""

        def explode(identifier):
            if identifier == "svc-b":
                raise RuntimeError("socket closed")

        platform = FakePlatformClient(on_apply=explode)
        orchestrator = BatchOrchestrator(
            directory=StaticAccountDirectory(accounts("svc-a", "svc-b", "svc-c")),
            store=PlatformCredentialStore(platform, writer),
            propagation=propagation,
        )
        summary = orchestrator.run("*", RotationMode.ADOPT_EXISTING)

        assert by_id(summary)["svc-b"].error_kind == ErrorKind.UNEXPECTED
        assert summary.succeeded_count == 2

    def test_one_outcome_per_account(self, make_orchestrator):
        identifiers = [f"svc-{i}" for i in range(7)]
        summary = make_orchestrator(*identifiers, *identifiers[:2]).run(
            "*", RotationMode.ADOPT_EXISTING
        )

        assert sorted(o.account_id for o in summary.outcomes) == sorted(identifiers)

    def test_directory_unavailable_is_fatal(self, store, propagation, platform):
        orchestrator = BatchOrchestrator(
            directory=UnavailableDirectory(), store=store, propagation=propagation
        )

        with pytest.raises(DirectoryUnavailable):
            orchestrator.run("*", RotationMode.ADOPT_EXISTING)

        assert platform.applied == []
        assert propagation.calls == 0


class TestPropagationGating:
    """Propagation fires at most once and only when warranted."""

    def test_suppressed(self, make_orchestrator, propagation):
        summary = make_orchestrator("svc-1").run(
            "*", RotationMode.ADOPT_EXISTING, suppress_propagation=True
        )

        assert summary.any_succeeded
        assert propagation.calls == 0
        assert summary.propagation_status == PropagationStatus.NOT_ATTEMPTED

    def test_not_fired_when_nothing_succeeded(self, writer, propagation):
        platform = FakePlatformClient(reject_adopt={"svc-1", "svc-2"})
        orchestrator = BatchOrchestrator(
            directory=StaticAccountDirectory(accounts("svc-1", "svc-2")),
            store=PlatformCredentialStore(platform, writer),
            propagation=propagation,
        )
        summary = orchestrator.run("*", RotationMode.ADOPT_EXISTING)

        assert not summary.any_succeeded
        assert propagation.calls == 0

    def test_not_fired_when_all_skipped(self, make_orchestrator, propagation):
        summary = make_orchestrator(
            "svc-1", confirmation=ScriptedConfirmation([False])
        ).run("*", RotationMode.ADOPT_EXISTING, confirm_each=True)

        assert summary.skipped_count == 1
        assert propagation.calls == 0
        assert summary.exit_code() == 0

    def test_no_trigger_configured(self, make_orchestrator):
        summary = make_orchestrator("svc-1", propagation=None).run(
            "*", RotationMode.ADOPT_EXISTING
        )

        assert summary.propagation_status == PropagationStatus.NOT_ATTEMPTED
        assert summary.exit_code() == 0


class TestAbort:
    """Operator abort stops new work and skips propagation."""

    def test_abort_mid_run(self, writer, propagation):
        holder = {}

        def abort_after_first(identifier):
            holder["orchestrator"].abort()

        platform = FakePlatformClient(on_apply=abort_after_first)
        orchestrator = BatchOrchestrator(
            directory=StaticAccountDirectory(accounts("svc-1", "svc-2", "svc-3")),
            store=PlatformCredentialStore(platform, writer),
            propagation=propagation,
        )
        holder["orchestrator"] = orchestrator

        summary = orchestrator.run("*", RotationMode.ADOPT_EXISTING)

        outcomes = by_id(summary)
        assert outcomes["svc-1"].succeeded  # in-flight account finishes
        assert outcomes["svc-2"].state == RotationState.SKIPPED
        assert outcomes["svc-2"].error_detail == ABORTED_DETAIL
        assert outcomes["svc-3"].state == RotationState.SKIPPED
        assert platform.adopted == ["svc-1"]
        assert summary.aborted is True
        assert propagation.calls == 0
        assert summary.exit_code() == 1


class TestConcurrency:
    """Bounded-concurrency mode."""

    def test_concurrent_outcomes_sorted(self, make_orchestrator, platform, propagation):
        identifiers = [f"svc-{i:02d}" for i in reversed(range(12))]
        summary = make_orchestrator(*identifiers, max_concurrency=4).run(
            "*", RotationMode.SET_NEW
        )

        assert [o.account_id for o in summary.outcomes] == sorted(identifiers)
        assert summary.succeeded_count == 12
        assert sorted(platform.credentials) == sorted(identifiers)
        assert propagation.calls == 1

    def test_prompts_serialized_across_workers(self, store):
        tracker = OverlapTracker()
        orchestrator = BatchOrchestrator(
            directory=StaticAccountDirectory(accounts(*[f"svc-{i}" for i in range(8)])),
            store=store,
            secret_provider=TrackingSecretProvider(tracker),
            confirmation=TrackingConfirmation(tracker),
            max_concurrency=4,
        )

        summary = orchestrator.run("*", RotationMode.SET_NEW, confirm_each=True)

        assert summary.succeeded_count == 8
        assert tracker.calls == 16  # one confirmation and one secret prompt per account
        assert tracker.max_active == 1

    def test_abort_skips_queued_accounts(self, writer, propagation):
        holder = {}
        in_flight = threading.Barrier(2)

        def abort_when_both_workers_busy(identifier):
            holder["orchestrator"].abort()
            in_flight.wait(timeout=5)

        platform = FakePlatformClient(on_apply=abort_when_both_workers_busy)
        orchestrator = BatchOrchestrator(
            directory=StaticAccountDirectory(accounts(*[f"svc-{i}" for i in range(1, 7)])),
            store=PlatformCredentialStore(platform, writer),
            propagation=propagation,
            max_concurrency=2,
        )
        holder["orchestrator"] = orchestrator

        summary = orchestrator.run("*", RotationMode.ADOPT_EXISTING)

        outcomes = by_id(summary)
        assert outcomes["svc-1"].succeeded
        assert outcomes["svc-2"].succeeded
        for identifier in ("svc-3", "svc-4", "svc-5", "svc-6"):
            assert outcomes[identifier].state == RotationState.SKIPPED
            assert outcomes[identifier].error_detail == ABORTED_DETAIL
        assert sorted(platform.adopted) == ["svc-1", "svc-2"]
        assert summary.aborted is True
        assert propagation.calls == 0
        assert summary.exit_code() == 1

    def test_propagation_waits_for_every_account(self, writer):
        platform = FakePlatformClient(on_apply=lambda identifier: time.sleep(0.01))
        propagation = SnapshotPropagation(platform)
        identifiers = [f"svc-{i:02d}" for i in range(10)]
        orchestrator = BatchOrchestrator(
            directory=StaticAccountDirectory(accounts(*identifiers)),
            store=PlatformCredentialStore(platform, writer),
            propagation=propagation,
            max_concurrency=3,
        )

        summary = orchestrator.run("*", RotationMode.ADOPT_EXISTING)

        assert summary.propagation_status == PropagationStatus.SUCCEEDED
        assert propagation.applied_at_trigger == identifiers

    def test_invalid_concurrency(self, store):
        with pytest.raises(ConfigurationError):
            BatchOrchestrator(
                directory=StaticAccountDirectory([]), store=store, max_concurrency=0
            )


class TestConfigurationChecks:
    def test_set_new_requires_secret_provider(self, make_orchestrator):
        orchestrator = make_orchestrator("svc-1", secret_provider=None)

        with pytest.raises(ConfigurationError):
            orchestrator.run("*", RotationMode.SET_NEW)

    def test_confirm_each_requires_port(self, make_orchestrator):
        with pytest.raises(ConfigurationError):
            make_orchestrator("svc-1").run("*", RotationMode.ADOPT_EXISTING, confirm_each=True)

    def test_mode_accepts_string_value(self, make_orchestrator):
        summary = make_orchestrator("svc-1").run("*", "adopt-existing")

        assert summary.mode == RotationMode.ADOPT_EXISTING


class TestSecretHygiene:
    """Secret values never appear in logs or outcome records."""

    def test_secret_not_in_logs_or_report(self, caplog, writer):
        caplog.set_level(logging.DEBUG)
        platform = FakePlatformClient(reject_set={"svc-2"}, echo_secret=True)
        orchestrator = BatchOrchestrator(
            directory=StaticAccountDirectory(accounts("svc-1", "svc-2", "svc-3")),
            store=PlatformCredentialStore(platform, writer),
            secret_provider=StaticSecretProvider(TEST_SECRET),
            propagation=RecordingPropagation(),
        )

        summary = orchestrator.run("*", RotationMode.SET_NEW)

        assert by_id(summary)["svc-2"].error_kind == ErrorKind.PARTIAL_APPLY
        assert TEST_SECRET not in caplog.text
        assert TEST_SECRET not in json.dumps(summary.to_dict())
        assert all(TEST_SECRET not in repr(o) for o in summary.outcomes)

    def test_summary_line_logged(self, caplog, make_orchestrator):
        caplog.set_level(logging.INFO)
        make_orchestrator("svc-1", "svc-2").run("*", RotationMode.ADOPT_EXISTING)

        assert (
            "succeeded=2 skipped=0 failed=0 manual_remediation_needed=0" in caplog.text
        )
