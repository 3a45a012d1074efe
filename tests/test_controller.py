"""
Unit tests for pveup.core.run.controller.

Drives the run controller against the in-memory fake host and validates
branch selection, gating, failure handling and re-run behaviour.
"""

from __future__ import annotations

from pathlib import Path

import httpx
import pytest

from pveup.core.errors import ExitCode
from pveup.core.gate import AutoApproveGate, ScriptedGate
from pveup.core.models import OutcomeKind, Version
from pveup.core.pipeline import BRANCH_STEPS, Branch, Pipeline
from pveup.core.recovery import FailureCategory
from pveup.core.run.models import RunEventType, RunPhase

KEYRING = "usr/share/keyrings/proxmox-archive-keyring.gpg"


def _run(controller):
    events = list(controller.execute())
    return events, controller.get_result()


def _tampered_transport() -> httpx.MockTransport:
    return httpx.MockTransport(lambda request: httpx.Response(200, content=b"tampered"))


def _snapshot(root: Path) -> dict[str, str]:
    apt = root / "etc/apt"
    return {
        str(p.relative_to(root)): p.read_text() for p in sorted(apt.rglob("*")) if p.is_file()
    }


# ===========================================================================
# Full upgrade (Branch B)
# ===========================================================================


class TestFullUpgrade:
    """A supported 8.4 host with enough disk upgrades end to end."""

    def test_completes_all_ten_steps_in_order(self, fake_host, make_controller) -> None:
        events, result = _run(make_controller(fake_host))

        assert result.phase == RunPhase.COMPLETED
        assert result.exit_code == ExitCode.SUCCESS
        assert result.branch == "B"
        assert result.report.step_names == list(BRANCH_STEPS[Branch.FULL_UPGRADE])
        assert len(result.report.entries) == 10
        assert events[0].event_type == RunEventType.RUN_STARTED
        assert events[-1].event_type == RunEventType.RUN_COMPLETED

    def test_reaches_target_release(self, fake_host, make_controller, sysroot) -> None:
        _, result = _run(make_controller(fake_host))

        assert fake_host.version == Version(9, 0, 3)
        assert "proxmox-kernel-6.14" in fake_host.installed
        assert "linux-image-amd64" in fake_host.removals
        assert (sysroot / KEYRING).exists()
        assert "trixie" in (sysroot / "etc/apt/sources.list").read_text()
        assert result.reboot_required is True

    def test_backup_confirmation_is_gated(self, fake_host, make_controller) -> None:
        gate = AutoApproveGate()
        _run(make_controller(fake_host, gate=gate))

        assert "Have you completed all necessary backups?" in gate.prompts

    def test_backup_reminder_recorded_as_warning(self, fake_host, make_controller) -> None:
        _, result = _run(make_controller(fake_host))

        outcome = result.report.outcome_for("backup-confirmation")
        assert outcome.kind == OutcomeKind.SUCCESS_WITH_WARNINGS
        assert "vzdump" in outcome.message

    def test_branch_selected_event_lists_steps(self, fake_host, make_controller) -> None:
        events, _ = _run(make_controller(fake_host))

        selected = [e for e in events if e.event_type == RunEventType.BRANCH_SELECTED]
        assert len(selected) == 1
        assert selected[0].data["steps"] == list(BRANCH_STEPS[Branch.FULL_UPGRADE])


# ===========================================================================
# Verify / repair (Branch A)
# ===========================================================================


class TestVerifyRepair:
    """A host already on the target major only gets repair and verification."""

    @pytest.fixture
    def upgraded_host(self, make_fake):
        fake = make_fake(version=Version(9, 0, 3), kernel="6.14.8-2-pve")
        fake.kernels.append("6.14.8-2-pve")
        return fake

    def test_never_runs_dist_upgrade(self, upgraded_host, make_controller) -> None:
        _, result = _run(make_controller(upgraded_host))

        assert result.phase == RunPhase.COMPLETED
        assert result.branch == "A"
        assert result.report.step_names == ["fix-boot-config", "cleanup", "verify"]
        assert upgraded_host.dist_upgrades == 0

    def test_asks_before_reverifying(self, upgraded_host, make_controller) -> None:
        gate = AutoApproveGate()
        _run(make_controller(upgraded_host, gate=gate))

        assert "already running Proxmox VE 9.x" in gate.prompts[0]

    def test_no_reboot_needed_when_target_kernel_runs(
        self, upgraded_host, make_controller
    ) -> None:
        _, result = _run(make_controller(upgraded_host))

        assert result.reboot_required is False
        assert result.report.outcome_for("verify").kind == OutcomeKind.SUCCESS


# ===========================================================================
# Precondition failures
# ===========================================================================


class TestPreconditionFailures:
    """FAIL classifications end the run with exit code 3."""

    @pytest.mark.parametrize("version", [Version(7, 4, 0), Version(10, 0, 0), None])
    def test_unsupported_version_fails_before_any_step(
        self, make_fake, make_controller, version
    ) -> None:
        fake = make_fake(version=version)
        events, result = _run(make_controller(fake))

        assert result.phase == RunPhase.FAILED
        assert result.exit_code == ExitCode.PRECONDITION_FAILED
        assert result.report.entries == []
        assert result.branch is None
        assert fake.dist_upgrades == 0
        assert fake.installs == []
        assert not any(e.event_type == RunEventType.STEP_STARTED for e in events)

    def test_not_root_fails(self, make_fake, make_controller) -> None:
        _, result = _run(make_controller(make_fake(is_root=False)))

        assert result.exit_code == ExitCode.PRECONDITION_FAILED
        assert "root" in result.error

    def test_low_disk_fails_before_backup_confirmation(
        self, make_fake, make_controller
    ) -> None:
        fake = make_fake(free_disk_gb=2)
        gate = AutoApproveGate()
        _, result = _run(make_controller(fake, gate=gate))

        assert result.phase == RunPhase.FAILED
        assert result.exit_code == ExitCode.PRECONDITION_FAILED
        assert result.failed_step == "requirements"
        assert "backup-confirmation" not in result.report.step_names
        assert "Have you completed all necessary backups?" not in gate.prompts
        assert result.report.outcome_for("requirements").kind == OutcomeKind.FATAL
        assert "tmux" not in fake.installs

    def test_low_disk_guidance_is_precondition(self, make_fake, make_controller) -> None:
        _, result = _run(make_controller(make_fake(free_disk_gb=2)))

        assert result.guidance is not None
        assert result.guidance.category == FailureCategory.PRECONDITION

    def test_unreachable_network_fails_preflight(self, make_fake, make_controller) -> None:
        _, result = _run(make_controller(make_fake(network_reachable=False)))

        assert result.exit_code == ExitCode.PRECONDITION_FAILED
        assert result.failed_step == "preflight"


# ===========================================================================
# Operator refusal
# ===========================================================================


class TestOperatorRefusal:
    """A "no" at any gate aborts the whole run with exit code 2."""

    def test_refusing_backup_gate_aborts(self, fake_host, make_controller) -> None:
        gate = ScriptedGate([True, False])
        events, result = _run(make_controller(fake_host, gate=gate))

        assert result.phase == RunPhase.ABORTED
        assert result.exit_code == ExitCode.CANCELLED
        assert result.report.step_names == ["preflight", "requirements"]
        assert result.guidance is None
        assert fake_host.dist_upgrades == 0
        assert events[-1].event_type == RunEventType.RUN_ABORTED

    def test_refusing_start_runs_nothing(self, fake_host, make_controller) -> None:
        _, result = _run(make_controller(fake_host, gate=ScriptedGate([False])))

        assert result.phase == RunPhase.ABORTED
        assert result.report.entries == []

    def test_refusing_cluster_gate_aborts_before_action(
        self, make_fake, make_controller
    ) -> None:
        fake = make_fake(is_cluster=True)
        _, result = _run(make_controller(fake, gate=ScriptedGate([True, False])))

        assert result.exit_code == ExitCode.CANCELLED
        assert result.report.step_names == ["preflight"]
        assert "tmux" not in fake.installs

    def test_refusing_after_checklist_warnings_aborts(self, make_fake, make_controller) -> None:
        fake = make_fake(checklist_rc=1)
        # start, backup, then the checklist's own warnings
        gate = ScriptedGate([True, True, False])
        _, result = _run(make_controller(fake, gate=gate))

        assert result.phase == RunPhase.ABORTED
        assert result.report.step_names[-1] == "run-migration-checklist"
        assert "rewrite-repositories" not in result.report.step_names


# ===========================================================================
# Action failures
# ===========================================================================


class TestActionFailures:
    """FATAL outcomes end the run with exit code 1 and recovery guidance."""

    def test_keyring_mismatch_fails_rewrite(self, fake_host, make_controller, sysroot) -> None:
        _, result = _run(make_controller(fake_host, transport=_tampered_transport()))

        assert result.phase == RunPhase.FAILED
        assert result.exit_code == ExitCode.GENERAL_ERROR
        assert result.failed_step == "rewrite-repositories"
        assert result.report.outcome_for("rewrite-repositories").kind == OutcomeKind.FATAL
        assert not (sysroot / KEYRING).exists()
        assert result.guidance.category == FailureCategory.NETWORK
        assert "perform-major-upgrade" not in result.report.step_names

    def test_dist_upgrade_failure_is_fatal(self, make_fake, make_controller) -> None:
        _, result = _run(make_controller(make_fake(dist_upgrade_rc=100)))

        outcome = result.report.outcome_for("upgrade-to-latest-source-release")
        assert result.exit_code == ExitCode.GENERAL_ERROR
        assert outcome.kind == OutcomeKind.FATAL
        assert outcome.error_code == 100
        assert result.guidance.category == FailureCategory.PACKAGE_MANAGER

    def test_major_upgrade_failure_is_fatal_by_default(
        self, make_fake, make_controller
    ) -> None:
        _, result = _run(make_controller(make_fake(major_upgrade_rc=100)))

        assert result.phase == RunPhase.FAILED
        assert result.failed_step == "perform-major-upgrade"

    def test_tolerated_exit_code_becomes_warning(
        self, make_fake, make_controller, tolerant_config
    ) -> None:
        fake = make_fake(major_upgrade_rc=100)
        _, result = _run(make_controller(fake, pveup_config=tolerant_config))

        outcome = result.report.outcome_for("perform-major-upgrade")
        assert result.phase == RunPhase.COMPLETED
        assert outcome.kind == OutcomeKind.SUCCESS_WITH_WARNINGS
        assert "exit code: 100" in outcome.message

    def test_exception_in_action_becomes_fatal(
        self, fake_host, make_controller, monkeypatch
    ) -> None:
        def boom() -> None:
            raise RuntimeError("apt lock held")

        monkeypatch.setattr(fake_host, "update_indexes", boom)
        _, result = _run(make_controller(fake_host))

        outcome = result.report.outcome_for("requirements")
        assert result.exit_code == ExitCode.GENERAL_ERROR
        assert outcome.kind == OutcomeKind.FATAL
        assert "apt lock held" in outcome.message


# ===========================================================================
# Dry run
# ===========================================================================


class TestDryRun:
    """Dry runs evaluate preconditions and change nothing."""

    def test_skips_every_action_and_asks_nothing(self, fake_host, make_controller) -> None:
        gate = ScriptedGate(default=False)
        _, result = _run(make_controller(fake_host, gate=gate, dry_run=True))

        assert result.phase == RunPhase.COMPLETED
        assert result.exit_code == ExitCode.SUCCESS
        assert all(e.outcome.kind == OutcomeKind.SKIPPED for e in result.report.entries)
        assert len(result.report.entries) == 10
        assert gate.prompts == []
        assert fake_host.installs == []
        assert fake_host.dist_upgrades == 0

    def test_still_fails_on_precondition(self, make_fake, make_controller) -> None:
        _, result = _run(make_controller(make_fake(free_disk_gb=1), dry_run=True))

        assert result.exit_code == ExitCode.PRECONDITION_FAILED


# ===========================================================================
# Idempotence
# ===========================================================================


class TestIdempotence:
    """Re-running reaches the same end state without duplicate side effects."""

    def test_second_full_pass_changes_nothing(
        self, fake_host, make_controller, make_steps, sysroot
    ) -> None:
        _, result = _run(make_controller(fake_host))
        assert result.phase == RunPhase.COMPLETED

        installs = list(fake_host.installs)
        removals = list(fake_host.removals)
        before = _snapshot(sysroot)

        pipeline = Pipeline.for_branch(Branch.FULL_UPGRADE, make_steps(fake_host).catalog())
        outcomes = {step.name: step.action() for step in pipeline.steps}

        assert fake_host.installs == installs
        assert fake_host.removals == removals
        assert _snapshot(sysroot) == before
        assert not any(o.halts for o in outcomes.values())
        assert outcomes["rewrite-repositories"].kind == OutcomeKind.SKIPPED
        assert fake_host.restarts == ["pveproxy"]

    def test_rerun_after_failure_completes(self, fake_host, make_controller, sysroot) -> None:
        _, first = _run(make_controller(fake_host, transport=_tampered_transport()))
        assert first.phase == RunPhase.FAILED

        _, second = _run(make_controller(fake_host))

        assert second.phase == RunPhase.COMPLETED
        assert fake_host.installs.count("tmux") == 1
        assert (sysroot / KEYRING).exists()
        backups = list((sysroot / "etc/apt").glob("sources.list.backup.*"))
        assert len(backups) == 1
