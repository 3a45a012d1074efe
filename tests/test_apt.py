"""
Tests for the APT package manager wrapper.
"""

from unittest.mock import MagicMock

import pytest

from pveup.core.system.apt import DPKG_KEEP_CONFIG, NONINTERACTIVE_ENV, AptPackageManager
from pveup.core.system.runner import CommandResult


def _installed(*names: str):
    """Runner side effect reporting ``names`` as installed."""

    def run(args, **kwargs):
        if args[0] == "dpkg-query":
            status = "install ok installed" if args[-1] in names else "unknown ok not-installed"
            return CommandResult(tuple(args), 0, stdout=status)
        return CommandResult(tuple(args), 0)

    return run


@pytest.fixture
def runner() -> MagicMock:
    mock = MagicMock()
    mock.run.side_effect = _installed("pve-manager")
    return mock


class TestQueries:
    def test_installed(self, runner) -> None:
        assert AptPackageManager(runner).is_package_installed("pve-manager")

    def test_not_installed(self, runner) -> None:
        assert not AptPackageManager(runner).is_package_installed("tmux")

    def test_dpkg_query_failure(self, runner) -> None:
        runner.run.side_effect = None
        runner.run.return_value = CommandResult(("dpkg-query",), 1, stderr="no packages found")

        assert not AptPackageManager(runner).is_package_installed("tmux")


class TestInstall:
    def test_skips_installed_package(self, runner) -> None:
        assert AptPackageManager(runner).install_package("pve-manager") is False
        assert runner.run.call_count == 1

    def test_installs_missing_package(self, runner) -> None:
        assert AptPackageManager(runner).install_package("tmux") is True

        call = runner.run.call_args
        assert call.args[0] == ["apt-get", "install", "-y", *DPKG_KEEP_CONFIG, "tmux"]
        assert call.kwargs["check"] is True
        assert call.kwargs["env"] == NONINTERACTIVE_ENV

    def test_reinstall_skips_query(self, runner) -> None:
        AptPackageManager(runner).install_package("grub-efi-amd64", reinstall=True)

        assert runner.run.call_count == 1
        assert "--reinstall" in runner.run.call_args.args[0]


class TestRemove:
    def test_removes_installed(self, runner) -> None:
        assert AptPackageManager(runner).remove_package("pve-manager") is True
        assert runner.run.call_args.args[0] == ["apt-get", "remove", "-y", "pve-manager"]

    def test_absent_package_is_noop(self, runner) -> None:
        assert AptPackageManager(runner).remove_package("systemd-boot") is False
        assert runner.run.call_count == 1


class TestUpgrade:
    def test_dist_upgrade_returns_exit_code(self, runner) -> None:
        runner.run.side_effect = None
        runner.run.return_value = CommandResult(("apt-get",), 100)

        assert AptPackageManager(runner).dist_upgrade() == 100
        assert runner.run.call_args.kwargs.get("check", False) is False

    def test_debconf_selection_is_piped(self, runner) -> None:
        AptPackageManager(runner).set_debconf_selection("grub-efi-amd64 grub2/x boolean true")

        assert runner.run.call_args.args[0] == ["debconf-set-selections"]
        assert runner.run.call_args.kwargs["input_text"] == "grub-efi-amd64 grub2/x boolean true\n"
