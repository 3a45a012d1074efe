"""
Pytest configuration and shared fixtures.

Provides an in-memory fake Proxmox VE host implementing every collaborator
protocol, a config whose paths resolve under tmp_path, and helpers to build a
run controller around them.
"""

import hashlib
from pathlib import Path

import httpx
import pytest

from pveup.core.checks import PreconditionChecker
from pveup.core.config.models import PveupConfig, RepositoryConfig, StepOverridesConfig
from pveup.core.gate import AutoApproveGate
from pveup.core.host import Host, build_controller
from pveup.core.models import HostState, Version
from pveup.core.run.models import RunConfig
from pveup.core.steps import SUBSCRIPTION_NOTICE, UpgradeSteps
from pveup.core.system.repositories import FileRepositoryRewriter
from pveup.core.system.runner import CommandResult

KEYRING_BYTES = b"-----fake proxmox archive keyring-----\n"
KEYRING_SHA256 = hashlib.sha256(KEYRING_BYTES).hexdigest()
TARGET_KERNEL = "6.14.8-2-pve"


# ==============================================================================
# Fake host
# ==============================================================================


class FakeHost:
    """
    In-memory Proxmox VE host.

    dist_upgrade moves 8.x to the latest 8.4 point release until the PVE
    repository file names trixie, and to 9.0 afterwards, like a real mirror.
    """

    def __init__(
        self,
        root: Path,
        *,
        version: Version | None = Version(8, 4, 0),
        kernel: str = "6.8.12-9-pve",
        free_disk_gb: int = 10,
        is_cluster: bool = False,
        network_reachable: bool = True,
        is_root: bool = True,
        running_guests: int = 0,
        installed: set[str] | None = None,
        commands: set[str] | None = None,
        uefi: bool = False,
        removable_loader: bool = False,
        esp_mounted: bool = False,
        dist_upgrade_rc: int = 0,
        major_upgrade_rc: int = 0,
        latest_source: Version = Version(8, 4, 5),
        checklist_rc: int = 0,
    ) -> None:
        self.root = root
        self.version = version
        self.kernel = kernel
        self.free_disk_gb = free_disk_gb
        self.is_cluster = is_cluster
        self.network_reachable = network_reachable
        self.is_root = is_root
        self.running_guests = running_guests
        self.installed = set(installed if installed is not None else {"pve-manager"})
        self.commands = set(commands if commands is not None else {"pve8to9"})
        self.uefi = uefi
        self.removable_loader = removable_loader
        self.mounted_esp = esp_mounted
        self.dist_upgrade_rc = dist_upgrade_rc
        self.major_upgrade_rc = major_upgrade_rc
        self.latest_source = latest_source
        self.checklist_rc = checklist_rc
        self.kernels: list[str] = []

        self.installs: list[str] = []
        self.removals: list[str] = []
        self.dist_upgrades = 0
        self.index_updates = 0
        self.boot_updates = 0
        self.restarts: list[str] = []
        self.reboots = 0
        self.debconf: list[str] = []
        self.ran: list[tuple[str, ...]] = []

    # -- HostProbe ----------------------------------------------------------

    def probe_version(self) -> Version | None:
        return self.version

    def probe_kernel(self) -> str:
        return self.kernel

    def probe_disk_free_gb(self, path: str = "/") -> int:
        return self.free_disk_gb

    def probe_network_reachable(self, host: str) -> bool:
        return self.network_reachable

    def sample(self) -> HostState:
        return HostState(
            version=self.version,
            kernel_version=self.kernel,
            is_cluster=self.is_cluster,
            free_disk_gb=self.free_disk_gb,
            entropy_available=256,
            load_average=0.3,
            network_reachable=self.network_reachable,
            is_root=self.is_root,
            running_guests=self.running_guests,
        )

    # -- PackageManager -----------------------------------------------------

    def update_indexes(self) -> None:
        self.index_updates += 1

    def dist_upgrade(self) -> int:
        self.dist_upgrades += 1
        if self.version is None or self.version.major != 8:
            return 0
        pve_sources = self.root / "etc/apt/sources.list.d/pve-install-repo.sources"
        if pve_sources.exists() and "trixie" in pve_sources.read_text():
            self.version = Version(9, 0, 3)
            return self.major_upgrade_rc
        if self.dist_upgrade_rc != 0:
            return self.dist_upgrade_rc
        self.version = self.latest_source
        return 0

    def install_package(self, name: str, *, reinstall: bool = False) -> bool:
        if name in self.installed and not reinstall:
            return False
        self.installed.add(name)
        self.installs.append(name)
        if name == "proxmox-kernel-6.14":
            self.kernels.append(TARGET_KERNEL)
        if name == "pve-manager":
            self.commands.add("pve8to9")
        return True

    def remove_package(self, name: str) -> bool:
        if name not in self.installed:
            return False
        self.installed.discard(name)
        self.removals.append(name)
        return True

    def is_package_installed(self, name: str) -> bool:
        return name in self.installed

    def autoremove(self) -> None:
        pass

    def autoclean(self) -> None:
        pass

    def set_debconf_selection(self, selection: str) -> None:
        self.debconf.append(selection)

    # -- BootloaderManager --------------------------------------------------

    def update_boot_config(self) -> bool:
        self.boot_updates += 1
        return True

    def is_uefi(self) -> bool:
        return self.uefi

    def reinstall_boot_package(self) -> None:
        self.set_debconf_selection("grub-efi-amd64 grub2/force_efi_extra_removable boolean true")
        self.install_package("grub-efi-amd64", reinstall=True)

    def has_removable_loader(self) -> bool:
        return self.removable_loader

    def esp_mounted(self) -> bool:
        return self.mounted_esp

    def installed_kernels(self, series: str) -> list[str]:
        return [k for k in self.kernels if k.startswith(series + ".")]

    # -- ServiceController --------------------------------------------------

    def restart_service(self, name: str) -> None:
        self.restarts.append(name)

    def reboot(self) -> None:
        self.reboots += 1

    # -- CommandLocator -----------------------------------------------------

    def which(self, command: str) -> str | None:
        return f"/usr/bin/{command}" if command in self.commands else None

    def run(self, args: list[str], *, capture: bool = True) -> CommandResult:
        self.ran.append(tuple(args))
        return CommandResult(args=tuple(args), returncode=self.checklist_rc)


# ==============================================================================
# Filesystem fixtures
# ==============================================================================


def keyring_transport(content: bytes = KEYRING_BYTES, status: int = 200) -> httpx.MockTransport:
    """Serve ``content`` for every request."""

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, content=content)

    return httpx.MockTransport(handler)


@pytest.fixture
def sysroot(tmp_path: Path) -> Path:
    """
    Provide a host filesystem root with a Proxmox VE 8 APT layout.

    Creates:
    - etc/apt/sources.list (bookworm)
    - etc/apt/sources.list.d/
    - the widget toolkit library carrying the subscription notice
    """
    root = tmp_path / "root"
    apt = root / "etc/apt"
    (apt / "sources.list.d").mkdir(parents=True)
    (apt / "sources.list").write_text(
        "deb http://deb.debian.org/debian bookworm main contrib\n"
        "deb http://security.debian.org/debian-security bookworm-security main\n"
    )
    js = root / "usr/share/javascript/proxmox-widget-toolkit/proxmoxlib.js"
    js.parent.mkdir(parents=True)
    js.write_text(f"if (res === null || res === undefined || !res || {SUBSCRIPTION_NOTICE}) {{\n")
    return root


@pytest.fixture
def config() -> PveupConfig:
    """Provide a default config that trusts the test keyring."""
    return PveupConfig(repositories=RepositoryConfig(keyring_sha256=KEYRING_SHA256))


@pytest.fixture
def make_fake(sysroot: Path):
    """Provide a factory for FakeHosts rooted at the sysroot fixture."""

    def _make(**kwargs) -> FakeHost:
        kwargs.setdefault("installed", {"pve-manager", "linux-image-amd64"})
        return FakeHost(sysroot, **kwargs)

    return _make


@pytest.fixture
def fake_host(make_fake) -> FakeHost:
    """Provide a Proxmox VE 8.4.0 fake host with 10GB free."""
    return make_fake()


def make_host(fake: FakeHost, transport: httpx.MockTransport | None = None) -> Host:
    """Wire a FakeHost (plus a real file rewriter) into a Host."""
    client = httpx.Client(transport=transport or keyring_transport())
    return Host(
        probe=fake,
        packages=fake,
        repositories=FileRepositoryRewriter(client),
        bootloader=fake,
        services=fake,
        commands=fake,
        sysroot=fake.root,
    )


@pytest.fixture
def make_controller(config: PveupConfig):
    """Provide a factory building a RunController around a FakeHost."""

    def _make(
        fake: FakeHost,
        *,
        gate=None,
        dry_run: bool = False,
        transport: httpx.MockTransport | None = None,
        run_logger=None,
        pveup_config: PveupConfig | None = None,
    ):
        return build_controller(
            pveup_config or config,
            make_host(fake, transport),
            run_config=RunConfig(dry_run=dry_run, run_id="pveup-test"),
            gate=gate or AutoApproveGate(),
            run_logger=run_logger,
        )

    return _make


@pytest.fixture
def tolerant_config() -> PveupConfig:
    """Config that tolerates dist-upgrade exit code 100 in the major upgrade."""
    return PveupConfig(
        repositories=RepositoryConfig(keyring_sha256=KEYRING_SHA256),
        steps=StepOverridesConfig(tolerated_exit_codes={"perform-major-upgrade": [100]}),
    )


@pytest.fixture
def make_steps(config: PveupConfig):
    """Provide a factory building the step catalog around a FakeHost."""

    def _make(
        fake: FakeHost,
        *,
        pveup_config: PveupConfig | None = None,
        transport: httpx.MockTransport | None = None,
    ) -> UpgradeSteps:
        cfg = pveup_config or config
        host = make_host(fake, transport)
        return UpgradeSteps(
            cfg,
            host.probe,
            host.packages,
            host.repositories,
            host.bootloader,
            host.services,
            host.commands,
            PreconditionChecker(cfg.thresholds, cfg.target.major),
            sysroot=host.sysroot,
        )

    return _make


@pytest.fixture
def wire_host():
    """Provide make_host for tests that patch host construction."""
    return make_host
