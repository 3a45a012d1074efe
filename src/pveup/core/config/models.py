"""
Configuration data models for pveup.

These models define the structure of /etc/pveup/config.json,
~/.config/pveup/config.json and any file passed with --config, with
validation and type safety via Pydantic.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class TargetConfig(BaseModel):
    """
    Upgrade target.

    The source major is always one below the target major.
    """
    major: int = Field(
        default=9,
        ge=2,
        description="Proxmox VE major version the run upgrades to"
    )
    minimum_source_minor: int = Field(
        default=4,
        ge=0,
        description="Minor release the source must reach before the major upgrade (8.4.x)"
    )
    source_suite: str = Field(
        default="bookworm",
        description="Debian suite of the source release"
    )
    target_suite: str = Field(
        default="trixie",
        description="Debian suite of the target release"
    )
    kernel_package: str = Field(
        default="proxmox-kernel-6.14",
        description="Kernel meta-package shipped with the target release"
    )
    kernel_series: str = Field(
        default="6.14",
        description="Kernel series expected after the upgrade (matched against uname -r)"
    )


class ThresholdsConfig(BaseModel):
    """
    Precondition thresholds.

    Defaults match the limits the Proxmox upgrade guide recommends.
    """
    min_free_disk_gb: int = Field(
        default=5,
        ge=0,
        description="Fail when the root filesystem has less free space (GB)"
    )
    min_entropy: int = Field(
        default=200,
        ge=0,
        description="Warn when available entropy is below this value"
    )
    max_load_average: float = Field(
        default=2.0,
        ge=0.0,
        description="Warn when the one-minute load average exceeds this value"
    )
    connectivity_host: str = Field(
        default="download.proxmox.com",
        description="Host that must answer a ping before the upgrade starts"
    )


class RepositoryConfig(BaseModel):
    """
    APT repository layout written for the target release.
    """
    sources_list: str = Field(
        default="/etc/apt/sources.list",
        description="Legacy one-line sources file rewritten from source to target suite"
    )
    sources_dir: str = Field(
        default="/etc/apt/sources.list.d",
        description="Directory holding per-repository source files"
    )
    pve_sources_name: str = Field(
        default="pve-install-repo.sources",
        description="deb822 file written for the Proxmox VE repository"
    )
    pve_uri: str = Field(
        default="http://download.proxmox.com/debian/pve",
        description="Proxmox VE repository URI"
    )
    pve_component: str = Field(
        default="pve-no-subscription",
        description="Proxmox VE repository component"
    )
    ceph_sources_name: str = Field(
        default="ceph.sources",
        description="Ceph repository file, rewritten only when present"
    )
    ceph_uri: str = Field(
        default="http://download.proxmox.com/debian/ceph-squid",
        description="Ceph repository URI for the target release"
    )
    ceph_component: str = Field(
        default="no-subscription",
        description="Ceph repository component"
    )
    architectures: str = Field(
        default="amd64",
        description="Architectures line for the Proxmox VE repository"
    )
    keyring_path: str = Field(
        default="/usr/share/keyrings/proxmox-archive-keyring.gpg",
        description="Archive keyring referenced by Signed-By"
    )
    keyring_url: str = Field(
        default="https://enterprise.proxmox.com/debian/proxmox-archive-keyring-trixie.gpg",
        description="Where to download the archive keyring when it is missing"
    )
    keyring_sha256: str = Field(
        default="136673be77aba35dcce385b28737689ad64fd785a797e57897589aed08db6e45",
        pattern="^[0-9a-f]{64}$",
        description="Expected SHA-256 of the downloaded keyring"
    )
    keyring_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Download timeout for the keyring"
    )


class PackagesConfig(BaseModel):
    """
    Packages the run installs, removes or relies on.
    """
    session_tool: str = Field(
        default="tmux",
        description="Terminal multiplexer installed so the run survives SSH drops"
    )
    checklist_command: str = Field(
        default="pve8to9",
        description="Upstream migration checklist tool"
    )
    checklist_provider: str = Field(
        default="pve-manager",
        description="Package that ships the checklist tool"
    )
    conflicting: list[str] = Field(
        default_factory=lambda: ["linux-image-amd64", "systemd-boot"],
        description="Packages removed before the major upgrade when installed"
    )
    boot_package: str = Field(
        default="grub-efi-amd64",
        description="GRUB package for UEFI systems"
    )


class GatesConfig(BaseModel):
    """
    Operator confirmation behaviour.
    """
    confirm_start: bool = Field(
        default=True,
        description="Ask before starting the run (and before re-verifying an upgraded host)"
    )


class CleanupConfig(BaseModel):
    """
    Post-upgrade cleanup.
    """
    patch_subscription_notice: bool = Field(
        default=True,
        description="Remove the subscription notice from the web UI and restart pveproxy"
    )
    widget_toolkit_js: str = Field(
        default="/usr/share/javascript/proxmox-widget-toolkit/proxmoxlib.js",
        description="Web UI library carrying the subscription notice"
    )
    proxy_service: str = Field(
        default="pveproxy",
        description="Service restarted after patching the web UI"
    )


class StepOverridesConfig(BaseModel):
    """
    Per-step behaviour overrides.
    """
    tolerated_exit_codes: dict[str, list[int]] = Field(
        default_factory=dict,
        description=(
            "Non-zero exit codes treated as warnings instead of failures, keyed by "
            "step name (e.g. {'perform-major-upgrade': [100]})"
        )
    )

    @field_validator('tolerated_exit_codes')
    @classmethod
    def validate_codes(cls, v: dict[str, list[int]]) -> dict[str, list[int]]:
        """Exit code 0 is always success and cannot be listed."""
        for step, codes in v.items():
            if any(code == 0 for code in codes):
                raise ValueError(f"tolerated_exit_codes for '{step}' must not contain 0")
        return v

    def tolerated(self, step_name: str) -> frozenset[int]:
        return frozenset(self.tolerated_exit_codes.get(step_name, []))


class PveupConfig(BaseModel):
    """
    Top-level pveup configuration.

    Loaded from defaults, the system file, the user file, an optional
    explicit file and PVEUP_* environment variables.

    Example:
        >>> config = PveupConfig(thresholds=ThresholdsConfig(min_free_disk_gb=10))
        >>> config.thresholds.min_free_disk_gb
        10
    """
    target: TargetConfig = Field(
        default_factory=TargetConfig,
        description="Upgrade target"
    )
    thresholds: ThresholdsConfig = Field(
        default_factory=ThresholdsConfig,
        description="Precondition thresholds"
    )
    repositories: RepositoryConfig = Field(
        default_factory=RepositoryConfig,
        description="APT repository layout"
    )
    packages: PackagesConfig = Field(
        default_factory=PackagesConfig,
        description="Packages installed or removed"
    )
    gates: GatesConfig = Field(
        default_factory=GatesConfig,
        description="Confirmation gates"
    )
    cleanup: CleanupConfig = Field(
        default_factory=CleanupConfig,
        description="Post-upgrade cleanup"
    )
    steps: StepOverridesConfig = Field(
        default_factory=StepOverridesConfig,
        description="Per-step overrides"
    )
    log_dir: str = Field(
        default="/var/log/pveup",
        description="Directory for run logs when --log-file is not given"
    )
    sysroot: Optional[str] = Field(
        default=None,
        description="Alternate filesystem root for probes and rewrites (testing only)"
    )

    model_config = ConfigDict(
        extra="allow",  # Allow extra fields for forward compatibility
        validate_assignment=True,
    )
