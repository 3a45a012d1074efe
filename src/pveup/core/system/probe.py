"""
Host state probe.

Reads observable facts from the host and returns them as typed values. The
probe never caches: each call re-reads the host because an external process
(apt, an administrator) may change it between steps.

Version detection parses ``pveversion`` output such as
``pve-manager/8.4.1/2a5fa54a8503f96d (running kernel: 6.8.12-9-pve)`` and
returns None when nothing parseable is found.
"""

from __future__ import annotations

import logging
import os
import re
import shutil
import socket
from pathlib import Path

from pveup.core.models import HostState, Version
from pveup.core.system.runner import CommandRunner

logger = logging.getLogger(__name__)

_PVE_MANAGER_RE = re.compile(r"pve-manager/(\d+\.\d+(?:\.\d+)?)")
_HYPERVISOR_RE = re.compile(r"virtual|vmware|qemu|kvm", re.IGNORECASE)


def parse_pveversion(output: str) -> Version | None:
    """Extract the pve-manager version from ``pveversion`` output."""
    first_line = output.strip().splitlines()[0] if output.strip() else ""
    match = _PVE_MANAGER_RE.search(first_line)
    if match is None:
        return None
    return Version.parse(match.group(1))


class SystemHostProbe:
    """
    Probe for a real Proxmox VE host.

    Attributes:
        runner: Command runner for pveversion, ping, qm and pct
        connectivity_host: Host pinged for the network check
        disk_path: Filesystem whose free space is measured
        sysroot: Root under which /proc, /sys and /etc are read
    """

    def __init__(
        self,
        runner: CommandRunner,
        *,
        connectivity_host: str = "download.proxmox.com",
        disk_path: str = "/",
        sysroot: Path = Path("/"),
    ) -> None:
        self.runner = runner
        self.connectivity_host = connectivity_host
        self.disk_path = disk_path
        self.sysroot = sysroot

    def probe_version(self) -> Version | None:
        result = self.runner.run(["pveversion"])
        if not result.ok:
            logger.warning("pveversion unavailable (exit %d)", result.returncode)
            return None
        version = parse_pveversion(result.stdout)
        if version is None:
            logger.warning("Could not parse pveversion output: %r", result.stdout[:200])
        return version

    def probe_kernel(self) -> str:
        return os.uname().release

    def probe_disk_free_gb(self, path: str = "/") -> int:
        try:
            usage = shutil.disk_usage(path)
        except OSError as e:
            logger.warning("Could not stat %s: %s", path, e)
            return 0
        return usage.free // (1024**3)

    def probe_network_reachable(self, host: str) -> bool:
        return self.runner.run(["ping", "-c", "1", "-W", "5", host]).ok

    def probe_dns(self, host: str) -> bool:
        try:
            socket.getaddrinfo(host, None)
        except (socket.gaierror, UnicodeError):
            return False
        return True

    def probe_entropy(self) -> int:
        return int(self._read_number("proc/sys/kernel/random/entropy_avail") or 0)

    def probe_load_average(self) -> float:
        return self._read_number("proc/loadavg") or 0.0

    def probe_cluster(self) -> bool:
        return (self.sysroot / "etc/pve/cluster.conf").exists() or (
            self.sysroot / "etc/corosync/corosync.conf"
        ).exists()

    def probe_root(self) -> bool:
        return os.geteuid() == 0

    def probe_virtual_machine(self) -> bool:
        product = self.sysroot / "sys/class/dmi/id/product_name"
        try:
            return bool(_HYPERVISOR_RE.search(product.read_text()))
        except OSError:
            return False

    def probe_running_guests(self) -> int:
        running = 0
        for command in (["qm", "list"], ["pct", "list"]):
            result = self.runner.run(command)
            if result.ok:
                running += sum(1 for line in result.stdout.splitlines() if " running" in line)
        return running

    def sample(self) -> HostState:
        """Capture a fresh HostState from every probe."""
        state = HostState(
            version=self.probe_version(),
            kernel_version=self.probe_kernel(),
            is_cluster=self.probe_cluster(),
            free_disk_gb=self.probe_disk_free_gb(self.disk_path),
            entropy_available=self.probe_entropy(),
            load_average=self.probe_load_average(),
            network_reachable=self.probe_network_reachable(self.connectivity_host),
            dns_resolves=self.probe_dns(self.connectivity_host),
            is_root=self.probe_root(),
            is_virtual_machine=self.probe_virtual_machine(),
            running_guests=self.probe_running_guests(),
        )
        logger.debug("Sampled host state: %s", state)
        return state

    def _read_number(self, relative: str) -> float | None:
        try:
            text = (self.sysroot / relative).read_text().split()
        except OSError:
            return None
        if not text:
            return None
        try:
            return float(text[0])
        except ValueError:
            return None
