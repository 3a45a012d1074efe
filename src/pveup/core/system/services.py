"""
systemd service control.
"""

from pveup.core.system.runner import CommandRunner


class SystemdServiceController:
    """Restarts services and reboots through systemctl."""

    def __init__(self, runner: CommandRunner) -> None:
        self.runner = runner

    def restart_service(self, name: str) -> None:
        self.runner.run(["systemctl", "restart", name], check=True)

    def reboot(self) -> None:
        self.runner.run(["systemctl", "reboot"], check=True)
