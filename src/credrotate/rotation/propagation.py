"""Post-rotation propagation: restart the services that cache the credential."""

import logging
import subprocess
from abc import ABC, abstractmethod
from typing import Optional, Sequence

from ..exceptions import PropagationFailed

logger = logging.getLogger(__name__)

DEFAULT_STOP_COMMAND = ("systemctl", "stop", "{service}")
DEFAULT_START_COMMAND = ("systemctl", "start", "{service}")


class PropagationTrigger(ABC):
    """Signals dependent services to pick up rotated credentials."""

    @abstractmethod
    def trigger(self) -> None:
        """Run propagation.

        Raises:
            PropagationFailed: carrying the underlying cause
        """


class ServiceRestartTrigger(PropagationTrigger):
    """Stops then starts each configured service via subprocess.

    Example:
        trigger = ServiceRestartTrigger(["SPTimerV4"])
        trigger.trigger()
    """

    def __init__(
        self,
        services: Sequence[str],
        stop_command: Sequence[str] = DEFAULT_STOP_COMMAND,
        start_command: Sequence[str] = DEFAULT_START_COMMAND,
        timeout: Optional[float] = 300.0,
    ):
        self.services = list(services)
        self.stop_command = list(stop_command)
        self.start_command = list(start_command)
        self.timeout = timeout

    def _render(self, template: Sequence[str], service: str) -> list[str]:
        return [part.replace("{service}", service) for part in template]

    def _run(self, cmd: list[str]) -> None:
        logger.info(f"Running: {' '.join(cmd)}")
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise PropagationFailed(f"Command failed to run: {' '.join(cmd)}: {e}", cause=e) from e

        if result.returncode != 0:
            stderr = (result.stderr or "").strip()
            raise PropagationFailed(
                f"Command exited with {result.returncode}: {' '.join(cmd)}"
                + (f" ({stderr})" if stderr else "")
            )

    def trigger(self) -> None:
        for service in self.services:
            self._run(self._render(self.stop_command, service))
            self._run(self._render(self.start_command, service))
            logger.info(f"Restarted service {service}")
