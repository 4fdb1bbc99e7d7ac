"""Reload systemd unit definitions and restart the dependent service.

Execution is delegated to an ``ActionExecutor``: ``SubprocessExecutor`` runs
the commands, ``DryRunExecutor`` only logs them. The reloader picks neither;
the executor is chosen once at startup.
"""
from __future__ import annotations

import logging
import shlex
import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple, Union

from .errors import ReloadError

logger = logging.getLogger(__name__)

DEFAULT_SERVICE = "bidder"
DEFAULT_COMMAND_TIMEOUT_S = 60.0


@dataclass(frozen=True)
class ReloadAction:
    name: str
    argv: Tuple[str, ...]

    @property
    def command(self) -> str:
        return shlex.join(self.argv)


@dataclass(frozen=True)
class ActionResult:
    action: str
    command: str
    ok: bool
    output: str = ""
    exit_code: Optional[int] = None
    simulated: bool = False


class ActionExecutor(ABC):
    @abstractmethod
    def run(self, action: ReloadAction) -> ActionResult:
        raise NotImplementedError


class DryRunExecutor(ActionExecutor):
    def run(self, action: ReloadAction) -> ActionResult:
        logger.info("[dry-run] Would run: %s", action.command)
        return ActionResult(action=action.name, command=action.command, ok=True, simulated=True)


def _as_text(output: Union[bytes, str, None]) -> str:
    if output is None:
        return ""
    if isinstance(output, bytes):
        return output.decode("utf-8", errors="replace")
    return output


class SubprocessExecutor(ActionExecutor):
    def __init__(self, *, timeout_s: float = DEFAULT_COMMAND_TIMEOUT_S):
        self._timeout_s = timeout_s

    def run(self, action: ReloadAction) -> ActionResult:
        try:
            proc = subprocess.run(
                list(action.argv),
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                timeout=self._timeout_s,
                check=False,
            )
        except subprocess.TimeoutExpired as exc:
            output = _as_text(exc.output)
            logger.info("Ran %s (timed out after %.0fs), output:\n%s", action.command, self._timeout_s, output)
            return ActionResult(
                action=action.name,
                command=action.command,
                ok=False,
                output=f"{output}timeout after {self._timeout_s:g}s",
            )
        except OSError as exc:
            return ActionResult(action=action.name, command=action.command, ok=False, output=str(exc))

        output = proc.stdout or ""
        logger.info("Ran %s, output:\n%s", action.command, output)
        return ActionResult(
            action=action.name,
            command=action.command,
            ok=proc.returncode == 0,
            output=output,
            exit_code=proc.returncode,
        )


class ServiceReloader:
    """Runs ``daemon-reload`` then ``restart <service>``, stopping at the first failure."""

    def __init__(
        self,
        executor: ActionExecutor,
        *,
        service: str = DEFAULT_SERVICE,
        use_sudo: bool = True,
        systemctl: str = "systemctl",
    ):
        self._executor = executor
        prefix: Tuple[str, ...] = ("sudo", systemctl) if use_sudo else (systemctl,)
        self.actions: Sequence[ReloadAction] = (
            ReloadAction("daemon-reload", prefix + ("daemon-reload",)),
            ReloadAction("restart", prefix + ("restart", service)),
        )

    def reload_and_restart(self) -> List[ActionResult]:
        results: List[ActionResult] = []
        for action in self.actions:
            result = self._executor.run(action)
            results.append(result)
            if not result.ok:
                raise ReloadError(action.name, action.command, result.output)
        return results


def build_reloader(
    *,
    dry_run: bool,
    service: str = DEFAULT_SERVICE,
    use_sudo: bool = True,
    timeout_s: float = DEFAULT_COMMAND_TIMEOUT_S,
) -> ServiceReloader:
    executor: ActionExecutor = DryRunExecutor() if dry_run else SubprocessExecutor(timeout_s=timeout_s)
    return ServiceReloader(executor, service=service, use_sudo=use_sudo)
