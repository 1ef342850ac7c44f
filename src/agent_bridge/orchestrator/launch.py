"""Decide the command line used to start a CLI agent."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from agent_bridge.orchestrator.resolver import ExecutableResolver

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class LaunchPlan:
    """Concrete command and arguments to spawn."""

    command: str
    args: tuple[str, ...]
    via_runner: bool = False

    @property
    def argv(self) -> list[str]:
        return [self.command, *self.args]


class LaunchPlanner:
    """Prefer the installed tool; fall back to running its package through a runner."""

    def __init__(self, *, resolver: ExecutableResolver, runner: str = "npx") -> None:
        self._resolver = resolver
        self._runner = runner

    def plan(self, tool: str, args: list[str] | tuple[str, ...], *, package: str) -> LaunchPlan:
        tool_path = self._resolver.resolve(tool)
        if tool_path is not None:
            return LaunchPlan(command=tool_path, args=tuple(args))

        runner_path = self._resolver.resolve(self._runner)
        if runner_path is not None:
            logger.info("Using %s at %s to run %s", self._runner, runner_path, package)
            return LaunchPlan(command=runner_path, args=(package, *args), via_runner=True)

        # Spawning the bare runner name lets the supervisor report a precise
        # not-found error instead of failing here.
        logger.info("Neither %s nor %s resolved; using bare %s", tool, self._runner, self._runner)
        return LaunchPlan(command=self._runner, args=(package, *args), via_runner=True)

    def is_launchable(self, tool: str) -> bool:
        """True when either the tool or the zero-install runner resolves."""

        if self._resolver.resolve(tool) is not None:
            return True
        return self._resolver.resolve(self._runner) is not None
