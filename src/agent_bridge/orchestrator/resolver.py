"""Locate CLI agent executables across login shells and the inherited PATH.

Processes launched from a GUI or a service manager often miss the PATH
customizations a user makes in their shell profile (version managers such as
nvm, mise or asdf). The resolver therefore asks the user's login shell first,
then falls back to platform shells, then to a direct PATH probe. Outcomes are
memoized in a :class:`PathCache` owned by the caller.
"""

from __future__ import annotations

import logging
import subprocess
import sys
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from agent_bridge.config import ShellSettings

logger = logging.getLogger(__name__)

POSIX_FALLBACK_SHELLS = ("/bin/zsh", "/bin/bash", "zsh", "bash")
WINDOWS_FALLBACK_SHELLS = ("pwsh", "powershell")
VERSION_FLAG = "--version"
_VERSION_PREVIEW_CHARS = 50


@dataclass(slots=True, frozen=True)
class ShellConfig:
    """User's default interactive shell and its extra launch arguments."""

    path: str
    args: tuple[str, ...] = ()


class ShellConfigProvider(Protocol):
    """Host collaborator that knows the user's configured terminal shell."""

    def default_shell(self) -> ShellConfig | None:
        """Return the configured shell, or None when nothing is configured."""


class SettingsShellConfigProvider:
    """Shell configuration taken from ``AGENT_BRIDGE_DEFAULT_SHELL*`` settings."""

    def __init__(self, settings: ShellSettings) -> None:
        self._settings = settings

    def default_shell(self) -> ShellConfig | None:
        if not self._settings.default_shell:
            logger.info("No default shell configured")
            return None
        logger.info(
            "Using configured default shell: path=%s args=%s",
            self._settings.default_shell,
            self._settings.default_shell_args,
        )
        return ShellConfig(
            path=self._settings.default_shell,
            args=tuple(self._settings.default_shell_args),
        )


UNCHECKED = object()


class PathCache:
    """Per-tool resolution outcome: unchecked, found at a path, or confirmed absent."""

    def __init__(self) -> None:
        self._entries: dict[str, str | None] = {}
        self._lock = threading.Lock()

    def get(self, tool: str) -> object:
        """Return the cached path, None for confirmed absent, or ``UNCHECKED``."""

        with self._lock:
            return self._entries.get(tool, UNCHECKED)

    def set(self, tool: str, path: str | None) -> None:
        with self._lock:
            self._entries[tool] = path

    def clear(self, tool: str | None = None) -> None:
        with self._lock:
            if tool is None:
                self._entries.clear()
            else:
                self._entries.pop(tool, None)

    def __contains__(self, tool: object) -> bool:
        with self._lock:
            return tool in self._entries


class ExecutableResolver:
    """Find the path of a named tool, trying shells before a bare PATH lookup."""

    def __init__(
        self,
        *,
        settings: ShellSettings,
        cache: PathCache,
        shell_config: ShellConfigProvider | None = None,
        platform: str | None = None,
        fallback_shells: tuple[str, ...] | None = None,
    ) -> None:
        self._settings = settings
        self._cache = cache
        self._shell_config = shell_config or SettingsShellConfigProvider(settings)
        self._platform = platform or sys.platform
        if fallback_shells is None:
            is_windows = self._platform.startswith("win")
            fallback_shells = WINDOWS_FALLBACK_SHELLS if is_windows else POSIX_FALLBACK_SHELLS
        self._fallback_shells = fallback_shells

    @property
    def cache(self) -> PathCache:
        return self._cache

    def resolve(self, tool: str) -> str | None:
        """Return an absolute path, the bare tool name (PATH hit), or None."""

        cached = self._cache.get(tool)
        if cached is not UNCHECKED:
            return cached  # type: ignore[return-value]

        shell_path = self.find_via_default_shell(tool)
        if shell_path is not None:
            version = self.verify(shell_path)
            if version is not None:
                logger.info("%s found via shell: path=%s version=%s", tool, shell_path, version)
                self._cache.set(tool, shell_path)
                return shell_path
            logger.warning("%s found but not executable: path=%s", tool, shell_path)

        if self.find_in_path(tool) is not None:
            self._cache.set(tool, tool)
            return tool

        logger.info("%s not found via any shell or PATH", tool)
        self._cache.set(tool, None)
        return None

    def clear_cache(self) -> None:
        self._cache.clear()

    def find_via_default_shell(self, tool: str) -> str | None:
        """Ask the configured shell, then the platform fallback shells."""

        config = self._shell_config.default_shell()
        if config is not None:
            found = self._find_with_shell(tool, config.path, config.args)
            if found is not None:
                return found

        for shell in self._fallback_shells:
            found = self._find_with_shell(tool, shell, ())
            if found is not None:
                return found
        return None

    def find_in_path(self, tool: str) -> str | None:
        """Probe the inherited PATH by running ``tool --version``."""

        version = self._run_version_probe(tool)
        if version is None:
            return None
        logger.info("%s found in PATH: version=%s", tool, version)
        return tool

    def verify(self, path: str, version_flag: str = VERSION_FLAG) -> str | None:
        """Confirm ``path`` runs; return its truncated version banner or None."""

        return self._run_version_probe(path, version_flag=version_flag)

    def _find_with_shell(self, tool: str, shell: str, shell_args: tuple[str, ...]) -> str | None:
        args, timeout = shell_lookup_command(
            tool,
            shell,
            shell_args,
            shell_timeout=self._settings.shell_probe_timeout_seconds,
            which_timeout=self._settings.which_probe_timeout_seconds,
        )
        logger.debug("Searching for %s via shell %s", tool, shell)
        try:
            completed = subprocess.run(  # noqa: S603
                args,
                check=False,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                stdin=subprocess.DEVNULL,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired:
            logger.info("%s lookup timed out via shell %s", tool, shell)
            return None
        except OSError as error:
            logger.info("%s not found via shell %s: %s", tool, shell, error)
            return None

        logger.debug(
            "Shell lookup finished: tool=%s shell=%s stdout=%r stderr=%r",
            tool,
            shell,
            completed.stdout.strip()[:300],
            completed.stderr[:100],
        )
        found = first_line(completed.stdout)
        if found and Path(found).exists():
            logger.info("Found %s via shell %s: %s", tool, shell, found)
            return found
        return None

    def _run_version_probe(self, executable: str, version_flag: str = VERSION_FLAG) -> str | None:
        try:
            completed = subprocess.run(  # noqa: S603
                [executable, version_flag],
                check=False,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                stdin=subprocess.DEVNULL,
                timeout=self._settings.version_probe_timeout_seconds,
            )
        except (OSError, subprocess.TimeoutExpired):
            return None
        if completed.returncode != 0:
            return None
        return completed.stdout.strip()[:_VERSION_PREVIEW_CHARS]


def is_powershell(shell_path: str) -> bool:
    lowered = shell_path.lower()
    return "pwsh" in lowered or "powershell" in lowered


def shell_lookup_command(
    tool: str,
    shell: str,
    shell_args: tuple[str, ...],
    *,
    shell_timeout: float,
    which_timeout: float,
) -> tuple[list[str], float]:
    """Build the lookup argv for ``shell`` and the timeout to apply to it.

    PowerShell restricts the lookup to applications so ``.ps1`` wrapper scripts are
    skipped; POSIX shells run ``which`` in interactive login mode so profile PATH
    edits apply.
    """

    if is_powershell(shell):
        query = (
            f"(Get-Command {tool} -CommandType Application "
            "-ErrorAction SilentlyContinue).Source"
        )
        return [shell, *shell_args, "-NonInteractive", "-Command", query], shell_timeout
    return [shell, *shell_args, "-ilc", f"which {tool}"], which_timeout


def first_line(text: str) -> str:
    stripped = text.strip()
    if not stripped:
        return ""
    return stripped.splitlines()[0].strip()
