"""Tmux client for subprocess-based tmux interaction."""

import asyncio
import logging
from collections.abc import Mapping, Sequence

from ... import config

logger = logging.getLogger(__name__)

# Use tab as delimiter to avoid conflicts with colons in data (paths, titles)
_FIELD_SEP = "\t"

_PANE_FIELDS = [
    "#{pane_id}",
    "#{session_name}",
    "#{window_id}",
    "#{window_active}",
    "#{pane_active}",
    "#{pane_width}",
    "#{pane_height}",
    "#{window_width}",
    "#{window_panes}",
    "#{pane_pid}",
    "#{pane_dead}",
    "#{pane_dead_status}",
    "#{pane_title}",
    "#{" + config.SURFACE_OPTION + "}",
    "#{" + config.SCRATCH_OPTION + "}",
]


def _parse_int(value: str) -> int | None:
    try:
        return int(value)
    except ValueError:
        return None


class TmuxClient:
    """Client for interacting with tmux via subprocess commands.

    Provides async methods for:
    - Listing panes with agentpane ownership markers
    - Spawning detached windows and splitting views
    - Moving panes between the visible layout and the stash session
    - Sizing, focusing and sending keys to panes
    """

    def __init__(self, socket_path: str | None = None):
        """Initialize TmuxClient.

        Args:
            socket_path: Optional tmux socket path. If None, uses default socket.
        """
        self._socket_path = socket_path

    @property
    def socket_path(self) -> str | None:
        return self._socket_path

    async def run(self, *args: str) -> str | None:
        """Execute a tmux command.

        Args:
            *args: Command arguments (e.g., "list-panes", "-a", "-F", "...")

        Returns:
            Command stdout on success, None on failure.
        """
        cmd = ["tmux"]
        if self._socket_path:
            cmd.extend(["-S", self._socket_path])
        cmd.extend(args)

        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            stdout, stderr = await proc.communicate()

            if proc.returncode != 0:
                logger.warning(f"tmux command failed: {' '.join(cmd)}: {stderr.decode().strip()}")
                return None

            return stdout.decode()

        except Exception as e:
            logger.error(f"tmux subprocess error: {e}")
            return None

    async def list_panes(self, target: str | None = None) -> list[dict]:
        """List panes, either all (-a) or those of a target window.

        Returns:
            List of pane dicts with keys:
            - pane_id: str (e.g., "%3")
            - session_name: str
            - window_id: str (e.g., "@1")
            - window_active: bool
            - active: bool
            - width, height: int
            - window_width: int
            - window_panes: int
            - pane_pid: int | None
            - dead: bool
            - dead_status: int | None
            - title: str
            - is_surface: bool (tagged as an agentpane terminal)
            - is_scratch: bool (tagged as a split placeholder)
        """
        fmt = _FIELD_SEP.join(_PANE_FIELDS)
        if target:
            output = await self.run("list-panes", "-t", target, "-F", fmt)
        else:
            output = await self.run("list-panes", "-a", "-F", fmt)

        if not output:
            return []

        panes = []
        for line in output.strip().split("\n"):
            if not line:
                continue
            parts = line.split(_FIELD_SEP)
            if len(parts) < len(_PANE_FIELDS):
                logger.warning(f"Failed to parse pane line: {line!r}")
                continue
            try:
                panes.append({
                    "pane_id": parts[0],
                    "session_name": parts[1],
                    "window_id": parts[2],
                    "window_active": parts[3] == "1",
                    "active": parts[4] == "1",
                    "width": int(parts[5]),
                    "height": int(parts[6]),
                    "window_width": int(parts[7]),
                    "window_panes": int(parts[8]),
                    "pane_pid": _parse_int(parts[9]),
                    "dead": parts[10] == "1",
                    "dead_status": _parse_int(parts[11]),
                    "title": parts[12],
                    "is_surface": parts[13] == "1",
                    "is_scratch": parts[14] == "1",
                })
            except (ValueError, IndexError) as e:
                logger.warning(f"Failed to parse pane line: {line!r}: {e}")

        return panes

    async def display(self, fmt: str, target: str | None = None) -> str | None:
        """Expand a format string against the current (or target) pane."""
        args = ["display-message", "-p"]
        if target:
            args.extend(["-t", target])
        args.append(fmt)
        output = await self.run(*args)
        if output is None:
            return None
        return output.strip()

    async def get_active_pane(self) -> str | None:
        return await self.display("#{pane_id}") or None

    async def get_active_window(self) -> str | None:
        return await self.display("#{window_id}") or None

    async def has_session(self, name: str) -> bool:
        return await self.run("has-session", "-t", f"={name}") is not None

    async def new_session(self, name: str, argv: Sequence[str]) -> bool:
        """Create a detached session whose first window runs argv."""
        result = await self.run("new-session", "-d", "-s", name, "-n", "keep", *argv)
        return result is not None

    async def kill_session(self, name: str) -> bool:
        return await self.run("kill-session", "-t", f"={name}") is not None

    async def new_window(
        self,
        session: str,
        argv: Sequence[str],
        env: Mapping[str, str] | None = None,
        cwd: str | None = None,
    ) -> tuple[str, int | None] | None:
        """Start argv in a new detached window of a session.

        Returns:
            (pane_id, pane_pid) on success, None on failure.
        """
        args = ["new-window", "-d", "-P", "-F", f"#{{pane_id}}{_FIELD_SEP}#{{pane_pid}}", "-t", f"{session}:"]
        if cwd:
            args.extend(["-c", cwd])
        for key, value in (env or {}).items():
            args.extend(["-e", f"{key}={value}"])
        args.extend(argv)

        output = await self.run(*args)
        if not output:
            return None
        pane_id, _, pid = output.strip().partition(_FIELD_SEP)
        if not pane_id:
            return None
        return pane_id, _parse_int(pid)

    async def split_window(
        self,
        target: str | None,
        side: str,
        width: int,
        argv: Sequence[str],
    ) -> str | None:
        """Split a pane horizontally without moving focus.

        Args:
            target: Pane to split (None = current pane)
            side: "left" or "right"
            width: Width of the new pane in columns
            argv: Command for the new pane

        Returns:
            New pane ID, or None on failure.
        """
        args = ["split-window", "-h", "-d", "-P", "-F", "#{pane_id}", "-l", str(width)]
        if side == "left":
            args.append("-b")
        if target:
            args.extend(["-t", target])
        args.extend(argv)
        output = await self.run(*args)
        if not output:
            return None
        return output.strip() or None

    async def swap_pane(self, source: str, target: str) -> bool:
        """Swap two panes in place, keeping the active pane unchanged."""
        return await self.run("swap-pane", "-d", "-s", source, "-t", target) is not None

    async def break_pane(self, pane_id: str, session: str) -> bool:
        """Move a pane into its own detached window in another session."""
        return await self.run("break-pane", "-d", "-s", pane_id, "-t", f"{session}:") is not None

    async def kill_pane(self, pane_id: str) -> bool:
        return await self.run("kill-pane", "-t", pane_id) is not None

    async def resize_pane(self, pane_id: str, width: int | None = None, height: int | None = None) -> bool:
        args = ["resize-pane", "-t", pane_id]
        if width is not None:
            args.extend(["-x", str(width)])
        if height is not None:
            args.extend(["-y", str(height)])
        return await self.run(*args) is not None

    async def select_pane(self, pane_id: str) -> bool:
        return await self.run("select-pane", "-t", pane_id) is not None

    async def set_pane_option(self, pane_id: str, option: str, value: str) -> bool:
        return await self.run("set-option", "-p", "-t", pane_id, option, value) is not None

    async def send_keys(self, pane_id: str, *keys: str) -> bool:
        return await self.run("send-keys", "-t", pane_id, *keys) is not None

    async def copy_mode(self, pane_id: str) -> bool:
        return await self.run("copy-mode", "-t", pane_id) is not None

    async def cancel_mode(self, pane_id: str) -> bool:
        """Leave copy mode if the pane is in it."""
        in_mode = await self.display("#{pane_in_mode}", pane_id)
        if in_mode != "1":
            return True
        return await self.send_keys(pane_id, "-X", "cancel")
