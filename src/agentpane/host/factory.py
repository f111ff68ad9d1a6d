"""Host factory for creating terminal hosts."""

import logging
import os
import subprocess
from typing import TYPE_CHECKING

from .. import config

if TYPE_CHECKING:
    from .base import Host

logger = logging.getLogger(__name__)


def detect_host_type() -> str | None:
    """Detect terminal host from environment.

    Returns:
        "tmux" if $TMUX is set or a tmux server is reachable, otherwise None
    """
    if os.environ.get("TMUX"):
        return "tmux"
    if is_tmux_available():
        return "tmux"
    return None


def is_tmux_available(socket_path: str | None = None) -> bool:
    """Check if a tmux server is running and reachable.

    Returns:
        True if tmux answers list-sessions.
    """
    cmd = ["tmux"]
    if socket_path:
        cmd.extend(["-S", socket_path])
    cmd.append("list-sessions")
    try:
        result = subprocess.run(cmd, capture_output=True, timeout=2)
        return result.returncode == 0
    except (subprocess.TimeoutExpired, FileNotFoundError):
        return False


def create_host(host_type: str | None = None, socket_path: str | None = None) -> "Host":
    """Create a terminal host.

    Args:
        host_type: Host type ("tmux", "auto"). Default from config.
        socket_path: Tmux socket path. Default from config.

    Returns:
        Host instance

    Raises:
        ValueError: If host type is unknown or cannot be detected
    """
    if host_type is None:
        host_type = config.HOST_TYPE
    if socket_path is None:
        socket_path = config.TMUX_SOCKET_PATH

    if host_type == "auto":
        detected = detect_host_type()
        if detected is None:
            raise ValueError("No supported terminal host detected (is tmux running?)")
        host_type = detected
        logger.info(f"Auto-detected terminal host: {host_type}")

    if host_type == "tmux":
        from .tmux import TmuxHost

        return TmuxHost(socket_path=socket_path)

    raise ValueError(f"Unknown host type: {host_type}")
