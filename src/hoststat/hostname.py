"""Host identity written with every stored row."""

import logging
from pathlib import Path
import socket

logger = logging.getLogger(__name__)


def get_hostname(override: str | None = None, procfs_path: str = "/proc") -> str:
    """Resolve the host identity.

    Order of precedence:
    1. The configured override (HOST environment variable or config value)
    2. ``<procfs>/sys/kernel/hostname``, so a containerised agent with the
       host's /proc mounted reports the host rather than the container
    3. socket.gethostname()

    Args:
        override: Explicit hostname, used unmodified when set
        procfs_path: Mount point of the host's /proc

    Returns:
        The hostname
    """
    if override:
        return override

    path = Path(procfs_path) / "sys" / "kernel" / "hostname"
    try:
        hostname = path.read_text().strip()
    except OSError as e:
        logger.debug("Could not read %s: %s", path, e)
    else:
        if hostname:
            return hostname

    return socket.gethostname()
