"""Port range allocation for workspaces.

Each workspace owns ``PORT_RANGE_SIZE`` consecutive ports starting at its
base. Allocation scans bases from ``PORT_START`` in steps of
``PORT_RANGE_SIZE`` and accepts the first base that is neither already owned
nor bound by another process. Only the base port is probed; the rest of the
range is assumed free. The allocator reserves nothing: the caller must record
the returned base before another allocation can run.
"""

from __future__ import annotations

import contextlib
import socket
from typing import AbstractSet, Callable

from .errors import ResourceExhaustedError

PORT_RANGE_SIZE = 10
PORT_START = 3000
PORT_MAX = 65000
PROBE_HOST = "127.0.0.1"

PortProbe = Callable[[int], bool]


def port_available(port: int, *, host: str = PROBE_HOST) -> bool:
    """Return true when ``port`` can be bound on ``host`` right now."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        sock.bind((host, port))
    except OSError:
        return False
    finally:
        with contextlib.suppress(OSError):
            sock.close()
    return True


def candidate_bases() -> range:
    """Return every base port the allocator may hand out.

    Example:
        >>> bases = candidate_bases()
        >>> bases[0], bases[1], bases[-1]
        (3000, 3010, 64990)
    """
    return range(PORT_START, PORT_MAX, PORT_RANGE_SIZE)


def allocate_port_range(
    allocated: AbstractSet[int], *, probe: PortProbe | None = None
) -> int:
    """Return the first free port base.

    Args:
        allocated: Bases already owned by workspaces.
        probe: Bind check for a single port; defaults to :func:`port_available`.

    Returns:
        The chosen base port.

    Raises:
        ResourceExhaustedError: No base below ``PORT_MAX`` is free.

    Example:
        >>> allocate_port_range({3000, 3010, 3020}, probe=lambda _port: True)
        3030
    """
    check = probe or port_available
    for base in candidate_bases():
        if base in allocated:
            continue
        if check(base):
            return base
    raise ResourceExhaustedError(
        "no available port range found",
        recovery_hint="delete unused workspaces or free ports above 3000",
    )


def port_range(base: int) -> range:
    """Return the ports owned by a workspace with ``base``.

    Example:
        >>> list(port_range(3000))[-1]
        3009
    """
    return range(base, base + PORT_RANGE_SIZE)
