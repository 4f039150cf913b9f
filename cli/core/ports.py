"""Host port allocation for deployed containers."""

from __future__ import annotations

import threading

from cli.core.exceptions import AllocatorExhausted


class PortAllocator:
    """Hands out ports from ``[port_min, port_max]`` without collisions.

    Scanning starts just after the last issued port and wraps at the end of
    the range, so a released port is only reused once the scan comes back
    around to it.
    """

    def __init__(self, port_min: int, port_max: int) -> None:
        if port_min > port_max:
            raise ValueError(f"Empty port range {port_min}-{port_max}")
        self.port_min = port_min
        self.port_max = port_max
        self._used: set[int] = set()
        self._last: int | None = None
        self._lock = threading.Lock()

    @property
    def size(self) -> int:
        return self.port_max - self.port_min + 1

    @property
    def in_use(self) -> frozenset[int]:
        with self._lock:
            return frozenset(self._used)

    def allocate(self) -> int:
        with self._lock:
            start = self.port_min if self._last is None else self._last + 1
            for step in range(self.size):
                port = self.port_min + (start - self.port_min + step) % self.size
                if port not in self._used:
                    self._used.add(port)
                    self._last = port
                    return port
        raise AllocatorExhausted(
            f"All {self.size} ports in {self.port_min}-{self.port_max} are in use"
        )

    def reserve(self, port: int) -> bool:
        """Mark *port* as held. Returns False if it is out of range or taken."""
        if not self.port_min <= port <= self.port_max:
            return False
        with self._lock:
            if port in self._used:
                return False
            self._used.add(port)
            return True

    def release(self, port: int | None) -> None:
        if port is None:
            return
        with self._lock:
            self._used.discard(port)
