"""MAC-keyed registry of device sessions."""

from __future__ import annotations

from typing import Iterator

from ..protocol.session import DeviceSession


class DeviceRegistry:
    """Holds at most one session per device MAC."""

    def __init__(self) -> None:
        self._sessions: dict[bytes, DeviceSession] = {}

    def __contains__(self, mac: object) -> bool:
        return mac in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def __iter__(self) -> Iterator[DeviceSession]:
        return iter(list(self._sessions.values()))

    @property
    def sessions(self) -> list[DeviceSession]:
        return list(self._sessions.values())

    def get(self, mac: bytes) -> DeviceSession | None:
        return self._sessions.get(bytes(mac))

    def add(self, session: DeviceSession) -> bool:
        """Register a session. Returns False if its MAC is already known."""
        if session.mac in self._sessions:
            return False
        self._sessions[session.mac] = session
        return True

    def remove(self, mac: bytes) -> DeviceSession | None:
        return self._sessions.pop(bytes(mac), None)

    def clear(self) -> None:
        self._sessions.clear()
