from __future__ import annotations

from collections.abc import Iterator

from yoswit_bridge.utils import normalize_mac


class ReplayCache:
    """Last raw status tail seen per module MAC.

    Replayed through the decoder whenever a hub client subscribes, so late
    subscribers get current state without waiting for the next broadcast.
    Last write wins; entries never expire.
    """

    def __init__(self) -> None:
        self._tails: dict[str, str] = {}

    def update(self, mac_address: str, tail: str) -> None:
        self._tails[normalize_mac(mac_address)] = tail

    def get(self, mac_address: str) -> str | None:
        return self._tails.get(normalize_mac(mac_address))

    def items(self) -> list[tuple[str, str]]:
        """Snapshot of ``(mac_address, tail)`` pairs, safe to iterate while updating."""
        return list(self._tails.items())

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._tails))

    def __len__(self) -> int:
        return len(self._tails)

    def __contains__(self, mac_address: object) -> bool:
        return isinstance(mac_address, str) and normalize_mac(mac_address) in self._tails
