"""
Reader capability consumed by the tag logic.

Every call is blocking. Poll-type calls take a timeout in milliseconds and a
timeout is reported exactly like an absent tag (``None`` / ``False``). There
is no cancellation of a call once issued.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class KeyType(str, Enum):
    A = "A"
    B = "B"


class Protocol(str, Enum):
    ISO14443A = "ISO 14443A"
    ISO14443B = "ISO 14443B"
    FELICA = "FeliCa"


@dataclass(frozen=True)
class PollResult:
    """Raw anti-collision response for a detected target."""
    uid: bytes
    atqa: int = 0
    sak: int = 0

    @property
    def uid_len(self) -> int:
        return len(self.uid)


class Reader(ABC):
    """Synchronous reader capability (poll, authenticate, read, write, reselect)."""

    @abstractmethod
    def poll_target(self, timeout_ms: int,
                    protocol: Protocol = Protocol.ISO14443A) -> Optional[PollResult]:
        """Wait for a target; ``None`` on timeout."""

    @abstractmethod
    def authenticate_block(self, uid: bytes, block: int, key_type: KeyType, key: bytes) -> bool:
        """Run the MIFARE Classic authentication for ``block``."""

    @abstractmethod
    def read_block(self, block: int) -> Optional[bytes]:
        """Read a 16-byte Classic block; ``None`` on failure."""

    @abstractmethod
    def write_block(self, block: int, data: bytes) -> bool:
        """Write a 16-byte Classic block."""

    @abstractmethod
    def read_page(self, page: int) -> Optional[bytes]:
        """Read a 4-byte Ultralight page; ``None`` on failure."""

    @abstractmethod
    def write_page(self, page: int, data: bytes) -> bool:
        """Write a 4-byte Ultralight page."""

    @abstractmethod
    def reselect(self) -> bool:
        """Re-establish field presence after a failed authentication."""

    def close(self):
        """Release the underlying device, if any."""
