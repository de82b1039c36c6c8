"""
Known-key dictionary and brute-force sector authentication.

Keys are tried in dictionary order; that order is part of the key-audit
output. After a failed trial the reader's authentication state is undefined,
so the field is re-established (reselect) before the next trial.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from nfctool.errors import NotPresentError
from nfctool.reader.base import KeyType, Reader
from nfctool.rfid.tag_types import format_hex

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class KnownKey:
    key: bytes
    label: str

    @property
    def hex(self) -> str:
        return format_hex(self.key)


KNOWN_KEYS: tuple[KnownKey, ...] = (
    KnownKey(bytes.fromhex("FFFFFFFFFFFF"), "Factory default"),
    KnownKey(bytes.fromhex("A0A1A2A3A4A5"), "MAD key A"),
    KnownKey(bytes.fromhex("B0B1B2B3B4B5"), "MAD key B"),
    KnownKey(bytes.fromhex("D3F7D3F7D3F7"), "NFC Forum / NDEF"),
    KnownKey(bytes.fromhex("000000000000"), "Zeros"),
    KnownKey(bytes.fromhex("A0B0C0D0E0F0"), "Common transport"),
    KnownKey(bytes.fromhex("AABBCCDDEEFF"), "Common transport"),
    KnownKey(bytes.fromhex("4D3A99C351DD"), "Infineon"),
    KnownKey(bytes.fromhex("1A982C7E459A"), "Gallagher"),
    KnownKey(bytes.fromhex("714C5C886E97"), "Samsung/Philips"),
)

DEFAULT_KEY = KNOWN_KEYS[0]


@dataclass(frozen=True)
class SectorAuth:
    """Which dictionary key opened a sector."""
    key_type: KeyType
    key_index: int
    key: KnownKey


class KeyRecoveryEngine:
    """Tries the known-key dictionary against a single tag."""

    def __init__(self, reader: Reader, uid: bytes, keys: tuple[KnownKey, ...] = KNOWN_KEYS):
        self.reader = reader
        self.uid = uid
        self.keys = keys
        self._needs_reselect = False

    def _settle(self):
        if self._needs_reselect:
            if not self.reader.reselect():
                raise NotPresentError("Tag not present.")
            self._needs_reselect = False

    def try_key(self, block: int, key_type: KeyType, key: bytes) -> bool:
        """Single authentication attempt; marks the reader for reselect on failure."""
        self._settle()
        if self.reader.authenticate_block(self.uid, block, key_type, key):
            return True
        self._needs_reselect = True
        return False

    def try_authenticate(self, block: int, key_type: KeyType) -> Optional[int]:
        """
        Try every dictionary key against ``block``.

        Returns the index of the first key that authenticates, or None once
        the dictionary is exhausted.
        """
        for index, known in enumerate(self.keys):
            if self.try_key(block, key_type, known.key):
                logger.debug(f"Block {block} opened with key {key_type.value} #{index} ({known.hex})")
                return index
        return None

    def authenticate_sector(self, block: int) -> Optional[SectorAuth]:
        """Key A first, then Key B, taking the first success of either."""
        for key_type in (KeyType.A, KeyType.B):
            index = self.try_authenticate(block, key_type)
            if index is not None:
                return SectorAuth(key_type, index, self.keys[index])
        logger.warning(f"No known key opened the sector of block {block}")
        return None

    def authenticate_default_first(self, block: int) -> Optional[SectorAuth]:
        """Factory-default Key A directly, then the full Key A dictionary."""
        if self.try_key(block, KeyType.A, DEFAULT_KEY.key):
            return SectorAuth(KeyType.A, 0, DEFAULT_KEY)
        index = self.try_authenticate(block, KeyType.A)
        if index is None:
            return None
        return SectorAuth(KeyType.A, index, self.keys[index])

    def invalidate(self):
        """Force a reselect before the next attempt (e.g. after a rejected write)."""
        self._needs_reselect = True
