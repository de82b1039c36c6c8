"""
In-memory reader with virtual tags.

Virtual Classic tags authenticate against the keys stored in their sector
trailers and, like real cards, refuse further authentication after a failed
attempt until the reader reselects them. Key A always reads back as zeros.
"""

import logging
from collections import Counter
from typing import Optional, Union

from nfctool.reader.base import KeyType, PollResult, Protocol, Reader
from nfctool.rfid.mifare import (
    BYTES_PER_BLOCK, BYTES_PER_PAGE, KEY_A_LENGTH, KEY_A_OFFSET,
    block_to_sector, data_blocks_for_sector, is_sector_trailer, num_sectors, parse_sector_trailer,
    sector_trailer_block, total_blocks,
)
from nfctool.rfid.ndef import build_uri_message, pad_to_units
from nfctool.rfid.tag_types import TagType

logger = logging.getLogger(__name__)

FACTORY_KEY = bytes.fromhex("FFFFFFFFFFFF")
TRANSPORT_ACCESS_BITS = bytes.fromhex("FF078069")
MAD_KEY_A = bytes.fromhex("A0A1A2A3A4A5")
MAD_KEY_B = bytes.fromhex("B0B1B2B3B4B5")
MAD_ACCESS_BITS = bytes.fromhex("787788C1")
NDEF_KEY_A = bytes.fromhex("D3F7D3F7D3F7")
NDEF_ACCESS_BITS = bytes.fromhex("7F078840")

_CLASSIC_IDENTITY = {
    TagType.CLASSIC_MINI: (0x0004, 0x09),
    TagType.CLASSIC_1K: (0x0004, 0x08),
    TagType.CLASSIC_4K: (0x0002, 0x18),
}


def _trailer(key_a: bytes, access_bits: bytes, key_b: bytes) -> bytes:
    return key_a + access_bits + key_b


class VirtualClassicTag:
    """A MIFARE Classic card backed by a list of 16-byte blocks."""

    def __init__(self, uid: bytes, tag_type: TagType = TagType.CLASSIC_1K):
        self.uid = bytes(uid)
        self.tag_type = tag_type
        self.atqa, self.sak = _CLASSIC_IDENTITY[tag_type]
        self.blocks = [bytearray(BYTES_PER_BLOCK) for _ in range(total_blocks(tag_type))]
        self.blocks[0][0:len(self.uid)] = self.uid
        for sector in range(num_sectors(tag_type)):
            trailer = sector_trailer_block(sector)
            if trailer < len(self.blocks):
                self.blocks[trailer][:] = _trailer(FACTORY_KEY, TRANSPORT_ACCESS_BITS, FACTORY_KEY)
        self.failing_reads: set[int] = set()
        self.failing_writes: set[int] = set()
        self.reset()

    def reset(self):
        self.authenticated_sector: Optional[int] = None
        self.halted = False

    def set_sector_keys(self, sector: int, key_a: bytes, key_b: bytes,
                        access_bits: bytes = TRANSPORT_ACCESS_BITS):
        self.blocks[sector_trailer_block(sector)][:] = _trailer(key_a, access_bits, key_b)

    def authenticate(self, block: int, key_type: KeyType, key: bytes) -> bool:
        if self.halted or block >= len(self.blocks):
            return False
        sector = block_to_sector(block)
        trailer = parse_sector_trailer(bytes(self.blocks[sector_trailer_block(sector)]))
        expected = trailer["key_a"] if key_type == KeyType.A else trailer["key_b"]
        if bytes(key) == expected:
            self.authenticated_sector = sector
            return True
        self.authenticated_sector = None
        self.halted = True
        return False

    def _accessible(self, block: int) -> bool:
        return (not self.halted and block < len(self.blocks)
                and self.authenticated_sector == block_to_sector(block))

    def read(self, block: int) -> Optional[bytes]:
        if not self._accessible(block) or block in self.failing_reads:
            return None
        data = bytearray(self.blocks[block])
        if is_sector_trailer(block):
            data[KEY_A_OFFSET:KEY_A_OFFSET + KEY_A_LENGTH] = bytes(KEY_A_LENGTH)
        return bytes(data)

    def write(self, block: int, data: bytes) -> bool:
        if block == 0 or not self._accessible(block) or block in self.failing_writes:
            return False
        if len(data) != BYTES_PER_BLOCK:
            return False
        self.blocks[block][:] = data
        return True

    def data_block_bytes(self, sector: int) -> bytes:
        """Concatenated data blocks of a sector, bypassing authentication."""
        return b"".join(bytes(self.blocks[b]) for b in data_blocks_for_sector(sector))

    @classmethod
    def ndef_formatted(cls, uid: bytes, message: bytes,
                       tag_type: TagType = TagType.CLASSIC_1K) -> "VirtualClassicTag":
        """A tag formatted for NDEF: MAD in sector 0, message from sector 1 on."""
        tag = cls(uid, tag_type)
        tag.set_sector_keys(0, MAD_KEY_A, MAD_KEY_B, MAD_ACCESS_BITS)
        mad = bytearray(32)
        mad[0:2] = bytes([0x14, 0x01])  # CRC (unchecked) + info byte
        for sector in range(1, 16):
            tag.set_sector_keys(sector, NDEF_KEY_A, FACTORY_KEY, NDEF_ACCESS_BITS)
            offset = sector * 2
            mad[offset:offset + 2] = bytes([0x03, 0xE1])
        tag.blocks[1][:] = mad[0:16]
        tag.blocks[2][:] = mad[16:32]
        data = pad_to_units(message, BYTES_PER_BLOCK)
        sector = 1
        while data:
            for i in range(3):
                chunk, data = data[:BYTES_PER_BLOCK], data[BYTES_PER_BLOCK:]
                tag.blocks[sector * 4 + i][:] = chunk.ljust(BYTES_PER_BLOCK, b"\x00")
            sector += 1
        return tag


class VirtualUltralightTag:
    """An Ultralight / NTAG card backed by a list of 4-byte pages."""

    atqa = 0x0044
    sak = 0x00
    tag_type = TagType.ULTRALIGHT

    def __init__(self, uid: bytes, page_count: int = 45):
        self.uid = bytes(uid)
        self.pages = [bytearray(BYTES_PER_PAGE) for _ in range(page_count)]
        self.pages[0][0:3] = self.uid[0:3]
        self.pages[1][0:4] = self.uid[3:7].ljust(4, b"\x00")
        # capability container: NDEF magic, v1.0, data area size / 8, read/write
        self.pages[3][:] = bytes([0xE1, 0x10, ((page_count - 4) * 4) // 8, 0x00])
        self.read_only_pages: set[int] = {0, 1}
        self.failing_reads: set[int] = set()

    def reset(self):
        pass

    def read(self, page: int) -> Optional[bytes]:
        if page >= len(self.pages) or page in self.failing_reads:
            return None
        return bytes(self.pages[page])

    def write(self, page: int, data: bytes) -> bool:
        if page >= len(self.pages) or page in self.read_only_pages or len(data) != BYTES_PER_PAGE:
            return False
        self.pages[page][:] = data
        return True

    def user_memory(self) -> bytes:
        return b"".join(bytes(p) for p in self.pages[4:])

    @classmethod
    def with_message(cls, uid: bytes, message: bytes, page_count: int = 45) -> "VirtualUltralightTag":
        tag = cls(uid, page_count)
        data = pad_to_units(message, BYTES_PER_PAGE)
        for i in range(0, len(data), BYTES_PER_PAGE):
            tag.pages[4 + i // BYTES_PER_PAGE][:] = data[i:i + BYTES_PER_PAGE]
        return tag


class VirtualTarget:
    """A non-14443A target that only answers polls (ISO 14443B, FeliCa)."""

    def __init__(self, uid: bytes):
        self.uid = bytes(uid)
        self.atqa = 0
        self.sak = 0

    def reset(self):
        pass


VirtualTag = Union[VirtualClassicTag, VirtualUltralightTag, VirtualTarget]


class SimulatedReader(Reader):
    """Reader whose field holds at most one virtual tag per protocol."""

    def __init__(self):
        self._field: dict[Protocol, VirtualTag] = {}
        self._selected: Optional[VirtualTag] = None
        self.calls: Counter = Counter()

    def place(self, tag: VirtualTag, protocol: Protocol = Protocol.ISO14443A):
        self._field[protocol] = tag
        logger.debug(f"Placed {type(tag).__name__} {tag.uid.hex().upper()} ({protocol.value})")

    def remove(self, protocol: Protocol = Protocol.ISO14443A):
        tag = self._field.pop(protocol, None)
        if tag is not None and tag is self._selected:
            self._selected = None

    @property
    def tag(self) -> Optional[VirtualTag]:
        return self._field.get(Protocol.ISO14443A)

    def poll_target(self, timeout_ms: int,
                    protocol: Protocol = Protocol.ISO14443A) -> Optional[PollResult]:
        self.calls["poll_target"] += 1
        tag = self._field.get(protocol)
        if tag is None:
            return None
        tag.reset()
        if protocol == Protocol.ISO14443A:
            self._selected = tag
        return PollResult(uid=tag.uid, atqa=tag.atqa, sak=tag.sak)

    def reselect(self) -> bool:
        self.calls["reselect"] += 1
        tag = self.tag
        if tag is None:
            self._selected = None
            return False
        tag.reset()
        self._selected = tag
        return True

    def _classic(self) -> Optional[VirtualClassicTag]:
        tag = self._selected
        if isinstance(tag, VirtualClassicTag) and tag is self.tag:
            return tag
        return None

    def _ultralight(self) -> Optional[VirtualUltralightTag]:
        tag = self._selected
        if isinstance(tag, VirtualUltralightTag) and tag is self.tag:
            return tag
        return None

    def authenticate_block(self, uid: bytes, block: int, key_type: KeyType, key: bytes) -> bool:
        self.calls["authenticate_block"] += 1
        tag = self._classic()
        if tag is None or tag.uid != bytes(uid):
            return False
        return tag.authenticate(block, key_type, key)

    def read_block(self, block: int) -> Optional[bytes]:
        self.calls["read_block"] += 1
        tag = self._classic()
        return tag.read(block) if tag else None

    def write_block(self, block: int, data: bytes) -> bool:
        self.calls["write_block"] += 1
        tag = self._classic()
        return tag.write(block, bytes(data)) if tag else False

    def read_page(self, page: int) -> Optional[bytes]:
        self.calls["read_page"] += 1
        tag = self._ultralight()
        return tag.read(page) if tag else None

    def write_page(self, page: int, data: bytes) -> bool:
        self.calls["write_page"] += 1
        tag = self._ultralight()
        return tag.write(page, bytes(data)) if tag else False


def demo_reader() -> SimulatedReader:
    """A simulated reader holding an NDEF-formatted Classic 1K tag."""
    reader = SimulatedReader()
    tag = VirtualClassicTag.ndef_formatted(
        bytes.fromhex("DEADBEEF"), build_uri_message("https://example.com/nfctool"))
    reader.place(tag)
    reader.place(VirtualTarget(bytes.fromhex("0102030405060708")), Protocol.FELICA)
    return reader

