"""
Memory dump and key audit procedures.

Dump rows are rendered as fixed-width columns:
    index | hex bytes | ASCII-or-dot
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from nfctool.reader.base import KeyType, Reader
from nfctool.rfid.keys import KeyRecoveryEngine, KnownKey
from nfctool.rfid.mifare import (
    BYTES_PER_BLOCK, BYTES_PER_PAGE, UL_MAX_PAGES,
    is_sector_start, num_sectors, sector_last_block, sector_to_block, total_blocks,
)
from nfctool.rfid.tag_types import TagType

logger = logging.getLogger(__name__)


class RowStatus(str, Enum):
    OK = "ok"
    AUTH_FAILED = "auth_failed"
    READ_ERROR = "read_error"


# Fixed-width rows as printed by the serial firmware
_STATUS_ROWS = {
    RowStatus.AUTH_FAILED: " {index:>3} | AUTH FAILED" + " " * 38 + "|",
    RowStatus.READ_ERROR: "{index:>3} | READ ERROR" + " " * 40 + "|",
}

# unit -> (header, rule, separator after the index column)
_LAYOUTS = {
    "Blk": ("Blk | Data" + " " * 42 + "| ASCII", "----+" + "-" * 50 + "+" + "-" * 18, " | "),
    "Page": ("Page | Data        | ASCII", "-----+-------------+------", "  | "),
}


def ascii_column(data: bytes) -> str:
    return "".join(chr(b) if 0x20 <= b <= 0x7E else "." for b in data)


@dataclass
class DumpRow:
    index: int
    status: RowStatus
    data: Optional[bytes] = None

    def format(self, separator: str = " | ") -> str:
        if self.status == RowStatus.OK:
            hex_bytes = "".join(f"{b:02X} " for b in self.data)
            return f"{self.index:>3}{separator}{hex_bytes}| {ascii_column(self.data)}"
        return _STATUS_ROWS[self.status].format(index=self.index)

    def to_dict(self) -> dict:
        return {
            "index": self.index,
            "status": self.status.value,
            "data": self.data.hex().upper() if self.data is not None else None,
        }


@dataclass
class MemoryDump:
    title: str
    unit: str  # "Blk" or "Page"
    unit_size: int
    rows: list[DumpRow] = field(default_factory=list)

    def format_lines(self) -> list[str]:
        header, rule, separator = _LAYOUTS[self.unit]
        return [f"--- {self.title} ---", header, rule] + [row.format(separator) for row in self.rows]

    def to_dict(self) -> dict:
        return {
            "title": self.title,
            "unit": self.unit,
            "unit_size": self.unit_size,
            "rows": [row.to_dict() for row in self.rows],
        }


def dump_classic(reader: Reader, engine: KeyRecoveryEngine, tag_type: TagType) -> MemoryDump:
    """Read every block, authenticating once per sector (Key A then Key B)."""
    dump = MemoryDump("MIFARE Classic Memory Dump", "Blk", BYTES_PER_BLOCK)
    total = total_blocks(tag_type)
    block = 0
    while block < total:
        if is_sector_start(block) and engine.authenticate_sector(block) is None:
            last = min(sector_last_block(block), total - 1)
            dump.rows.extend(DumpRow(b, RowStatus.AUTH_FAILED) for b in range(block, last + 1))
            block = last + 1
            continue
        data = reader.read_block(block)
        if data is None:
            logger.warning(f"Read failed on block {block}")
            dump.rows.append(DumpRow(block, RowStatus.READ_ERROR))
        else:
            dump.rows.append(DumpRow(block, RowStatus.OK, bytes(data)))
        block += 1
    return dump


def dump_ultralight(reader: Reader, max_pages: int = UL_MAX_PAGES) -> MemoryDump:
    """Read pages from 0 until the first failed read."""
    dump = MemoryDump("Ultralight / NTAG Memory Dump", "Page", BYTES_PER_PAGE)
    for page in range(max_pages):
        data = reader.read_page(page)
        if data is None:
            break
        dump.rows.append(DumpRow(page, RowStatus.OK, bytes(data)))
    return dump


# ──────────────────────────────────────────────
# Key audit
# ──────────────────────────────────────────────

NONE_MATCHED = "-- none matched --"


@dataclass
class SectorKeys:
    sector: int
    first_block: int
    key_a: Optional[KnownKey] = None
    key_b: Optional[KnownKey] = None

    @staticmethod
    def _column(key: Optional[KnownKey], key_type: KeyType) -> str:
        if key is None:
            return NONE_MATCHED
        return f"{key.hex} ({key_type.value})"

    def format(self) -> str:
        key_a = self._column(self.key_a, KeyType.A)
        if self.key_a is None:
            key_a += "    "
        return f"{self.sector:>2}   | {key_a} | {self._column(self.key_b, KeyType.B)}"

    def to_dict(self) -> dict:
        return {
            "sector": self.sector,
            "first_block": self.first_block,
            "key_a": self.key_a.key.hex().upper() if self.key_a else None,
            "key_b": self.key_b.key.hex().upper() if self.key_b else None,
        }


@dataclass
class KeyAudit:
    keys_tested: int
    sectors: list[SectorKeys] = field(default_factory=list)

    def format_lines(self) -> list[str]:
        return [
            "--- MIFARE Classic Key Audit ---",
            f"Sect | {'Key A found':<24} | Key B found",
            f"-----+{'-' * 26}+{'-' * 26}",
        ] + [s.format() for s in self.sectors] + [
            f"Keys tested: {self.keys_tested} known keys x 2 (A+B) per sector",
        ]

    def to_dict(self) -> dict:
        return {
            "keys_tested": self.keys_tested,
            "sectors": [s.to_dict() for s in self.sectors],
        }


def audit_keys(engine: KeyRecoveryEngine, tag_type: TagType) -> KeyAudit:
    """Run two independent dictionary passes (Key A, Key B) for every sector."""
    audit = KeyAudit(keys_tested=len(engine.keys))
    for sector in range(num_sectors(tag_type)):
        first = sector_to_block(sector)
        found = SectorKeys(sector=sector, first_block=first)
        index_a = engine.try_authenticate(first, KeyType.A)
        if index_a is not None:
            found.key_a = engine.keys[index_a]
        index_b = engine.try_authenticate(first, KeyType.B)
        if index_b is not None:
            found.key_b = engine.keys[index_b]
        if index_a is None and index_b is None:
            logger.warning(f"Sector {sector}: no known key matched")
        audit.sectors.append(found)
    return audit
