"""
Clone buffer capture and apply.

Capture mirrors the dump walk but always yields a full, contiguous snapshot:
sectors that fail authentication and blocks that fail to read are zero-filled.

Apply never touches block 0 or sector trailers on Classic tags, and never
touches pages 0-3 on Ultralight / NTAG tags.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from nfctool.config import CLONE_BUFFER_CAPACITY
from nfctool.errors import OversizeInputError
from nfctool.reader.base import Reader
from nfctool.rfid.keys import KeyRecoveryEngine
from nfctool.rfid.mifare import (
    BYTES_PER_BLOCK, BYTES_PER_PAGE, UL_FIRST_USER_PAGE, UL_MAX_PAGES,
    block_to_byte_offset, block_to_sector, is_sector_start, is_sector_trailer,
    sector_first_block, sector_last_block, total_blocks,
)
from nfctool.rfid.tag_types import TagFamily, TagType, format_hex, tag_family

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CloneBuffer:
    """A single in-memory snapshot of a source tag."""
    tag_type: TagType
    source_uid: bytes
    data: bytes
    auth_failed_sectors: tuple[int, ...] = ()
    read_errors: tuple[int, ...] = ()

    @property
    def length(self) -> int:
        return len(self.data)

    @property
    def unit_size(self) -> int:
        if tag_family(self.tag_type) == TagFamily.CLASSIC:
            return BYTES_PER_BLOCK
        return BYTES_PER_PAGE

    @property
    def unit_count(self) -> int:
        return self.length // self.unit_size

    def unit(self, index: int) -> bytes:
        start = index * self.unit_size
        return self.data[start:start + self.unit_size]

    def to_dict(self) -> dict:
        return {
            "tag_type": self.tag_type.value,
            "source_uid": format_hex(self.source_uid),
            "length": self.length,
            "units": self.unit_count,
            "unit_size": self.unit_size,
            "auth_failed_sectors": list(self.auth_failed_sectors),
            "read_errors": list(self.read_errors),
        }


@dataclass
class ApplyResult:
    unit: str  # "block" or "page"
    written: int = 0
    skipped_sectors: list[int] = field(default_factory=list)
    failed: list[int] = field(default_factory=list)
    aborted_at: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "unit": self.unit,
            "written": self.written,
            "skipped_sectors": self.skipped_sectors,
            "failed": self.failed,
            "aborted_at": self.aborted_at,
        }


# ──────────────────────────────────────────────
# Capture (source tag -> buffer)
# ──────────────────────────────────────────────

def capture_classic(reader: Reader, engine: KeyRecoveryEngine, tag_type: TagType, uid: bytes,
                    capacity: int = CLONE_BUFFER_CAPACITY) -> CloneBuffer:
    total = total_blocks(tag_type)
    if total * BYTES_PER_BLOCK > capacity:
        raise OversizeInputError(
            f"{tag_type.value} needs {total * BYTES_PER_BLOCK} bytes, clone buffer holds {capacity}"
        )
    buf = bytearray(total * BYTES_PER_BLOCK)
    auth_failed = []
    read_errors = []
    block = 0
    while block < total:
        if is_sector_start(block) and engine.authenticate_sector(block) is None:
            # buffer is zero-initialised, so skipping the sector zero-fills it
            auth_failed.append(block_to_sector(block))
            block = sector_last_block(block) + 1
            continue
        data = reader.read_block(block)
        if data is None:
            logger.warning(f"Read failed on block {block}, zero-filled")
            read_errors.append(block)
        else:
            offset = block_to_byte_offset(block)
            buf[offset:offset + BYTES_PER_BLOCK] = bytes(data)[:BYTES_PER_BLOCK]
        block += 1
    logger.info(f"Captured {total} blocks, {len(auth_failed)} sector(s) zero-filled")
    return CloneBuffer(tag_type, bytes(uid), bytes(buf), tuple(auth_failed), tuple(read_errors))


def capture_ultralight(reader: Reader, uid: bytes, max_pages: int = UL_MAX_PAGES,
                       capacity: int = CLONE_BUFFER_CAPACITY) -> CloneBuffer:
    buf = bytearray()
    for page in range(max_pages):
        data = reader.read_page(page)
        if data is None:
            break
        if len(buf) + BYTES_PER_PAGE > capacity:
            raise OversizeInputError(f"Tag memory exceeds the {capacity}-byte clone buffer")
        buf += bytes(data)[:BYTES_PER_PAGE]
    logger.info(f"Captured {len(buf) // BYTES_PER_PAGE} pages")
    return CloneBuffer(TagType.ULTRALIGHT, bytes(uid), bytes(buf))


# ──────────────────────────────────────────────
# Apply (buffer -> target tag)
# ──────────────────────────────────────────────

def clone_write_targets(block_count: int) -> list[int]:
    """Classic blocks eligible for writing: everything but block 0 and trailers."""
    return [b for b in range(1, block_count) if not is_sector_trailer(b)]


def apply_classic(reader: Reader, engine: KeyRecoveryEngine, buffer: CloneBuffer) -> ApplyResult:
    """
    Write data blocks sector by sector.

    Each sector is authenticated on its first writable block (default key,
    then the Key A dictionary). A sector that fails authentication, or whose
    write is rejected, is skipped to its end; the clone continues.
    """
    result = ApplyResult(unit="block")
    authenticated = None
    resume_at = 0
    for block in clone_write_targets(buffer.unit_count):
        if block < resume_at:
            continue
        first = sector_first_block(block)
        if first != authenticated:
            if engine.authenticate_default_first(block) is None:
                logger.warning(f"Auth failed on target block {block}")
                result.skipped_sectors.append(block_to_sector(block))
                resume_at = sector_last_block(block) + 1
                continue
            authenticated = first
        if reader.write_block(block, buffer.unit(block)):
            result.written += 1
        else:
            logger.warning(f"Write failed at block {block}, skipping rest of sector")
            result.failed.append(block)
            engine.invalidate()
            authenticated = None
            resume_at = sector_last_block(block) + 1
    logger.info(f"Cloned {result.written} data blocks")
    return result


def apply_ultralight(reader: Reader, buffer: CloneBuffer) -> ApplyResult:
    """Write pages from 4 onward, stopping at the first rejected page."""
    result = ApplyResult(unit="page")
    for page in range(UL_FIRST_USER_PAGE, buffer.unit_count):
        if not reader.write_page(page, buffer.unit(page)):
            logger.warning(f"Write failed at page {page} (may be config/lock page)")
            result.failed.append(page)
            result.aborted_at = page
            break
        result.written += 1
    logger.info(f"Cloned {result.written} pages")
    return result
