"""
Command-level tag operations.

Each operation checks its preconditions before touching the reader, brings
the scanned tag back into the field, and commits to the session state only
once it has succeeded.
"""

import functools
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from nfctool.config import CLONE_BUFFER_CAPACITY, SCAN_TIMEOUT_MS, SCANALL_TIMEOUT_MS
from nfctool.errors import (
    AuthFailedError, NotPresentError, OversizeInputError, PreconditionError, WriteFailedError,
)
from nfctool.reader.base import KeyType, Protocol, Reader
from nfctool.rfid.clone import (
    ApplyResult, CloneBuffer, apply_classic, apply_ultralight, capture_classic, capture_ultralight,
)
from nfctool.rfid.dump import KeyAudit, MemoryDump, audit_keys, dump_classic, dump_ultralight
from nfctool.rfid.keys import KeyRecoveryEngine
from nfctool.rfid.mad import resolve_ndef_sectors
from nfctool.rfid.mifare import (
    BYTES_PER_BLOCK, BYTES_PER_PAGE, UL_FIRST_USER_PAGE, UL_MAX_PAGES,
    data_blocks_for_sector, sector_to_block,
)
from nfctool.rfid.ndef import (
    NdefRecord, build_text_record, build_uri_message, pad_to_units, parse_tlv_stream,
)
from nfctool.rfid.tag_types import TagFamily, TagInfo, TagType, format_hex, identify_tag, tag_family
from nfctool.session.state import SessionState

logger = logging.getLogger(__name__)

NOT_SCANNED = "No tag scanned. Run SCAN first."
NOT_PRESENT = "Tag not present."
NO_TAG_FOUND = "No tag found."
CLONE_EMPTY = "Clone buffer empty. Run CLONE READ first."
WRITE_USAGE = "Usage: WRITE URL <url>  or  WRITE TEXT <text>"

CLASSIC_NDEF_SECTOR = 1
DEFAULT_TEXT_LANGUAGE = "en"


class RecordType(str, Enum):
    URL = "URL"
    TEXT = "TEXT"


class NdefStatus(str, Enum):
    RECORDS = "records"
    NO_MESSAGE = "no_message"
    NO_APPLICATION = "no_application"


# ──────────────────────────────────────────────
# Results
# ──────────────────────────────────────────────

@dataclass
class ProtocolScan:
    protocol: Protocol
    uid: Optional[bytes] = None
    tag: Optional[TagInfo] = None  # set for ISO 14443A only

    @property
    def found(self) -> bool:
        return self.uid is not None

    def to_dict(self) -> dict:
        return {
            "protocol": self.protocol.value,
            "found": self.found,
            "uid": format_hex(self.uid) if self.uid is not None else None,
            "tag": self.tag.to_dict() if self.tag else None,
        }


@dataclass
class NdefReadResult:
    status: NdefStatus
    records: list[NdefRecord] = field(default_factory=list)
    truncated: bool = False
    unparseable: bool = False
    sectors: list[int] = field(default_factory=list)  # Classic NDEF sectors from the MAD

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "records": [r.to_dict() for r in self.records],
            "truncated": self.truncated,
            "unparseable": self.unparseable,
            "sectors": self.sectors,
        }


@dataclass
class WriteResult:
    record_type: RecordType
    content: str
    family: TagFamily
    message_length: int
    units_written: int

    def to_dict(self) -> dict:
        return {
            "record_type": self.record_type.value,
            "content": self.content,
            "family": self.family.value,
            "message_length": self.message_length,
            "units_written": self.units_written,
        }


@dataclass
class CloneWriteResult:
    target: TagInfo
    source_type: TagType
    apply: ApplyResult

    @property
    def family_mismatch(self) -> bool:
        return self.target.family != tag_family(self.source_type)

    def to_dict(self) -> dict:
        return {
            "target": self.target.to_dict(),
            "source_type": self.source_type.value,
            "family_mismatch": self.family_mismatch,
            "result": self.apply.to_dict(),
        }


def exclusive(method):
    """Run ``method`` while holding the session lock."""
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        with self.state.lock:
            return method(self, *args, **kwargs)
    return wrapper


# ──────────────────────────────────────────────
# Service
# ──────────────────────────────────────────────

class TagService:
    """Tag commands bound to one reader and one session."""

    def __init__(self, reader: Reader, state: Optional[SessionState] = None,
                 clone_capacity: int = CLONE_BUFFER_CAPACITY):
        self.reader = reader
        self.state = state if state is not None else SessionState()
        self.clone_capacity = clone_capacity

    def _require_tag(self) -> TagInfo:
        if self.state.tag is None:
            raise PreconditionError(NOT_SCANNED)
        return self.state.tag

    def _reselect(self):
        if not self.reader.reselect():
            raise NotPresentError(NOT_PRESENT)

    # ─── Scanning ───

    @exclusive
    def scan(self, timeout_ms: int = SCAN_TIMEOUT_MS) -> TagInfo:
        """Poll for an ISO 14443A tag and make it the current tag."""
        poll = self.reader.poll_target(timeout_ms)
        if poll is None:
            raise NotPresentError(NO_TAG_FOUND)
        tag = identify_tag(poll.atqa, poll.sak, poll.uid)
        self.state.tag = tag
        logger.info(f"Scanned {tag.name} ({tag.uid_hex})")
        return tag

    @exclusive
    def scan_all(self, timeout_ms: int = SCANALL_TIMEOUT_MS) -> list[ProtocolScan]:
        """Poll ISO 14443A, ISO 14443B and FeliCa in turn."""
        results = []
        for protocol in (Protocol.ISO14443A, Protocol.ISO14443B, Protocol.FELICA):
            poll = self.reader.poll_target(timeout_ms, protocol)
            scan = ProtocolScan(protocol)
            if poll is not None:
                scan.uid = poll.uid
                if protocol == Protocol.ISO14443A:
                    scan.tag = identify_tag(poll.atqa, poll.sak, poll.uid)
                    self.state.tag = scan.tag
            logger.info(f"{protocol.value}: {format_hex(scan.uid) if scan.found else 'nothing'}")
            results.append(scan)
        return results

    # ─── Inspection ───

    @exclusive
    def dump(self) -> MemoryDump:
        tag = self._require_tag()
        if tag.family == TagFamily.CLASSIC:
            self._reselect()
            return dump_classic(self.reader, KeyRecoveryEngine(self.reader, tag.uid), tag.type)
        if tag.family == TagFamily.ULTRALIGHT:
            self._reselect()
            return dump_ultralight(self.reader)
        raise PreconditionError("Dump not supported for this tag type.")

    @exclusive
    def audit(self) -> KeyAudit:
        tag = self._require_tag()
        if tag.family != TagFamily.CLASSIC:
            raise PreconditionError("Key audit only applies to MIFARE Classic.")
        self._reselect()
        return audit_keys(KeyRecoveryEngine(self.reader, tag.uid), tag.type)

    @exclusive
    def read_ndef(self) -> NdefReadResult:
        tag = self._require_tag()
        if tag.family == TagFamily.ULTRALIGHT:
            self._reselect()
            return self._scan_buffer(self._read_ultralight_user_memory())
        if tag.family == TagFamily.CLASSIC:
            self._reselect()
            engine = KeyRecoveryEngine(self.reader, tag.uid)
            sectors = resolve_ndef_sectors(self.reader, engine)
            if not sectors:
                return NdefReadResult(NdefStatus.NO_APPLICATION)
            result = self._scan_buffer(self._read_classic_sectors(engine, sectors))
            result.sectors = sectors
            return result
        raise PreconditionError("NDEF not supported for this tag type.")

    def _read_ultralight_user_memory(self) -> bytes:
        buf = bytearray()
        for page in range(UL_FIRST_USER_PAGE, UL_MAX_PAGES + 1):
            data = self.reader.read_page(page)
            if data is None:
                break
            buf += bytes(data)[:BYTES_PER_PAGE]
        return bytes(buf)

    def _read_classic_sectors(self, engine: KeyRecoveryEngine, sectors: list[int]) -> bytes:
        buf = bytearray()
        for sector in sectors:
            if engine.try_authenticate(sector_to_block(sector), KeyType.A) is None:
                logger.warning(f"NDEF sector {sector} did not authenticate, skipped")
                continue
            for block in data_blocks_for_sector(sector):
                data = self.reader.read_block(block)
                if data is not None:
                    buf += bytes(data)[:BYTES_PER_BLOCK]
        return bytes(buf)

    @staticmethod
    def _scan_buffer(buffer: bytes) -> NdefReadResult:
        scan = parse_tlv_stream(buffer)
        if not scan.found:
            return NdefReadResult(NdefStatus.NO_MESSAGE)
        return NdefReadResult(NdefStatus.RECORDS, scan.records, scan.truncated, scan.unparseable)

    # ─── Writing ───

    @exclusive
    def write_ndef(self, record_type: str, content: str) -> WriteResult:
        """Write a single URL or Text record as the tag's NDEF message."""
        tag = self._require_tag()
        try:
            kind = RecordType(record_type.strip().upper())
        except ValueError:
            raise PreconditionError("Unknown record type. Use URL or TEXT.")
        if not content:
            raise PreconditionError(WRITE_USAGE)
        if tag.family == TagFamily.UNSUPPORTED:
            raise PreconditionError("Write not supported for this tag type.")

        if kind == RecordType.URL:
            message = build_uri_message(content)
        else:
            message = build_text_record(DEFAULT_TEXT_LANGUAGE, content)

        if tag.family == TagFamily.ULTRALIGHT:
            self._reselect()
            written = self._write_ultralight(message)
        else:
            written = self._write_classic(tag, message)
        logger.info(f"Wrote {kind.value} record ({len(message)} bytes) to {tag.uid_hex}")
        return WriteResult(kind, content, tag.family, len(message), written)

    def _write_ultralight(self, message: bytes) -> int:
        data = pad_to_units(message, BYTES_PER_PAGE)
        written = 0
        for offset in range(0, len(data), BYTES_PER_PAGE):
            page = UL_FIRST_USER_PAGE + offset // BYTES_PER_PAGE
            if not self.reader.write_page(page, data[offset:offset + BYTES_PER_PAGE]):
                raise WriteFailedError(f"Write failed at page {page}")
            written += 1
        return written

    def _write_classic(self, tag: TagInfo, message: bytes) -> int:
        blocks = data_blocks_for_sector(CLASSIC_NDEF_SECTOR)
        capacity = len(blocks) * BYTES_PER_BLOCK
        if len(message) > capacity:
            raise OversizeInputError(
                f"NDEF message needs {len(message)} bytes, Classic sector {CLASSIC_NDEF_SECTOR} holds {capacity}"
            )
        self._reselect()
        engine = KeyRecoveryEngine(self.reader, tag.uid)
        if engine.authenticate_sector(blocks[0]) is None:
            raise AuthFailedError(f"Cannot authenticate Classic sector {CLASSIC_NDEF_SECTOR}.")
        data = message.ljust(capacity, b"\x00")
        for i, block in enumerate(blocks):
            chunk = data[i * BYTES_PER_BLOCK:(i + 1) * BYTES_PER_BLOCK]
            if not self.reader.write_block(block, chunk):
                raise WriteFailedError(f"Write failed at block {block}")
        return len(blocks)

    # ─── Cloning ───

    @exclusive
    def clone_read(self) -> CloneBuffer:
        """Capture the current tag into the clone buffer, replacing any previous snapshot."""
        tag = self._require_tag()
        if tag.family == TagFamily.CLASSIC:
            self._reselect()
            engine = KeyRecoveryEngine(self.reader, tag.uid)
            buffer = capture_classic(self.reader, engine, tag.type, tag.uid, self.clone_capacity)
        elif tag.family == TagFamily.ULTRALIGHT:
            self._reselect()
            buffer = capture_ultralight(self.reader, tag.uid, capacity=self.clone_capacity)
        else:
            raise PreconditionError("Clone not supported for this tag type.")
        self.state.clone = buffer
        return buffer

    @exclusive
    def clone_write(self, timeout_ms: int = SCAN_TIMEOUT_MS) -> CloneWriteResult:
        """Apply the clone buffer to whatever tag is on the reader, then discard it."""
        buffer = self.state.clone
        if buffer is None:
            raise PreconditionError(CLONE_EMPTY)
        poll = self.reader.poll_target(timeout_ms)
        if poll is None:
            raise NotPresentError(NO_TAG_FOUND)
        target = identify_tag(poll.atqa, poll.sak, poll.uid)
        if target.family != tag_family(buffer.tag_type):
            logger.warning(f"Target is {target.name}, clone buffer holds {buffer.tag_type.value}")

        if tag_family(buffer.tag_type) == TagFamily.CLASSIC:
            result = apply_classic(self.reader, KeyRecoveryEngine(self.reader, target.uid), buffer)
        else:
            result = apply_ultralight(self.reader, buffer)
        self.state.clone = None
        return CloneWriteResult(target, buffer.tag_type, result)
