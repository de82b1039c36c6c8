"""
TLV framing and NDEF record codec.

Tag memory holds a sequence of TLV units:
- 0x00  NULL / padding (tag byte only, no length)
- 0x03  NDEF Message (value = concatenated NDEF records)
- 0xFE  Terminator (ends the scan)
Lengths are one byte, or 0xFF followed by a 2-byte big-endian length.

Each NDEF record is:
    header | type length | payload length (1 or 4 bytes) | [id length] | type | [id] | payload

Only the NFC Forum well-known URI ("U") and Text ("T") payloads are decoded;
everything else is reported as a printable dump.
"""

import logging
import struct
from dataclasses import dataclass, field
from typing import Iterator, Optional

from nfctool.config import NDEF_BUILD_CAPACITY
from nfctool.errors import OversizeInputError

logger = logging.getLogger(__name__)

# TLV tags
TLV_NULL = 0x00
TLV_NDEF_MESSAGE = 0x03
TLV_TERMINATOR = 0xFE
TLV_LONG_LENGTH = 0xFF

# Record header flags
FLAG_MB = 0x80
FLAG_ME = 0x40
FLAG_CF = 0x20
FLAG_SR = 0x10
FLAG_IL = 0x08
TNF_MASK = 0x07

TNF_WELL_KNOWN = 0x01
TNF_NAMES = (
    "Empty", "Well-known", "Media", "Absolute URI",
    "External", "Unknown", "Unchanged", "Reserved",
)

# MB | ME | SR, TNF = well-known
SINGLE_SHORT_WELL_KNOWN = FLAG_MB | FLAG_ME | FLAG_SR | TNF_WELL_KNOWN  # 0xD1

TEXT_UTF16 = 0x80
TEXT_LANG_MASK = 0x3F

DUMP_LIMIT = 64

URI_PREFIXES = (
    "", "http://www.", "https://www.", "http://", "https://",
    "tel:", "mailto:", "ftp://anonymous:anonymous@", "ftp://ftp.",
    "ftps://", "sftp://", "smb://", "nfs://", "ftp://", "dav://",
    "news:", "telnet://", "imap:", "rtsp://", "urn:", "pop:",
    "sip:", "sips:", "tftp:", "btspp://", "btl2cap://", "btgoep://",
    "tcpobex://", "irdaobex://", "file://", "urn:epc:id:", "urn:epc:tag:",
    "urn:epc:pat:", "urn:epc:raw:", "urn:epc:", "urn:nfc:",
)


# ──────────────────────────────────────────────
# Data model
# ──────────────────────────────────────────────

@dataclass(frozen=True)
class TlvBlock:
    """One TLV unit found in a buffer. ``value_length`` is clamped to the buffer."""
    tag: int
    length: int
    value_offset: int
    value_length: int

    @property
    def truncated(self) -> bool:
        return self.value_length < self.length


@dataclass
class NdefRecord:
    tnf: int
    type: bytes
    payload: bytes
    id: bytes = b""
    message_begin: bool = False
    message_end: bool = False
    chunked: bool = False
    short_record: bool = False
    truncated: bool = False

    @property
    def tnf_name(self) -> str:
        return TNF_NAMES[self.tnf & TNF_MASK]

    @property
    def type_name(self) -> str:
        return self.type.decode("ascii", errors="replace")

    @property
    def is_uri(self) -> bool:
        return self.tnf == TNF_WELL_KNOWN and self.type == b"U" and len(self.payload) >= 1

    @property
    def is_text(self) -> bool:
        return self.tnf == TNF_WELL_KNOWN and self.type == b"T" and len(self.payload) >= 1

    def to_dict(self) -> dict:
        result = {
            "tnf": self.tnf,
            "tnf_name": self.tnf_name,
            "type": self.type_name,
            "payload_length": len(self.payload),
            "message_begin": self.message_begin,
            "message_end": self.message_end,
            "chunked": self.chunked,
            "short_record": self.short_record,
            "truncated": self.truncated,
        }
        if self.is_uri:
            uri = decode_uri_payload(self.payload)
            result.update(kind="uri", uri=uri.uri, prefix_code=uri.prefix_code)
        elif self.is_text:
            text = decode_text_payload(self.payload)
            result.update(kind="text", language=text.language, text=text.text,
                          utf16=text.utf16, text_length=text.encoded_length)
        else:
            result.update(kind="data", data=printable_dump(self.payload))
        return result


@dataclass
class TlvScanResult:
    """Outcome of scanning a buffer for NDEF messages."""
    found: bool = False
    records: list[NdefRecord] = field(default_factory=list)
    tlvs: list[TlvBlock] = field(default_factory=list)
    truncated: bool = False
    unparseable: bool = False


@dataclass(frozen=True)
class UriPayload:
    prefix_code: int
    prefix: str
    tail: str

    @property
    def uri(self) -> str:
        return self.prefix + self.tail


@dataclass(frozen=True)
class TextPayload:
    language: str
    text: Optional[str]  # None when the body is UTF-16
    utf16: bool
    encoded_length: int


# ──────────────────────────────────────────────
# Parse direction
# ──────────────────────────────────────────────

def iter_tlv(buffer: bytes) -> Iterator[TlvBlock]:
    """Yield TLV units until a terminator or the end of the buffer."""
    pos = 0
    end = len(buffer)
    while pos < end:
        tag = buffer[pos]
        pos += 1
        if tag == TLV_NULL:
            continue
        if tag == TLV_TERMINATOR:
            return
        if pos >= end:
            return
        if buffer[pos] == TLV_LONG_LENGTH:
            if pos + 2 >= end:
                return
            length = (buffer[pos + 1] << 8) | buffer[pos + 2]
            pos += 3
        else:
            length = buffer[pos]
            pos += 1
        value_length = min(length, end - pos)
        if value_length < length:
            logger.warning(f"TLV 0x{tag:02X} declares {length} bytes, only {value_length} available")
        yield TlvBlock(tag=tag, length=length, value_offset=pos, value_length=value_length)
        pos += value_length


def parse_record(region: bytes) -> tuple[Optional[NdefRecord], int]:
    """
    Parse one NDEF record from the start of ``region``.

    Returns the record and the number of bytes consumed. A consumed count of
    0 means the record structure is inconsistent; a payload running past the
    region is clamped and flagged as truncated.
    """
    end = len(region)
    if end < 3:
        return None, 0

    header = region[0]
    short_record = bool(header & FLAG_SR)
    id_present = bool(header & FLAG_IL)
    type_length = region[1]
    offset = 2

    if short_record:
        payload_length = region[offset]
        offset += 1
    else:
        if offset + 4 > end:
            return None, 0
        payload_length = struct.unpack_from(">I", region, offset)[0]
        offset += 4

    id_length = 0
    if id_present:
        if offset >= end:
            return None, 0
        id_length = region[offset]
        offset += 1

    if offset + type_length + id_length > end:
        return None, 0
    record_type = bytes(region[offset:offset + type_length])
    offset += type_length
    record_id = bytes(region[offset:offset + id_length])
    offset += id_length

    truncated = offset + payload_length > end
    if truncated:
        logger.warning(f"NDEF payload declares {payload_length} bytes, only {end - offset} available")
        payload_length = end - offset
    payload = bytes(region[offset:offset + payload_length])
    offset += payload_length

    record = NdefRecord(
        tnf=header & TNF_MASK,
        type=record_type,
        payload=payload,
        id=record_id,
        message_begin=bool(header & FLAG_MB),
        message_end=bool(header & FLAG_ME),
        chunked=bool(header & FLAG_CF),
        short_record=short_record,
        truncated=truncated,
    )
    return record, offset


def parse_records(region: bytes) -> tuple[list[NdefRecord], bool]:
    """Parse consecutive records; returns (records, hit_unparseable_record)."""
    records = []
    pos = 0
    while pos < len(region):
        record, consumed = parse_record(region[pos:])
        if consumed == 0:
            logger.warning(f"Unparseable NDEF record at offset {pos}, stopping")
            return records, True
        records.append(record)
        pos += consumed
    return records, False


def parse_tlv_stream(buffer: bytes) -> TlvScanResult:
    """Scan raw tag memory for NDEF message TLVs and decode their records."""
    result = TlvScanResult()
    for tlv in iter_tlv(buffer):
        result.tlvs.append(tlv)
        result.truncated = result.truncated or tlv.truncated
        if tlv.tag != TLV_NDEF_MESSAGE:
            continue
        result.found = True
        region = buffer[tlv.value_offset:tlv.value_offset + tlv.value_length]
        records, unparseable = parse_records(region)
        result.records.extend(records)
        result.unparseable = result.unparseable or unparseable
        result.truncated = result.truncated or any(r.truncated for r in records)
    return result


# ──────────────────────────────────────────────
# Payload semantics
# ──────────────────────────────────────────────

def decode_uri_payload(payload: bytes) -> UriPayload:
    code = payload[0]
    prefix = URI_PREFIXES[code] if code < len(URI_PREFIXES) else ""
    return UriPayload(prefix_code=code, prefix=prefix,
                      tail=payload[1:].decode("utf-8", errors="replace"))


def decode_text_payload(payload: bytes) -> TextPayload:
    status = payload[0]
    utf16 = bool(status & TEXT_UTF16)
    lang_length = status & TEXT_LANG_MASK
    language = payload[1:1 + lang_length].decode("ascii", errors="replace")
    body = payload[1 + lang_length:]
    # UTF-16 bodies are reported by size only
    text = None if utf16 else body.decode("utf-8", errors="replace")
    return TextPayload(language=language, text=text, utf16=utf16, encoded_length=len(body))


def printable_dump(payload: bytes, limit: int = DUMP_LIMIT) -> str:
    """Printable ASCII with '.' substitutions, cut at ``limit`` bytes with '...'."""
    shown = "".join(chr(b) if 0x20 <= b <= 0x7E else "." for b in payload[:limit])
    if len(payload) > limit:
        shown += "..."
    return shown


def describe_record(record: NdefRecord, number: int) -> list[str]:
    """Human-readable report lines for one record."""
    lines = [f"Record #{number}", f"  TNF: {record.tnf_name}"]
    if record.type:
        lines.append(f"  Type: {record.type_name}")
    if record.is_uri:
        lines.append(f"  URI: {decode_uri_payload(record.payload).uri}")
    elif record.is_text:
        text = decode_text_payload(record.payload)
        lines.append(f"  Lang: {text.language}")
        if text.utf16:
            lines.append(f"  Text: <UTF-16, {text.encoded_length} bytes>")
        else:
            lines.append(f"  Text: {text.text}")
    else:
        lines.append(f"  Data: {printable_dump(record.payload)}")
    if record.truncated:
        lines.append("  (payload truncated)")
    return lines


# ──────────────────────────────────────────────
# Build direction
# ──────────────────────────────────────────────

def split_uri_prefix(uri: str) -> tuple[int, str]:
    """Pick the longest abbreviating prefix; returns (prefix code, remaining tail)."""
    best_code = 0
    for code, prefix in enumerate(URI_PREFIXES):
        if prefix and uri.startswith(prefix) and len(prefix) > len(URI_PREFIXES[best_code]):
            best_code = code
    return best_code, uri[len(URI_PREFIXES[best_code]):]


def _wrap_single_record(record_type: bytes, payload: bytes,
                        capacity: int = NDEF_BUILD_CAPACITY) -> bytes:
    # header, type length, payload length, type, payload
    record_length = 3 + len(record_type) + len(payload)
    # NDEF TLV tag, one-byte length, record, terminator
    message_length = 2 + record_length + 1
    if len(payload) > 0xFF or record_length > 0xFE or message_length > capacity:
        raise OversizeInputError(
            f"NDEF message needs {message_length} bytes, the build buffer holds {capacity}"
        )
    record = bytes([SINGLE_SHORT_WELL_KNOWN, len(record_type), len(payload)]) + record_type + payload
    return bytes([TLV_NDEF_MESSAGE, record_length]) + record + bytes([TLV_TERMINATOR])


def build_uri_record(prefix_code: int, uri_tail, capacity: int = NDEF_BUILD_CAPACITY) -> bytes:
    """Encode a single URI record as a terminated NDEF message TLV."""
    if not 0 <= prefix_code < len(URI_PREFIXES):
        raise ValueError(f"URI prefix code must be 0-{len(URI_PREFIXES) - 1}, got {prefix_code}")
    if isinstance(uri_tail, str):
        uri_tail = uri_tail.encode("utf-8")
    return _wrap_single_record(b"U", bytes([prefix_code]) + uri_tail, capacity)


def build_text_record(language: str, text, capacity: int = NDEF_BUILD_CAPACITY) -> bytes:
    """Encode a single UTF-8 Text record as a terminated NDEF message TLV."""
    lang = language.encode("ascii")
    if len(lang) > TEXT_LANG_MASK:
        raise ValueError(f"Language code must be at most {TEXT_LANG_MASK} bytes")
    if isinstance(text, str):
        text = text.encode("utf-8")
    return _wrap_single_record(b"T", bytes([len(lang)]) + lang + text, capacity)


def build_uri_message(uri: str, capacity: int = NDEF_BUILD_CAPACITY) -> bytes:
    prefix_code, tail = split_uri_prefix(uri)
    return build_uri_record(prefix_code, tail, capacity)


def pad_to_units(data: bytes, unit: int) -> bytes:
    """Zero-pad ``data`` to a whole number of pages / blocks."""
    return data + bytes(-len(data) % unit)
