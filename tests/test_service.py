"""Tests for command-level operations and session state handling."""

import pytest
from nfctool.errors import (
    AuthFailedError, NotPresentError, OversizeInputError, PreconditionError,
    UnsupportedTagError, WriteFailedError,
)
from nfctool.reader.base import Protocol
from nfctool.reader.simulated import (
    SimulatedReader, VirtualClassicTag, VirtualTarget, VirtualUltralightTag, demo_reader,
)
from nfctool.rfid.ndef import build_uri_message, decode_text_payload, decode_uri_payload
from nfctool.rfid.tag_types import TagType, identify_tag
from nfctool.session.service import NdefStatus, RecordType, TagService
from nfctool.session.state import SessionState

from conftest import CLASSIC_UID, ULTRALIGHT_UID

SECRET = bytes.fromhex("112233445566")


def _scanned(reader) -> TagService:
    service = TagService(reader)
    service.scan()
    reader.calls.clear()
    return service


class LockWatchReader(SimulatedReader):
    """Records whether the session lock is held whenever the tag is reselected."""

    def __init__(self, state: SessionState):
        super().__init__()
        self.state = state
        self.lock_held = []

    def reselect(self) -> bool:
        self.lock_held.append(self.state.lock.locked())
        return super().reselect()


class FadingReader(SimulatedReader):
    """Loses the tag once its reselect allowance runs out."""

    def __init__(self, reselects: int = 0):
        super().__init__()
        self.reselects = reselects

    def reselect(self) -> bool:
        if self.reselects <= 0:
            self.calls["reselect"] += 1
            return False
        self.reselects -= 1
        return super().reselect()


class TestScan:
    def test_scan_sets_current_tag(self, reader, classic_tag):
        service = TagService(reader)
        tag = service.scan()
        assert tag.type == TagType.CLASSIC_1K
        assert service.state.tag == tag

    def test_no_tag(self, reader):
        service = TagService(reader)
        with pytest.raises(NotPresentError, match="No tag found."):
            service.scan()
        assert service.state.tag is None

    def test_failed_scan_keeps_previous_tag(self, reader, classic_tag):
        service = _scanned(reader)
        reader.remove()
        with pytest.raises(NotPresentError):
            service.scan()
        assert service.state.tag.uid == CLASSIC_UID

    def test_oversize_uid_keeps_previous_tag(self, reader, classic_tag):
        service = _scanned(reader)
        reader.place(VirtualClassicTag(bytes(range(1, 11))))
        with pytest.raises(UnsupportedTagError):
            service.scan()
        assert service.state.tag.uid == CLASSIC_UID

    def test_scan_all(self, reader, classic_tag):
        reader.place(VirtualTarget(bytes.fromhex("0102030405060708")), Protocol.FELICA)
        service = TagService(reader)
        scans = service.scan_all()
        assert [s.protocol for s in scans] == [Protocol.ISO14443A, Protocol.ISO14443B, Protocol.FELICA]
        assert [s.found for s in scans] == [True, False, True]
        assert scans[0].tag.type == TagType.CLASSIC_1K
        assert scans[2].tag is None
        assert service.state.tag == scans[0].tag


class TestPreconditions:
    @pytest.mark.parametrize("operation", ["dump", "audit", "read_ndef", "clone_read"])
    def test_requires_scan(self, reader, classic_tag, operation):
        reader.calls.clear()
        with pytest.raises(PreconditionError, match="No tag scanned. Run SCAN first."):
            getattr(TagService(reader), operation)()
        assert sum(reader.calls.values()) == 0

    def test_write_requires_scan(self, reader):
        with pytest.raises(PreconditionError):
            TagService(reader).write_ndef("URL", "https://example.com")

    @pytest.mark.parametrize("operation", ["dump", "audit", "read_ndef", "clone_read"])
    def test_unsupported_type_fails_locally(self, reader, operation):
        service = TagService(reader, SessionState(tag=identify_tag(0x4403, 0x20, bytes(7))))
        with pytest.raises(PreconditionError):
            getattr(service, operation)()
        assert sum(reader.calls.values()) == 0

    def test_audit_is_classic_only(self, reader, ultralight_tag):
        with pytest.raises(PreconditionError, match="Key audit only applies to MIFARE Classic."):
            _scanned(reader).audit()

    def test_tag_moved_away(self, reader, classic_tag):
        service = _scanned(reader)
        reader.remove()
        with pytest.raises(NotPresentError, match="Tag not present."):
            service.dump()

    def test_operations_hold_session_lock(self):
        state = SessionState()
        reader = LockWatchReader(state)
        reader.place(VirtualClassicTag(CLASSIC_UID))
        service = TagService(reader, state)
        service.scan()
        service.dump()
        service.clone_read()
        assert reader.lock_held == [True, True]
        assert not state.lock.locked()


class TestDumpAndAudit:
    def test_dump_classic(self, reader, classic_tag):
        assert len(_scanned(reader).dump().rows) == 64

    def test_dump_ultralight(self, reader, ultralight_tag):
        assert _scanned(reader).dump().unit == "Page"

    def test_audit(self, reader, classic_tag):
        classic_tag.set_sector_keys(5, SECRET, SECRET)
        audit = _scanned(reader).audit()
        assert audit.sectors[5].key_a is None
        assert audit.sectors[5].key_b is None


class TestReadNdef:
    def test_classic_formatted(self):
        service = _scanned(demo_reader())
        result = service.read_ndef()
        assert result.status == NdefStatus.RECORDS
        assert result.sectors == list(range(1, 16))
        assert decode_uri_payload(result.records[0].payload).uri == "https://example.com/nfctool"

    def test_classic_without_mad_entries(self, reader, classic_tag):
        assert _scanned(reader).read_ndef().status == NdefStatus.NO_APPLICATION

    def test_classic_mad_unreadable(self, reader, classic_tag):
        classic_tag.set_sector_keys(0, SECRET, SECRET)
        with pytest.raises(AuthFailedError, match="Cannot read MAD"):
            _scanned(reader).read_ndef()

    def test_ultralight_message(self, reader):
        reader.place(VirtualUltralightTag.with_message(ULTRALIGHT_UID, build_uri_message("tel:+123")))
        result = _scanned(reader).read_ndef()
        assert result.status == NdefStatus.RECORDS
        assert decode_uri_payload(result.records[0].payload).uri == "tel:+123"

    def test_ultralight_blank(self, reader, ultralight_tag):
        assert _scanned(reader).read_ndef().status == NdefStatus.NO_MESSAGE


class TestWriteNdef:
    def test_ultralight_url(self, reader, ultralight_tag):
        service = _scanned(reader)
        result = service.write_ndef("url", "https://www.example.org")
        assert result.record_type == RecordType.URL
        assert result.units_written == 5  # 19-byte message padded to 5 pages
        assert bytes(ultralight_tag.pages[4][:2]) == bytes([0x03, 0x10])
        record = service.read_ndef().records[0]
        assert decode_uri_payload(record.payload).uri == "https://www.example.org"

    def test_ultralight_write_failure(self, reader, ultralight_tag):
        ultralight_tag.read_only_pages.add(5)
        with pytest.raises(WriteFailedError, match="page 5"):
            _scanned(reader).write_ndef("TEXT", "hello there, world")

    def test_classic_text(self):
        service = _scanned(demo_reader())
        result = service.write_ndef("TEXT", "Hello")
        assert result.units_written == 3
        text = decode_text_payload(service.read_ndef().records[0].payload)
        assert text.language == "en"
        assert text.text == "Hello"

    def test_classic_blank_sector_1(self, reader, classic_tag):
        _scanned(reader).write_ndef("URL", "https://example.com")
        data = classic_tag.data_block_bytes(1)
        assert data[:2] == bytes([0x03, 0x10])
        assert data[-1] == 0x00

    def test_classic_oversize_rejected_before_reader(self, reader, classic_tag):
        service = _scanned(reader)
        with pytest.raises(OversizeInputError):
            service.write_ndef("URL", "https://example.com/" + "a" * 40)
        assert sum(reader.calls.values()) == 0

    def test_classic_sector_locked(self, reader, classic_tag):
        classic_tag.set_sector_keys(1, SECRET, SECRET)
        with pytest.raises(AuthFailedError):
            _scanned(reader).write_ndef("URL", "https://example.com")

    def test_message_over_build_buffer(self, reader, ultralight_tag):
        with pytest.raises(OversizeInputError):
            _scanned(reader).write_ndef("TEXT", "x" * 300)

    def test_unknown_record_type(self, reader, ultralight_tag):
        with pytest.raises(PreconditionError, match="Unknown record type"):
            _scanned(reader).write_ndef("MAIL", "a@b.c")

    def test_empty_content(self, reader, ultralight_tag):
        with pytest.raises(PreconditionError, match="Usage"):
            _scanned(reader).write_ndef("URL", "")


class TestClone:
    def test_read_then_write_consumes_buffer(self, reader, classic_tag):
        classic_tag.blocks[1][:] = b"clone me please!"
        service = _scanned(reader)
        buffer = service.clone_read()
        assert service.state.clone is buffer

        target = VirtualClassicTag(bytes.fromhex("01020304"))
        reader.place(target)
        result = service.clone_write()
        assert result.target.uid == bytes.fromhex("01020304")
        assert result.family_mismatch is False
        assert result.apply.written == 47
        assert bytes(target.blocks[1]) == b"clone me please!"
        assert service.state.clone is None
        # current tag is still the source
        assert service.state.tag.uid == CLASSIC_UID

    def test_clone_read_replaces_previous_snapshot(self, reader, classic_tag):
        service = _scanned(reader)
        first = service.clone_read()
        classic_tag.blocks[2][:] = bytes([0xAA]) * 16
        second = service.clone_read()
        assert service.state.clone is second
        assert second.unit(2) != first.unit(2)

    def test_tag_lost_during_capture_keeps_buffer(self):
        reader = FadingReader(reselects=1)
        tag = VirtualClassicTag(CLASSIC_UID)
        reader.place(tag)
        service = _scanned(reader)
        first = service.clone_read()
        # sector 5 now fails every trial; the second reselect after a failure finds no tag
        tag.set_sector_keys(5, SECRET, SECRET)
        reader.reselects = 2
        reader.calls.clear()
        with pytest.raises(NotPresentError):
            service.clone_read()
        assert reader.calls["reselect"] == 3
        assert service.state.clone is first

    def test_oversize_source_keeps_buffer(self, reader, classic_tag):
        service = _scanned(reader)
        first = service.clone_read()
        service.clone_capacity = 512
        reader.calls.clear()
        with pytest.raises(OversizeInputError, match="clone buffer holds 512"):
            service.clone_read()
        assert service.state.clone is first
        assert reader.calls["read_block"] == 0

    def test_write_without_buffer(self, reader, classic_tag):
        with pytest.raises(PreconditionError, match="Clone buffer empty. Run CLONE READ first."):
            _scanned(reader).clone_write()
        assert sum(reader.calls.values()) == 0

    def test_no_target_keeps_buffer(self, reader, classic_tag):
        service = _scanned(reader)
        buffer = service.clone_read()
        reader.remove()
        with pytest.raises(NotPresentError):
            service.clone_write(timeout_ms=0)
        assert service.state.clone is buffer

    def test_family_mismatch_reported(self, reader, classic_tag):
        service = _scanned(reader)
        service.clone_read()
        reader.place(VirtualUltralightTag(ULTRALIGHT_UID))
        result = service.clone_write()
        assert result.family_mismatch
        assert result.apply.written == 0

    def test_ultralight_clone(self, reader):
        source = VirtualUltralightTag.with_message(ULTRALIGHT_UID, build_uri_message("https://a.example"))
        reader.place(source)
        service = _scanned(reader)
        assert service.clone_read().unit_count == 45
        target = VirtualUltralightTag(bytes.fromhex("04112233445566"))
        reader.place(target)
        result = service.clone_write()
        assert result.apply.written == 41
        assert target.user_memory() == source.user_memory()

    def test_session_to_dict(self, reader, classic_tag):
        service = _scanned(reader)
        service.clone_read()
        d = service.state.to_dict()
        assert d["tag"]["uid"] == "DE:AD:BE:EF"
        assert d["clone"]["length"] == 1024
