"""Tests for the simulated reader and backend selection."""

import pytest
from nfctool.reader.base import KeyType, Protocol
from nfctool.reader.factory import open_reader
from nfctool.reader.simulated import (
    FACTORY_KEY, MAD_KEY_A, SimulatedReader, VirtualClassicTag, VirtualTarget,
)
from nfctool.rfid.ndef import build_uri_message, parse_tlv_stream

from conftest import CLASSIC_UID


class TestVirtualClassicTag:
    def test_failed_auth_halts_until_reselect(self, reader, classic_tag):
        assert not reader.authenticate_block(CLASSIC_UID, 4, KeyType.A, MAD_KEY_A)
        assert not reader.authenticate_block(CLASSIC_UID, 4, KeyType.A, FACTORY_KEY)
        assert reader.reselect()
        assert reader.authenticate_block(CLASSIC_UID, 4, KeyType.A, FACTORY_KEY)

    def test_read_requires_sector_auth(self, reader, classic_tag):
        reader.authenticate_block(CLASSIC_UID, 4, KeyType.A, FACTORY_KEY)
        assert reader.read_block(5) is not None
        assert reader.read_block(8) is None

    def test_block_0_read_only(self, reader, classic_tag):
        reader.authenticate_block(CLASSIC_UID, 0, KeyType.A, FACTORY_KEY)
        assert not reader.write_block(0, bytes(16))
        assert reader.write_block(1, bytes(16))

    def test_wrong_uid(self, reader, classic_tag):
        assert not reader.authenticate_block(b"\x00\x00\x00\x00", 0, KeyType.A, FACTORY_KEY)

    def test_ndef_formatted(self):
        tag = VirtualClassicTag.ndef_formatted(CLASSIC_UID, build_uri_message("https://example.com"))
        assert bytes(tag.blocks[1][2:4]) == b"\x03\xe1"
        assert parse_tlv_stream(tag.data_block_bytes(1)).found


class TestSimulatedReader:
    def test_empty_field(self):
        reader = SimulatedReader()
        assert reader.poll_target(100) is None
        assert not reader.reselect()

    def test_poll_reports_identity(self, reader):
        reader.place(VirtualClassicTag(CLASSIC_UID))
        poll = reader.poll_target(0)
        assert (poll.uid, poll.atqa, poll.sak) == (CLASSIC_UID, 0x0004, 0x08)

    def test_other_protocols(self, reader):
        reader.place(VirtualTarget(b"\x11\x22\x33\x44"), Protocol.ISO14443B)
        assert reader.poll_target(0) is None
        assert reader.poll_target(0, Protocol.ISO14443B).uid == b"\x11\x22\x33\x44"

    def test_no_page_access_on_classic(self, reader, classic_tag):
        assert reader.read_page(4) is None
        assert not reader.write_page(4, bytes(4))

    def test_call_counting(self, reader, classic_tag):
        reader.read_block(1)
        reader.read_block(2)
        assert reader.calls["read_block"] == 2
        assert reader.calls["poll_target"] == 1


class TestFactory:
    def test_simulated_demo(self):
        reader = open_reader("simulated")
        assert isinstance(reader, SimulatedReader)
        assert reader.tag.uid == CLASSIC_UID

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            open_reader("serial")
