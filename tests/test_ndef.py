"""Tests for TLV framing and the NDEF record codec."""

import pytest
from nfctool.errors import OversizeInputError
from nfctool.rfid.ndef import (
    URI_PREFIXES, build_text_record, build_uri_message, build_uri_record,
    decode_text_payload, decode_uri_payload, describe_record, iter_tlv,
    pad_to_units, parse_record, parse_tlv_stream, printable_dump, split_uri_prefix,
)


def _single_record(buffer: bytes):
    result = parse_tlv_stream(buffer)
    assert result.found
    assert len(result.records) == 1
    return result.records[0]


class TestTlvScan:
    def test_terminator_without_ndef(self):
        # lock control TLV, NULL padding, terminator
        result = parse_tlv_stream(bytes([0x01, 0x02, 0xAA, 0xBB, 0x00, 0x00, 0xFE]))
        assert result.found is False
        assert result.records == []
        assert result.unparseable is False

    def test_empty_buffer(self):
        assert parse_tlv_stream(b"").found is False

    def test_uri_record_with_https_prefix(self):
        record = _single_record(bytes([0x03, 0x05, 0xD1, 0x01, 0x01, 0x55, 0x04, 0xFE]))
        assert record.tnf == 1
        assert record.type == b"U"
        uri = decode_uri_payload(record.payload)
        assert uri.prefix == "https://"
        assert uri.tail == ""

    def test_type_byte_past_region_is_unparseable(self):
        # TLV length 3 covers only the header, type length and payload length
        result = parse_tlv_stream(bytes([0x03, 0x03, 0xD1, 0x01, 0x00, 0x55, 0x04]))
        assert result.found is True
        assert result.records == []
        assert result.unparseable is True

    def test_three_byte_length(self):
        record = _single_record(bytes([0x03, 0xFF, 0x00, 0x05, 0xD1, 0x01, 0x01, 0x55, 0x04, 0xFE]))
        assert decode_uri_payload(record.payload).uri == "https://"

    def test_stops_at_terminator(self):
        message = build_uri_message("https://a.example")
        result = parse_tlv_stream(bytes([0xFE]) + message)
        assert result.found is False

    def test_declared_length_clamped(self):
        result = parse_tlv_stream(bytes([0x03, 0x10, 0xD1, 0x01, 0x01, 0x55, 0x04]))
        assert result.found
        assert result.truncated
        assert len(result.records) == 1
        assert result.tlvs[0].length == 0x10
        assert result.tlvs[0].value_length == 5

    def test_non_ndef_tlv_skipped(self):
        buffer = bytes([0xFD, 0x02, 0x03, 0x03]) + build_uri_message("tel:123")
        record = _single_record(buffer)
        assert decode_uri_payload(record.payload).uri == "tel:123"

    def test_iter_tlv_skips_null(self):
        tlvs = list(iter_tlv(bytes([0x00, 0x00, 0x03, 0x00, 0xFE])))
        assert len(tlvs) == 1
        assert tlvs[0].tag == 0x03
        assert tlvs[0].value_offset == 4


class TestRecordParse:
    def test_multiple_records_with_id(self):
        rec1 = bytes([0x99, 0x01, 0x03, 0x02]) + b"U" + b"ab" + bytes([0x03]) + b"xy"
        rec2 = bytes([0x51, 0x01, 0x05]) + b"T" + bytes([0x02]) + b"enHi"
        region = rec1 + rec2
        result = parse_tlv_stream(bytes([0x03, len(region)]) + region + bytes([0xFE]))
        assert len(result.records) == 2
        first, second = result.records
        assert first.message_begin and not first.message_end
        assert first.id == b"ab"
        assert decode_uri_payload(first.payload).uri == "http://xy"
        assert second.message_end
        assert decode_text_payload(second.payload).text == "Hi"

    def test_long_record(self):
        payload = b"hello"
        region = bytes([0xC2, 0x0A, 0x00, 0x00, 0x00, 0x05]) + b"text/plain" + payload
        record, consumed = parse_record(region)
        assert consumed == len(region)
        assert record.short_record is False
        assert record.tnf_name == "Media"
        assert record.payload == payload

    def test_payload_truncated(self):
        record, consumed = parse_record(bytes([0xD1, 0x01, 0x05, 0x55, 0x04, 0x61]))
        assert record.truncated
        assert record.payload == b"\x04a"
        assert consumed == 6

    def test_unparseable_stops_remaining_records(self):
        good = bytes([0x91, 0x01, 0x01, 0x55, 0x04])
        bad = bytes([0x51, 0x05, 0x00, 0x55])  # type runs past the region
        region = good + bad
        result = parse_tlv_stream(bytes([0x03, len(region)]) + region)
        assert len(result.records) == 1
        assert result.unparseable

    def test_too_short(self):
        assert parse_record(b"\xd1\x01") == (None, 0)


class TestPayloadSemantics:
    def test_prefix_table(self):
        assert len(URI_PREFIXES) == 36
        assert URI_PREFIXES[1] == "http://www."
        assert URI_PREFIXES[35] == "urn:nfc:"

    def test_out_of_range_prefix_code(self):
        uri = decode_uri_payload(bytes([0x40]) + b"example")
        assert uri.prefix == ""
        assert uri.uri == "example"

    def test_utf16_text_reported_by_size(self):
        text = decode_text_payload(bytes([0x82]) + b"en" + b"\xff\xfeH\x00")
        assert text.utf16
        assert text.text is None
        assert text.language == "en"
        assert text.encoded_length == 4

    def test_printable_dump(self):
        assert printable_dump(b"ab\x00\x7fc") == "ab..c"
        assert printable_dump(b"A" * 70) == "A" * 64 + "..."
        assert printable_dump(b"A" * 64) == "A" * 64

    def test_describe_uri(self):
        record = _single_record(build_uri_message("https://example.com"))
        assert describe_record(record, 1) == [
            "Record #1",
            "  TNF: Well-known",
            "  Type: U",
            "  URI: https://example.com",
        ]

    def test_describe_text(self):
        record = _single_record(build_text_record("en", "Hello"))
        assert describe_record(record, 2)[2:] == ["  Type: T", "  Lang: en", "  Text: Hello"]

    def test_describe_utf16(self):
        region = bytes([0xD1, 0x01, 0x05]) + b"T" + bytes([0x82]) + b"en" + b"\x00A"
        record, _ = parse_record(region)
        assert describe_record(record, 1)[-1] == "  Text: <UTF-16, 2 bytes>"

    def test_describe_opaque(self):
        region = bytes([0xD2, 0x03, 0x03]) + b"a/b" + b"\x01xy"
        record, _ = parse_record(region)
        lines = describe_record(record, 1)
        assert lines[1] == "  TNF: Media"
        assert lines[-1] == "  Data: .xy"

    def test_record_to_dict(self):
        record = _single_record(build_uri_message("https://example.com"))
        d = record.to_dict()
        assert d["kind"] == "uri"
        assert d["uri"] == "https://example.com"
        assert d["prefix_code"] == 4


class TestBuild:
    def test_uri_record_bytes(self):
        assert build_uri_record(4, "a") == bytes([0x03, 0x06, 0xD1, 0x01, 0x02, 0x55, 0x04, 0x61, 0xFE])

    def test_text_record_bytes(self):
        assert build_text_record("en", "Hi") == bytes(
            [0x03, 0x09, 0xD1, 0x01, 0x05, 0x54, 0x02]) + b"enHi" + bytes([0xFE])

    @pytest.mark.parametrize("prefix_code", range(36))
    def test_uri_round_trip(self, prefix_code):
        tail = "example.com/path?q=1"
        uri = decode_uri_payload(_single_record(build_uri_record(prefix_code, tail)).payload)
        assert uri.prefix_code == prefix_code
        assert uri.tail == tail

    def test_uri_round_trip_at_capacity(self):
        tail = "x" * 247  # payload of 248 bytes fills the 255-byte message
        message = build_uri_record(3, tail)
        assert len(message) == 255
        assert decode_uri_payload(_single_record(message).payload).tail == tail

    def test_uri_over_capacity(self):
        with pytest.raises(OversizeInputError):
            build_uri_record(3, "x" * 248)

    def test_large_capacity_never_wraps_lengths(self):
        # one-byte TLV and short-record lengths cap the message whatever the buffer size
        with pytest.raises(OversizeInputError):
            build_uri_record(3, "x" * 300, capacity=1024)
        with pytest.raises(OversizeInputError, match="needs 259 bytes"):
            build_uri_record(3, "x" * 251, capacity=1024)

    def test_text_round_trip(self):
        text = decode_text_payload(_single_record(build_text_record("fr", "Bonjour à tous")).payload)
        assert text.language == "fr"
        assert text.text == "Bonjour à tous"
        assert not text.utf16

    def test_text_over_capacity(self):
        with pytest.raises(OversizeInputError):
            build_text_record("en", "x" * 300)

    def test_invalid_prefix_code(self):
        with pytest.raises(ValueError):
            build_uri_record(36, "example.com")

    def test_language_too_long(self):
        with pytest.raises(ValueError):
            build_text_record("x" * 64, "text")

    def test_longest_prefix_wins(self):
        assert split_uri_prefix("https://www.example.com") == (2, "example.com")
        assert split_uri_prefix("https://example.com") == (4, "example.com")
        assert split_uri_prefix("urn:epc:id:sgtin") == (30, "sgtin")
        assert split_uri_prefix("urn:isbn:123") == (19, "isbn:123")
        assert split_uri_prefix("gopher://x") == (0, "gopher://x")

    def test_pad_to_units(self):
        assert pad_to_units(b"abcde", 4) == b"abcde\x00\x00\x00"
        assert pad_to_units(b"abcd", 4) == b"abcd"
