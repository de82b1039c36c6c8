"""Shared fixtures: a simulated reader with a selected virtual tag."""

import pytest

from nfctool.reader.simulated import SimulatedReader, VirtualClassicTag, VirtualUltralightTag
from nfctool.rfid.tag_types import TagType

CLASSIC_UID = bytes.fromhex("DEADBEEF")
ULTRALIGHT_UID = bytes.fromhex("04A1B2C3D4E5F6")


@pytest.fixture
def reader():
    return SimulatedReader()


@pytest.fixture
def classic_tag(reader):
    tag = VirtualClassicTag(CLASSIC_UID, TagType.CLASSIC_1K)
    reader.place(tag)
    reader.poll_target(0)
    return tag


@pytest.fixture
def ultralight_tag(reader):
    tag = VirtualUltralightTag(ULTRALIGHT_UID)
    reader.place(tag)
    reader.poll_target(0)
    return tag
