"""
ISO 14443-3 tag classification.

SAK is the primary discriminator. ATQA is only consulted to separate DESFire
from generic ISO 14443-4 cards, and the UID length only picks a display label
for Ultralight / NTAG.
"""

from dataclasses import dataclass
from enum import Enum

from nfctool.errors import UnsupportedTagError


class TagType(str, Enum):
    CLASSIC_MINI = "ClassicMini"
    CLASSIC_1K = "Classic1K"
    CLASSIC_4K = "Classic4K"
    ULTRALIGHT = "Ultralight"
    PLUS_2K = "Plus2K"
    PLUS_4K = "Plus4K"
    DESFIRE = "DESFire"
    ISO14443_4 = "Iso14443_4"
    UNKNOWN = "Unknown"


class TagFamily(str, Enum):
    """Memory model a tag type is driven through."""
    CLASSIC = "classic"
    ULTRALIGHT = "ultralight"
    UNSUPPORTED = "unsupported"


# Every TagType must appear here; tests/test_tag_types.py enforces it.
TAG_FAMILIES = {
    TagType.CLASSIC_MINI: TagFamily.CLASSIC,
    TagType.CLASSIC_1K: TagFamily.CLASSIC,
    TagType.CLASSIC_4K: TagFamily.CLASSIC,
    TagType.ULTRALIGHT: TagFamily.ULTRALIGHT,
    TagType.PLUS_2K: TagFamily.UNSUPPORTED,
    TagType.PLUS_4K: TagFamily.UNSUPPORTED,
    TagType.DESFIRE: TagFamily.UNSUPPORTED,
    TagType.ISO14443_4: TagFamily.UNSUPPORTED,
    TagType.UNKNOWN: TagFamily.UNSUPPORTED,
}


def tag_family(tag_type: TagType) -> TagFamily:
    return TAG_FAMILIES[tag_type]


def format_hex(data: bytes, sep: str = ":") -> str:
    """Two-digit uppercase hex bytes joined by ``sep``."""
    return sep.join(f"{b:02X}" for b in data)


@dataclass(frozen=True)
class TagInfo:
    """A classified tag. Immutable once created."""
    type: TagType
    name: str
    atqa: int
    sak: int
    uid: bytes

    @property
    def uid_len(self) -> int:
        return len(self.uid)

    @property
    def family(self) -> TagFamily:
        return tag_family(self.type)

    @property
    def uid_hex(self) -> str:
        return format_hex(self.uid)

    def to_dict(self) -> dict:
        return {
            "type": self.type.value,
            "name": self.name,
            "atqa": f"0x{self.atqa:04X}",
            "sak": f"0x{self.sak:02X}",
            "uid": self.uid_hex,
            "uid_len": self.uid_len,
        }


# SAK -> (type, display name)
_SAK_TABLE = {
    0x09: (TagType.CLASSIC_MINI, "MIFARE Classic Mini"),
    0x08: (TagType.CLASSIC_1K, "MIFARE Classic 1K"),
    0x18: (TagType.CLASSIC_4K, "MIFARE Classic 4K"),
    0x10: (TagType.PLUS_2K, "MIFARE Plus 2K"),
    0x11: (TagType.PLUS_4K, "MIFARE Plus 4K"),
}


def classify(atqa: int, sak: int, uid_len: int) -> tuple[TagType, str]:
    """Map raw anti-collision fields to a tag type and display name. Never raises."""
    if sak in _SAK_TABLE:
        return _SAK_TABLE[sak]
    if sak == 0x00:
        name = "MIFARE Ultralight / NTAG" if uid_len == 7 else "MIFARE Ultralight"
        return TagType.ULTRALIGHT, name
    if sak == 0x20:
        if (atqa & 0x0F) == 0x03:
            return TagType.DESFIRE, "MIFARE DESFire"
        return TagType.ISO14443_4, "ISO 14443-4"
    return TagType.UNKNOWN, "Unknown"


def identify_tag(atqa: int, sak: int, uid: bytes) -> TagInfo:
    """Build a TagInfo from a poll response."""
    if len(uid) > 7:
        raise UnsupportedTagError(f"UID must be at most 7 bytes, got {len(uid)}")
    tag_type, name = classify(atqa, sak, len(uid))
    return TagInfo(type=tag_type, name=name, atqa=atqa & 0xFFFF, sak=sak & 0xFF, uid=bytes(uid))
