"""
MIFARE Application Directory (MAD) resolution.

Sector 0 blocks 1-2 hold 2-byte big-endian application IDs:
- block 1, offsets 2, 4, ..., 14 -> sectors 1-7 (offsets 0-1 are CRC + info byte)
- block 2, offsets 0, 2, ..., 14 -> sectors 8-15
AID 0x03E1 marks an NDEF-bearing sector.
"""

import logging

from nfctool.errors import AuthFailedError, ReadFailedError
from nfctool.reader.base import KeyType, Reader
from nfctool.rfid.keys import KeyRecoveryEngine
from nfctool.rfid.mifare import BYTES_PER_BLOCK

logger = logging.getLogger(__name__)

NDEF_AID = 0x03E1
MAD_BLOCK_1 = 1
MAD_BLOCK_2 = 2


def parse_mad(block1: bytes, block2: bytes, aid: int = NDEF_AID) -> list[int]:
    """Return the sectors whose MAD entry equals ``aid``, in sector order."""
    if len(block1) != BYTES_PER_BLOCK or len(block2) != BYTES_PER_BLOCK:
        raise ValueError(f"MAD blocks must be {BYTES_PER_BLOCK} bytes")
    sectors = []
    for i in range(7):
        if int.from_bytes(block1[2 + i * 2:4 + i * 2], "big") == aid:
            sectors.append(i + 1)
    for i in range(8):
        if int.from_bytes(block2[i * 2:2 + i * 2], "big") == aid:
            sectors.append(i + 8)
    return sectors


def resolve_ndef_sectors(reader: Reader, engine: KeyRecoveryEngine) -> list[int]:
    """
    Authenticate sector 0 with Key A and read the MAD.

    An empty list means the tag carries no NDEF application. An unreadable
    MAD raises instead, so the two outcomes stay distinct.
    """
    if engine.try_authenticate(0, KeyType.A) is None:
        raise AuthFailedError("Cannot read MAD (auth failed on sector 0).")
    block1 = reader.read_block(MAD_BLOCK_1)
    block2 = reader.read_block(MAD_BLOCK_2)
    if block1 is None or block2 is None:
        raise ReadFailedError("Cannot read MAD blocks.")
    sectors = parse_mad(block1, block2)
    logger.info(f"MAD lists NDEF sectors: {sectors}")
    return sectors
