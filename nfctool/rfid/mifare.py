"""
MIFARE Classic geometry and addressing.

A MIFARE Classic tag has:
- 1K: 16 sectors x 4 blocks (64 blocks, numbered 0-63)
- 4K: 32 sectors x 4 blocks, then 8 sectors x 16 blocks (256 blocks)
- 16 bytes per block
- Block 0: manufacturer data (read-only, contains UID)
- The last block of every sector: sector trailer (Key A + access bits + Key B)

Ultralight / NTAG tags are addressed in 4-byte pages instead.
"""

from nfctool.rfid.tag_types import TagType

# Tag geometry
BYTES_PER_BLOCK = 16
SMALL_SECTOR_BLOCKS = 4
LARGE_SECTOR_BLOCKS = 16
LARGE_SECTOR_START = 128  # first block of sector 32 on a 4K tag
SMALL_SECTOR_COUNT = 32
TOTAL_BLOCKS_1K = 64
TOTAL_BLOCKS_4K = 256
NUM_SECTORS_1K = 16
NUM_SECTORS_4K = 40

# Ultralight / NTAG geometry
BYTES_PER_PAGE = 4
UL_FIRST_USER_PAGE = 4  # pages 0-3: UID, internal, lock bytes, capability container
UL_MAX_PAGES = 231

# Sector trailer layout within a 16-byte block
KEY_A_OFFSET = 0
KEY_A_LENGTH = 6
ACCESS_BITS_OFFSET = 6
ACCESS_BITS_LENGTH = 4
KEY_B_OFFSET = 10
KEY_B_LENGTH = 6


def group_size(block: int) -> int:
    """Blocks per sector for the sector containing ``block``."""
    return SMALL_SECTOR_BLOCKS if block < LARGE_SECTOR_START else LARGE_SECTOR_BLOCKS


def sector_first_block(block: int) -> int:
    """Return the first block of the sector containing ``block``."""
    return block - (block % group_size(block))


def sector_last_block(block: int) -> int:
    """Return the trailer block of the sector containing ``block``."""
    return sector_first_block(block) + group_size(block) - 1


def is_sector_start(block: int) -> bool:
    return block == sector_first_block(block)


def is_sector_trailer(block: int) -> bool:
    """Check if a block number is a sector trailer."""
    return (block + 1) % group_size(block) == 0


def total_blocks(tag_type: TagType) -> int:
    return TOTAL_BLOCKS_4K if tag_type == TagType.CLASSIC_4K else TOTAL_BLOCKS_1K


def num_sectors(tag_type: TagType) -> int:
    return NUM_SECTORS_4K if tag_type == TagType.CLASSIC_4K else NUM_SECTORS_1K


def sector_to_block(sector: int) -> int:
    """Return the first block number for a given sector."""
    if sector < SMALL_SECTOR_COUNT:
        return sector * SMALL_SECTOR_BLOCKS
    return LARGE_SECTOR_START + (sector - SMALL_SECTOR_COUNT) * LARGE_SECTOR_BLOCKS


def block_to_sector(block: int) -> int:
    """Return the sector number for a given block."""
    if block < LARGE_SECTOR_START:
        return block // SMALL_SECTOR_BLOCKS
    return SMALL_SECTOR_COUNT + (block - LARGE_SECTOR_START) // LARGE_SECTOR_BLOCKS


def sector_block_count(sector: int) -> int:
    return SMALL_SECTOR_BLOCKS if sector < SMALL_SECTOR_COUNT else LARGE_SECTOR_BLOCKS


def sector_trailer_block(sector: int) -> int:
    """Return the sector trailer block number for a given sector."""
    return sector_to_block(sector) + sector_block_count(sector) - 1


def data_blocks_for_sector(sector: int) -> list[int]:
    """Return the data block numbers (non-trailer) for a given sector."""
    first = sector_to_block(sector)
    return [first + i for i in range(sector_block_count(sector) - 1)]


def block_to_byte_offset(block: int) -> int:
    """Return the byte offset in a full dump for a given block."""
    return block * BYTES_PER_BLOCK


def parse_sector_trailer(data: bytes) -> dict:
    """
    Parse a 16-byte sector trailer block.

    Returns dict with key_a, access_bits, and key_b as bytes.
    """
    if len(data) != BYTES_PER_BLOCK:
        raise ValueError(f"Sector trailer must be {BYTES_PER_BLOCK} bytes, got {len(data)}")
    return {
        "key_a": data[KEY_A_OFFSET:KEY_A_OFFSET + KEY_A_LENGTH],
        "access_bits": data[ACCESS_BITS_OFFSET:ACCESS_BITS_OFFSET + ACCESS_BITS_LENGTH],
        "key_b": data[KEY_B_OFFSET:KEY_B_OFFSET + KEY_B_LENGTH],
    }
