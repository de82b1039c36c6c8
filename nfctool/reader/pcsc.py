"""
PC/SC reader backend for PN532-based USB readers (ACR122U and friends).

PN532 frames are tunnelled through the reader's direct-transmit pseudo-APDU:
    FF 00 00 00 <Lc> D4 <command> <params...>
and come back as D5 <command + 1> <data...> followed by SW 90 00.

Requires the optional ``pyscard`` dependency.
"""

import logging
import time
from typing import Optional

from smartcard.System import readers
from smartcard.util import toHexString

from nfctool.config import PCSC_READER_INDEX, RESELECT_TIMEOUT_MS
from nfctool.errors import NotPresentError
from nfctool.reader.base import KeyType, PollResult, Protocol, Reader

logger = logging.getLogger(__name__)

# PN532 commands
IN_DATA_EXCHANGE = 0x40
IN_LIST_PASSIVE_TARGET = 0x4A

# MIFARE commands carried by InDataExchange
MIFARE_AUTH = {KeyType.A: 0x60, KeyType.B: 0x61}
MIFARE_READ = 0x30
MIFARE_WRITE = 0xA0
ULTRALIGHT_WRITE = 0xA2

# InListPassiveTarget baud-rate / modulation codes and initiator data
_POLL_PARAMS = {
    Protocol.ISO14443A: (0x00, []),
    Protocol.FELICA: (0x01, [0x00, 0xFF, 0xFF, 0x00, 0x00]),
    Protocol.ISO14443B: (0x03, [0x00]),
}

POLL_INTERVAL_S = 0.1


class PcscReader(Reader):
    """Reader capability on top of a PC/SC connection."""

    def __init__(self, reader_index: int = PCSC_READER_INDEX):
        available = readers()
        if reader_index >= len(available):
            raise NotPresentError(f"PC/SC reader #{reader_index} not found ({len(available)} available)")
        self._device = available[reader_index]
        self._connection = None
        logger.info(f"Using PC/SC reader: {self._device}")

    def _connect(self) -> bool:
        if self._connection is not None:
            return True
        connection = self._device.createConnection()
        try:
            connection.connect()
        except Exception as e:
            logger.debug(f"No card on reader yet: {e}")
            return False
        self._connection = connection
        return True

    def _pn532(self, command: int, params: list[int]) -> Optional[bytes]:
        """Send one PN532 command; returns the response data after D5 xx."""
        frame = [0xD4, command] + params
        apdu = [0xFF, 0x00, 0x00, 0x00, len(frame)] + frame
        logger.debug(f">> {toHexString(apdu)}")
        try:
            response, sw1, sw2 = self._connection.transmit(apdu)
        except Exception as e:
            logger.warning(f"Transmit failed: {e}")
            self._connection = None
            return None
        logger.debug(f"<< {toHexString(response)} {sw1:02X}{sw2:02X}")
        if (sw1, sw2) != (0x90, 0x00) or len(response) < 2 or response[1] != command + 1:
            return None
        return bytes(response[2:])

    def _exchange(self, data: list[int]) -> Optional[bytes]:
        response = self._pn532(IN_DATA_EXCHANGE, [0x01] + data)
        if response is None or not response or response[0] != 0x00:
            return None
        return response[1:]

    def poll_target(self, timeout_ms: int,
                    protocol: Protocol = Protocol.ISO14443A) -> Optional[PollResult]:
        baud, initiator = _POLL_PARAMS[protocol]
        deadline = time.monotonic() + timeout_ms / 1000
        while True:
            if self._connect():
                response = self._pn532(IN_LIST_PASSIVE_TARGET, [0x01, baud] + initiator)
                if response and response[0] >= 1:
                    return self._parse_target(protocol, response[1:])
            if time.monotonic() >= deadline:
                return None
            time.sleep(POLL_INTERVAL_S)

    def _parse_target(self, protocol: Protocol, target: bytes) -> PollResult:
        if protocol == Protocol.ISO14443A:
            # Tg | SENS_RES (2) | SEL_RES | NFCID length | NFCID
            atqa = (target[1] << 8) | target[2]
            sak = target[3]
            uid = bytes(target[5:5 + target[4]])
            return PollResult(uid=uid, atqa=atqa, sak=sak)
        if protocol == Protocol.FELICA:
            # Tg | POL_RES length | 0x01 | IDm (8) | ...
            return PollResult(uid=bytes(target[3:11]))
        # Tg | ATQB (12): 0x50 | PUPI (4) | ...
        return PollResult(uid=bytes(target[2:6]))

    def reselect(self) -> bool:
        return self.poll_target(RESELECT_TIMEOUT_MS) is not None

    def authenticate_block(self, uid: bytes, block: int, key_type: KeyType, key: bytes) -> bool:
        data = [MIFARE_AUTH[key_type], block] + list(key) + list(uid[-4:])
        return self._exchange(data) is not None

    def read_block(self, block: int) -> Optional[bytes]:
        data = self._exchange([MIFARE_READ, block])
        if data is None or len(data) < 16:
            return None
        return data[:16]

    def write_block(self, block: int, data: bytes) -> bool:
        return self._exchange([MIFARE_WRITE, block] + list(data)) is not None

    def read_page(self, page: int) -> Optional[bytes]:
        # READ returns four pages; keep the first
        data = self._exchange([MIFARE_READ, page])
        if data is None or len(data) < 4:
            return None
        return data[:4]

    def write_page(self, page: int, data: bytes) -> bool:
        return self._exchange([ULTRALIGHT_WRITE, page] + list(data)) is not None

    def close(self):
        if self._connection is not None:
            try:
                self._connection.disconnect()
            finally:
                self._connection = None
