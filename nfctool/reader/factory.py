"""Reader backend selection."""

import logging

from nfctool.config import READER_BACKEND
from nfctool.reader.base import Reader

logger = logging.getLogger(__name__)

BACKENDS = ("simulated", "pcsc")


def open_reader(backend: str = READER_BACKEND) -> Reader:
    """Open the configured reader backend."""
    if backend == "simulated":
        from nfctool.reader.simulated import demo_reader
        logger.info("Using simulated reader with demo tags")
        return demo_reader()
    if backend == "pcsc":
        # pyscard is only installed with the "pcsc" extra
        from nfctool.reader.pcsc import PcscReader
        return PcscReader()
    raise ValueError(f"Unknown reader backend {backend!r}, expected one of {', '.join(BACKENDS)}")
