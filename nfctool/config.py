"""Application configuration."""

import os

# Reader backend: "simulated" (virtual tags) or "pcsc" (PC/SC reader via pyscard)
READER_BACKEND = os.getenv("NFCTOOL_READER", "simulated")
PCSC_READER_INDEX = int(os.getenv("NFCTOOL_PCSC_READER", "0"))

# Poll timeouts (milliseconds)
SCAN_TIMEOUT_MS = int(os.getenv("NFCTOOL_SCAN_TIMEOUT_MS", "10000"))
RESELECT_TIMEOUT_MS = int(os.getenv("NFCTOOL_RESELECT_TIMEOUT_MS", "500"))
SCANALL_TIMEOUT_MS = int(os.getenv("NFCTOOL_SCANALL_TIMEOUT_MS", "3000"))

# Working buffers (bytes)
CLONE_BUFFER_CAPACITY = int(os.getenv("NFCTOOL_CLONE_CAPACITY", "4096"))
NDEF_BUILD_CAPACITY = 255

# HTTP API
API_HOST = os.getenv("NFCTOOL_API_HOST", "127.0.0.1")
API_PORT = int(os.getenv("NFCTOOL_API_PORT", "8000"))
