"""
Line-oriented command console.

Keywords are case-insensitive. Every command returns its report as a list of
lines; errors that end a command are reported by message, never raised.
"""

import logging
import sys
from typing import Callable, Optional, TextIO

from nfctool.errors import TagToolError
from nfctool.reader.base import Protocol, Reader
from nfctool.rfid.ndef import describe_record
from nfctool.rfid.tag_types import TagFamily, TagInfo, format_hex
from nfctool.session.service import (
    WRITE_USAGE, CloneWriteResult, NdefStatus, ProtocolScan, RecordType, TagService,
)
from nfctool.session.state import SessionState

logger = logging.getLogger(__name__)

PROMPT = "> "
EXIT_COMMANDS = ("QUIT", "EXIT")

HELP_LINES = [
    "--- NFC Multi-Tool ---",
    "Commands:",
    "  SCAN       - Scan for an ISO 14443A tag",
    "  SCANALL    - Scan ISO 14443A + 14443B + FeliCa",
    "  DUMP       - Dump tag memory (after SCAN)",
    "  KEYS       - Audit MIFARE Classic keys (after SCAN)",
    "  NDEF       - Parse NDEF records (after SCAN)",
    "  WRITE URL <url>   - Write URL to tag",
    "  WRITE TEXT <text>  - Write text to tag",
    "  CLONE READ   - Read tag data into clone buffer",
    "  CLONE WRITE  - Write clone buffer to blank tag",
    "  HELP       - Show this help",
    "",
]

_SCANALL_LABELS = {
    Protocol.ISO14443A: "[ISO 14443A]",
    Protocol.ISO14443B: "[ISO 14443B]",
    Protocol.FELICA: "[FeliCa (212 kbps)]",
}


def _tag_identity(tag: TagInfo) -> str:
    return f"  ATQA: 0x{tag.atqa:04X}  SAK: 0x{tag.sak:02X}"


# ──────────────────────────────────────────────
# Report formatting
# ──────────────────────────────────────────────

def format_scan(tag: TagInfo) -> list[str]:
    return [
        f"Tag: {tag.name}",
        f"  UID ({tag.uid_len}): {tag.uid_hex}",
        _tag_identity(tag),
    ]


def format_scan_all(scans: list[ProtocolScan]) -> list[str]:
    lines = []
    for scan in scans:
        lines.append(_SCANALL_LABELS[scan.protocol])
        if not scan.found:
            lines.append(f"  No {scan.protocol.value} tag found.")
        elif scan.tag is not None:
            lines += [f"  Found: {scan.tag.name}", f"  UID: {scan.tag.uid_hex}", _tag_identity(scan.tag)]
        else:
            lines.append(f"  Found {scan.protocol.value}! ID: {format_hex(scan.uid)}")
    return lines


def format_clone_write(result: CloneWriteResult) -> list[str]:
    lines = [f"Target UID: {result.target.uid_hex}"]
    if result.family_mismatch:
        lines.append(f"Warning: target is {result.target.name}, "
                     f"clone buffer holds {result.source_type.value}.")
    apply = result.apply
    if apply.unit == "block":
        lines += [f"Auth failed on target sector {s}" for s in apply.skipped_sectors]
        lines += [f"Write failed at block {b}" for b in apply.failed]
        lines.append(f"Cloned {apply.written} data blocks to target.")
    else:
        if apply.aborted_at is not None:
            lines.append(f"Write failed at page {apply.aborted_at} (may be config/lock page)")
        lines.append(f"Cloned {apply.written} pages to target.")
    return lines


# ──────────────────────────────────────────────
# Dispatcher
# ──────────────────────────────────────────────

class CommandDispatcher:
    """Parses console lines and runs them against one session."""

    def __init__(self, reader: Reader, state: Optional[SessionState] = None):
        self.service = TagService(reader, state)
        self._commands: dict[str, Callable[[], list[str]]] = {
            "HELP": self.cmd_help,
            "?": self.cmd_help,
            "SCAN": self.cmd_scan,
            "SCANALL": self.cmd_scan_all,
            "DUMP": self.cmd_dump,
            "KEYS": self.cmd_keys,
            "NDEF": self.cmd_ndef,
            "CLONE READ": self.cmd_clone_read,
            "CLONE WRITE": self.cmd_clone_write,
        }

    @property
    def state(self) -> SessionState:
        return self.service.state

    def execute(self, line: str) -> list[str]:
        """Run one command line and return the lines it reports."""
        cmd = line.strip()
        if not cmd:
            return []
        upper = " ".join(cmd.upper().split())
        try:
            if upper in self._commands:
                return self._commands[upper]()
            if upper == "WRITE" or upper.startswith("WRITE "):
                return self.cmd_write(cmd[len("WRITE"):].strip())
        except TagToolError as e:
            logger.info(f"{upper}: {e}")
            return [str(e)]
        return [f"Unknown command: {cmd}", "Type HELP for available commands."]

    def cmd_help(self) -> list[str]:
        tag = self.state.tag
        if tag is None:
            return HELP_LINES + ["No tag scanned yet."]
        return HELP_LINES + [f"Current tag: {tag.name} ({tag.uid_hex})"]

    def cmd_scan(self) -> list[str]:
        return format_scan(self.service.scan())

    def cmd_scan_all(self) -> list[str]:
        return format_scan_all(self.service.scan_all())

    def cmd_dump(self) -> list[str]:
        return self.service.dump().format_lines()

    def cmd_keys(self) -> list[str]:
        return self.service.audit().format_lines()

    def cmd_ndef(self) -> list[str]:
        result = self.service.read_ndef()
        lines = ["--- NDEF Records ---"]
        if result.status == NdefStatus.NO_APPLICATION:
            return lines + ["No NDEF application in MAD."]
        if result.status == NdefStatus.NO_MESSAGE:
            return lines + ["No NDEF message found."]
        for number, record in enumerate(result.records, start=1):
            lines += describe_record(record, number)
        if not result.records:
            lines.append("NDEF message holds no records.")
        if result.unparseable:
            lines.append("Unparseable record, remaining records skipped.")
        return lines

    def cmd_write(self, args: str) -> list[str]:
        parts = args.split(None, 1)
        if len(parts) < 2:
            return [WRITE_USAGE]
        result = self.service.write_ndef(parts[0], parts[1])
        label = "URL" if result.record_type == RecordType.URL else "Text"
        if result.family == TagFamily.CLASSIC:
            return [f"Written {label} to Classic sector 1: {result.content}"]
        return [f"Written {label}: {result.content}"]

    def cmd_clone_read(self) -> list[str]:
        buffer = self.service.clone_read()
        noun = "blocks" if buffer.unit_size == 16 else "pages"
        lines = [f"Read {buffer.unit_count} {noun} into clone buffer."]
        if buffer.auth_failed_sectors:
            sectors = ", ".join(str(s) for s in buffer.auth_failed_sectors)
            lines.append(f"Zero-filled sectors (auth failed): {sectors}")
        return lines + [
            f"Source UID: {format_hex(buffer.source_uid)}",
            "Now place TARGET tag and run: CLONE WRITE",
        ]

    def cmd_clone_write(self) -> list[str]:
        return format_clone_write(self.service.clone_write())


def run_console(dispatcher: CommandDispatcher, stdin: TextIO = sys.stdin,
                stdout: TextIO = sys.stdout):
    """Read commands until EOF or QUIT, printing each report."""
    stdout.write("NFC Multi-Tool\n==============\nType HELP for commands.\n\n")
    while True:
        stdout.write(PROMPT)
        stdout.flush()
        line = stdin.readline()
        if not line:
            break
        if line.strip().upper() in EXIT_COMMANDS:
            break
        for out in dispatcher.execute(line):
            stdout.write(out + "\n")
        stdout.write("\n")
