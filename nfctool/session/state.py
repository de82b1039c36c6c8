"""Per-dispatcher session state: the current tag and the clone buffer."""

import threading
from dataclasses import dataclass, field
from typing import Optional

from nfctool.rfid.clone import CloneBuffer
from nfctool.rfid.tag_types import TagInfo


@dataclass
class SessionState:
    """
    The only mutable state shared between commands.

    ``lock`` serialises tag-facing operations so one reader transaction runs
    at a time, whichever surface (console or HTTP) issued it.
    """
    tag: Optional[TagInfo] = None
    clone: Optional[CloneBuffer] = None
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def to_dict(self) -> dict:
        return {
            "tag": self.tag.to_dict() if self.tag else None,
            "clone": self.clone.to_dict() if self.clone else None,
        }
