"""
Authorization list (authorized_keys) management

The file is shared with whatever else the user keeps in it, so every
mutation is a read-modify-write that only touches lines carrying a tunnel
marker or the exact key being added.
"""
import os
import re
import tempfile
from pathlib import Path
from typing import List

from ...core.constants import TUNNEL_MARKER, SSH_DIR_MODE, AUTHORIZED_KEYS_MODE
from ...core.logging import get_logger

logger = get_logger(__name__)


def _tag_pattern(name: str) -> re.Pattern:
    return re.compile(rf"(?:^|\s){re.escape(name)}{re.escape(TUNNEL_MARKER)}\d{{8}}(?:\s|$)")


_ANY_TAG = re.compile(rf"\S+{re.escape(TUNNEL_MARKER)}\d{{8}}(?:\s|$)")


class AuthorizationList:
    """Line-oriented authorized_keys file"""

    def __init__(self, path: Path):
        self.path = Path(path).expanduser()

    def _read(self) -> str:
        if not self.path.exists():
            return ""
        return self.path.read_text(encoding="utf-8")

    def _ensure(self) -> None:
        """Create ~/.ssh and the file with restricted permissions"""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        os.chmod(self.path.parent, SSH_DIR_MODE)
        if not self.path.exists():
            self.path.touch(mode=AUTHORIZED_KEYS_MODE)
        os.chmod(self.path, AUTHORIZED_KEYS_MODE)

    def _write(self, text: str) -> None:
        """Atomically replace the file content"""
        self._ensure()
        fd, tmp = tempfile.mkstemp(dir=str(self.path.parent), prefix=".authorized_keys.")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(text)
            os.chmod(tmp, AUTHORIZED_KEYS_MODE)
            os.replace(tmp, self.path)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise

    def contains(self, key_line: str) -> bool:
        """Byte-for-byte containment check of a key line"""
        return key_line.strip() in self._read()

    def add(self, key_line: str) -> bool:
        """
        Append a key line unless already present.

        Returns:
            True if the line was appended
        """
        key_line = key_line.strip()
        text = self._read()
        if key_line in text:
            return False

        if text and not text.endswith("\n"):
            text += "\n"
        self._write(text + key_line + "\n")
        return True

    def entries_for(self, name: str) -> List[str]:
        """Lines tagged with a client's marker"""
        pattern = _tag_pattern(name)
        return [line for line in self._read().splitlines() if pattern.search(line)]

    def remove_tagged(self, name: str) -> int:
        """
        Remove every line tagged with a client's marker.

        Returns:
            Number of lines removed
        """
        return self._remove_matching(_tag_pattern(name))

    def count_tagged(self) -> int:
        """Count lines carrying any tunnel marker"""
        return sum(1 for line in self._read().splitlines() if _ANY_TAG.search(line))

    def remove_all_tagged(self) -> int:
        """Remove every line carrying any tunnel marker"""
        return self._remove_matching(_ANY_TAG)

    def _remove_matching(self, pattern: re.Pattern) -> int:
        text = self._read()
        if not text:
            return 0

        kept = []
        removed = 0
        for line in text.splitlines(keepends=True):
            if pattern.search(line.rstrip("\r\n")):
                removed += 1
            else:
                kept.append(line)

        if removed:
            self._write("".join(kept))
            logger.debug(f"Removed {removed} line(s) from {self.path}")
        return removed
