"""
File-based endpoint state storage implementation
"""
import json
import os
import tempfile
from pathlib import Path
from typing import Dict, Any, Optional

from ...core.interfaces import StateStore
from ...core.logging import get_logger

logger = get_logger(__name__)


class FileEndpointStore(StateStore):
    """
    File-based endpoint storage.

    Stores one JSON document per endpoint:
    - {state_dir}/{name}.json - Endpoint configuration and recorded state
    """

    def __init__(self, state_dir: Path):
        """
        Initialize file endpoint store.

        Args:
            state_dir: Directory for storing state files
        """
        self.state_dir = Path(state_dir).expanduser()

    def _get_state_file(self, name: str) -> Path:
        """Get state file path for endpoint"""
        return self.state_dir / f"{name}.json"

    def save(self, name: str, state: Dict[str, Any]) -> None:
        """Save state for a named endpoint"""
        self.state_dir.mkdir(parents=True, exist_ok=True)
        state_file = self._get_state_file(name)

        fd, tmp = tempfile.mkstemp(dir=str(self.state_dir), prefix=f".{name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(json.dumps(state, indent=2))
            os.replace(tmp, state_file)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise

    def load(self, name: str) -> Optional[Dict[str, Any]]:
        """Load state for a named endpoint"""
        state_file = self._get_state_file(name)
        if not state_file.exists():
            return None

        try:
            return json.loads(state_file.read_text(encoding='utf-8'))
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable state file {state_file}: {e}")
            return None

    def delete(self, name: str) -> None:
        """Delete state for a named endpoint"""
        self._get_state_file(name).unlink(missing_ok=True)

    def list(self) -> list[str]:
        """List all endpoint names"""
        if not self.state_dir.is_dir():
            return []
        return sorted(p.stem for p in self.state_dir.glob("*.json"))

    def exists(self, name: str) -> bool:
        """Check if state exists for a named endpoint"""
        return self._get_state_file(name).exists()
