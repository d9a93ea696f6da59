"""
Credential domain models
"""
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Dict, Any, Optional

from ...core.constants import TUNNEL_MARKER


def marker_for(name: str, issued: datetime) -> str:
    """Comment placed on a client's public key, e.g. laptop@tunnel-20240131"""
    return f"{name}{TUNNEL_MARKER}{issued.strftime('%Y%m%d')}"


@dataclass
class ClientCredential:
    """Named client keypair"""
    name: str
    private_key_path: Path
    public_key_path: Path
    created_at: datetime
    revoked: bool = False
    fingerprint: Optional[str] = None

    def public_key(self) -> str:
        """Public key line as stored on disk"""
        return self.public_key_path.read_text(encoding="utf-8").strip()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        return {
            "name": self.name,
            "private_key_path": str(self.private_key_path),
            "public_key_path": str(self.public_key_path),
            "created_at": self.created_at.isoformat(),
            "revoked": self.revoked,
            "fingerprint": self.fingerprint,
        }
