"""
Data models for the shared authenticated session.
"""

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class AuthState(BaseModel):
    """
    Snapshot of an authenticated browser session.

    Serialized in the storage-state layout browser engines load directly:
    ``{"cookies": [...], "origins": [...]}``. Created once per run, never
    mutated afterwards.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    storage_path: Optional[Path] = Field(None, description="Where the snapshot is persisted")
    base_url: str = Field("", description="Origin the session belongs to")
    cookies: List[Dict[str, Any]] = Field(default_factory=list)
    origins: List[Dict[str, Any]] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_authenticated(self) -> bool:
        return bool(self.cookies)

    def to_storage_state(self) -> Dict[str, Any]:
        """Return the browser storage-state document."""
        return {"cookies": list(self.cookies), "origins": list(self.origins)}

    @classmethod
    def empty(cls, base_url: str = "") -> "AuthState":
        """An anonymous session, used when provisioning is disabled."""
        return cls(base_url=base_url)

    @classmethod
    def load(cls, path: Path, base_url: str = "") -> "AuthState":
        """Read a persisted snapshot fresh from disk."""
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        return cls(
            storage_path=Path(path),
            base_url=base_url,
            cookies=data.get("cookies", []),
            origins=data.get("origins", []),
        )
