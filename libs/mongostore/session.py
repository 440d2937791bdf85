from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

FLASH_KEY = "_flash"
MODIFIED_KEY = "modified"


class SessionOptions(BaseModel):
    """
    Cookie attributes applied to a session and to the cookie emitted for it.

    max_age <= 0 on save means: delete the stored session and expire the cookie.
    """
    model_config = ConfigDict(validate_assignment=True)

    path: str = "/"
    domain: Optional[str] = None
    max_age: int = Field(default=3600 * 24 * 30)
    http_only: bool = True
    secure: bool = False
    same_site: Literal["lax", "strict", "none"] = "lax"


@dataclass
class SessionRecord:
    name: str
    options: SessionOptions
    id: Optional[str] = None
    values: Dict[str, Any] = field(default_factory=dict)
    is_new: bool = True
    # Explicit expiry basis; wins over values["modified"].
    modified: Optional[datetime] = None

    @classmethod
    def fresh(cls, name: str, defaults: SessionOptions) -> "SessionRecord":
        # copy so later changes to store defaults don't leak into in-flight sessions
        return cls(name=name, options=defaults.model_copy(deep=True))

    def add_flash(self, value: Any, key: str = FLASH_KEY) -> None:
        self.values.setdefault(key, []).append(value)

    def flashes(self, key: str = FLASH_KEY) -> List[Any]:
        """Return and clear the flash messages stored under `key`."""
        return list(self.values.pop(key, None) or [])
