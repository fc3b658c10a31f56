from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class CursorState:
    last_ledger: int
    last_cursor: Optional[str]

    @property
    def is_fresh(self) -> bool:
        return self.last_ledger == 0 and not self.last_cursor
