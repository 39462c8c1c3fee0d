from __future__ import annotations

from dataclasses import dataclass, field
from typing import List

from app.viewmodels.set_vm import SetVM


@dataclass
class SetGroupVM:
    group_id: str
    title: str
    category_id: str | None
    items: List[SetVM] = field(default_factory=list)
    is_expanded: bool = True
