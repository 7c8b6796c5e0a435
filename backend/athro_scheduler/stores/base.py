"""Table-level access to the data store.

A store only knows about tables, rows (plain dicts) and two kinds of
filter: ``match`` (every column equals its value) and ``any_of`` (at least
one column equals its value). Everything domain-specific lives in the
repository.
"""
from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Protocol

Row = Dict[str, Any]
Filters = Optional[Mapping[str, Any]]

CALENDAR_EVENTS = "calendar_events"
PREFERRED_STUDY_SLOTS = "preferred_study_slots"
BLOCKED_TIMES = "blocked_times"


class TableStore(Protocol):
    async def select(
        self,
        table: str,
        *,
        match: Filters = None,
        any_of: Filters = None,
        order_by: Optional[str] = None,
    ) -> List[Row]: ...

    async def insert(self, table: str, rows: List[Row]) -> List[Row]: ...

    async def update(self, table: str, values: Row, *, match: Filters = None, any_of: Filters = None) -> List[Row]: ...

    async def delete(self, table: str, *, match: Filters = None, any_of: Filters = None) -> int: ...

    async def aclose(self) -> None: ...
