import logging
from typing import Any, Dict, List, Literal, Optional, Protocol

from pydantic import BaseModel, Field

from remit_models import LoopLevel, ParentKind

logger = logging.getLogger(__name__)


class Sink(Protocol):
    """
    Persistence boundary. The loader only needs handles back; tables, keys and
    cascades are the sink's business.
    """

    def open_loop(self, kind: LoopLevel, parent_handle: Optional[Any], ordinal: int) -> Any:
        ...

    def write_attributes(
        self,
        kind: str,
        parent_kind: ParentKind,
        parent_handle: Any,
        ordinal: int,
        fields: Dict[str, str],
    ) -> Any:
        ...


class SinkRecord(BaseModel):
    """One call made against a RecordingSink."""
    operation: Literal["open_loop", "write_attributes"]
    handle: int
    kind: str
    parent_kind: Optional[str] = None
    parent_handle: Optional[int] = None
    ordinal: int
    fields: Dict[str, str] = Field(default_factory=dict)


class RecordingSink:
    """In-memory sink that hands out sequential integer handles and keeps every call."""

    def __init__(self):
        self.records: List[SinkRecord] = []
        self._next_handle = 1

    def _record(self, **values: Any) -> int:
        handle = self._next_handle
        self._next_handle += 1
        self.records.append(SinkRecord(handle=handle, **values))
        return handle

    def open_loop(self, kind: LoopLevel, parent_handle: Optional[Any], ordinal: int) -> int:
        handle = self._record(operation="open_loop", kind=kind.value, parent_handle=parent_handle, ordinal=ordinal)
        logger.debug(f"Opened {kind.label} #{ordinal} as handle {handle} (parent {parent_handle})")
        return handle

    def write_attributes(
        self,
        kind: str,
        parent_kind: ParentKind,
        parent_handle: Any,
        ordinal: int,
        fields: Dict[str, str],
    ) -> int:
        return self._record(
            operation="write_attributes",
            kind=kind,
            parent_kind=parent_kind.value,
            parent_handle=parent_handle,
            ordinal=ordinal,
            fields=dict(fields),
        )

    def children_of(self, handle: int) -> List[SinkRecord]:
        return [record for record in self.records if record.parent_handle == handle]

    def segments(self, kind: str) -> List[SinkRecord]:
        return [r for r in self.records if r.operation == "write_attributes" and r.kind == kind]

    def loops(self, kind: LoopLevel) -> List[SinkRecord]:
        return [r for r in self.records if r.operation == "open_loop" and r.kind == kind.value]
