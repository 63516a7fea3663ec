import re
from enum import Enum
from typing import Any, Dict, List, Literal, Mapping, Optional, Tuple, Union, Annotated

from pydantic import BaseModel, ConfigDict, Field, model_validator

# Data model for walking an 835 remittance: element addressing, segments,
# the structural cursor and the transition results the state machine hands back.

_PATH_PATTERN = re.compile(r"^(?P<index>\d+)(?:-(?P<component>\d+)|\((?P<repetition>\d+)\)_(?P<rep_component>\d+))?$")


class ElementPath(BaseModel):
    """
    Address of a value inside a segment.

    Three forms exist:
      - "3"      top-level element 3
      - "3-2"    composite sub-index 2 of element 3, as emitted by the tokenizer
      - "3(1)_2" repetition 1, component 2 of element 3, after decomposition
    """
    model_config = ConfigDict(frozen=True)

    index: int = Field(ge=1)
    component: Optional[int] = Field(None, ge=1)
    repetition: Optional[int] = Field(None, ge=0)

    @model_validator(mode="after")
    def _repetition_needs_component(self) -> "ElementPath":
        if self.repetition is not None and self.component is None:
            raise ValueError("A repeated element path must name a component.")
        return self

    @classmethod
    def parse(cls, text: Union[str, int]) -> "ElementPath":
        match = _PATH_PATTERN.match(str(text).strip())
        if not match:
            raise ValueError(f"Invalid element path: '{text}'")
        if match.group("repetition") is not None:
            return cls(
                index=int(match.group("index")),
                repetition=int(match.group("repetition")),
                component=int(match.group("rep_component")),
            )
        component = match.group("component")
        return cls(index=int(match.group("index")), component=int(component) if component else None)

    @property
    def is_top_level(self) -> bool:
        return self.component is None and self.repetition is None

    def sort_key(self) -> Tuple[int, int, int]:
        rep = self.repetition if self.repetition is not None else -1
        return (self.index, rep, self.component or 0)

    def __str__(self) -> str:
        if self.repetition is not None:
            return f"{self.index}({self.repetition})_{self.component}"
        if self.component is not None:
            return f"{self.index}-{self.component}"
        return str(self.index)

    def __lt__(self, other: "ElementPath") -> bool:
        return self.sort_key() < other.sort_key()


class SegmentElement(BaseModel):
    """A single (path, value) pair within a segment."""
    path: ElementPath
    value: str


class Segment(BaseModel):
    """
    One EDI segment: its name plus an ordered association list of element values.
    Elements are kept sorted by path so contiguous-range scans are well defined.
    """
    name: str
    elements: List[SegmentElement] = Field(default_factory=list)
    line_number: Optional[int] = None

    @model_validator(mode="after")
    def _order_elements(self) -> "Segment":
        self.elements.sort(key=lambda el: el.path)
        return self

    @classmethod
    def from_mapping(cls, name: str, mapping: Mapping[Union[str, int], str], line_number: Optional[int] = None) -> "Segment":
        elements = [SegmentElement(path=ElementPath.parse(key), value=value) for key, value in mapping.items()]
        return cls(name=name, elements=elements, line_number=line_number)

    def get(self, path: Union[ElementPath, str, int]) -> Optional[str]:
        if not isinstance(path, ElementPath):
            path = ElementPath.parse(path)
        return next((el.value for el in self.elements if el.path == path), None)

    def element_indices(self) -> List[int]:
        """Distinct top-level indices present, ascending."""
        return sorted({el.path.index for el in self.elements})

    def elements_for(self, index: int) -> List[SegmentElement]:
        return [el for el in self.elements if el.path.index == index]

    def as_dict(self) -> Dict[str, str]:
        return {str(el.path): el.value for el in self.elements}


class LoopLevel(str, Enum):
    HEADER = "header"
    LOOP_1000 = "loop_1000"
    LOOP_2000 = "loop_2000"
    LOOP_2100 = "loop_2100"
    LOOP_2105 = "loop_2105"
    LOOP_2110 = "loop_2110"
    SUMMARY = "summary"

    @property
    def label(self) -> str:
        return self.value.replace("_", " ")


class ParentKind(str, Enum):
    """Which open row a non-loop segment is attached to."""
    HEADER = "header"
    LOOP_1000 = "loop_1000"
    LOOP_2000 = "loop_2000"
    LOOP_2100 = "loop_2100"
    LOOP_2105 = "loop_2105"
    LOOP_2110 = "loop_2110"
    N1 = "n1"


_INDEXED_LEVELS = {
    LoopLevel.LOOP_1000: "loop_1000_idx",
    LoopLevel.LOOP_2000: "loop_2000_idx",
    LoopLevel.LOOP_2100: "loop_2100_idx",
    LoopLevel.LOOP_2105: "loop_2105_idx",
    LoopLevel.LOOP_2110: "loop_2110_idx",
}

_HANDLE_FIELDS = {
    ParentKind.HEADER: "header_handle",
    ParentKind.LOOP_1000: "loop_1000_handle",
    ParentKind.LOOP_2000: "loop_2000_handle",
    ParentKind.LOOP_2100: "loop_2100_handle",
    ParentKind.LOOP_2105: "loop_2105_handle",
    ParentKind.LOOP_2110: "loop_2110_handle",
    ParentKind.N1: "n1_handle",
}


class ParseState(BaseModel):
    """
    Structural cursor for one transaction set. Created at stream start and
    mutated segment by segment; loop indices stay None until the level is entered.
    """
    level: LoopLevel = LoopLevel.HEADER

    loop_1000_idx: Optional[int] = None
    loop_2000_idx: Optional[int] = None
    loop_2100_idx: Optional[int] = None
    loop_2105_idx: Optional[int] = None
    loop_2110_idx: Optional[int] = None

    header_handle: Optional[Any] = None
    loop_1000_handle: Optional[Any] = None
    loop_2000_handle: Optional[Any] = None
    loop_2100_handle: Optional[Any] = None
    loop_2105_handle: Optional[Any] = None
    loop_2110_handle: Optional[Any] = None
    n1_handle: Optional[Any] = None

    repetition_separator: str = "^"
    composite_separator: str = ":"

    previous_segment_name: Optional[str] = None
    current_order: int = 0
    transaction_complete: bool = False

    def index_for(self, level: LoopLevel) -> Optional[int]:
        field_name = _INDEXED_LEVELS.get(level)
        return getattr(self, field_name) if field_name else None

    def handle_for(self, parent_kind: ParentKind) -> Optional[Any]:
        return getattr(self, _HANDLE_FIELDS[parent_kind])

    def set_handle(self, parent_kind: ParentKind, handle: Optional[Any]) -> None:
        setattr(self, _HANDLE_FIELDS[parent_kind], handle)

    def describe(self) -> str:
        idx = self.index_for(self.level)
        return self.level.label if idx is None else f"{self.level.label} {idx}"


class Changed(BaseModel):
    kind: Literal["changed"] = "changed"
    state: ParseState


class Unchanged(BaseModel):
    kind: Literal["unchanged"] = "unchanged"


TransitionResult = Annotated[Union[Changed, Unchanged], Field(discriminator="kind")]

UNCHANGED = Unchanged()


class StructuralAnomaly(BaseModel):
    """A segment that no transition rule or attribute handler covers. Non-fatal."""
    message: str
    segment_name: str
    level: LoopLevel
    line_number: Optional[int] = None
