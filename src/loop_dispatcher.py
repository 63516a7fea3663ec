import logging
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from element_decomposer import COMPOSITE_ELEMENTS, normalize
from loop_state_machine import transition
from order_tracker import next_order
from remit_errors import SinkFailure
from remit_models import Changed, LoopLevel, ParentKind, ParseState, Segment, StructuralAnomaly
from remit_sink import Sink

logger = logging.getLogger(__name__)

TransitionObserver = Callable[[ParseState, ParseState, Segment], None]

ENVELOPE_SEGMENTS = frozenset({"ISA", "GS", "GE", "IEA"})

# Handle slot that each loop's row is stored in.
_LOOP_HANDLES: Dict[LoopLevel, ParentKind] = {
    LoopLevel.HEADER: ParentKind.HEADER,
    LoopLevel.LOOP_1000: ParentKind.LOOP_1000,
    LoopLevel.LOOP_2000: ParentKind.LOOP_2000,
    LoopLevel.LOOP_2100: ParentKind.LOOP_2100,
    LoopLevel.LOOP_2105: ParentKind.LOOP_2105,
    LoopLevel.LOOP_2110: ParentKind.LOOP_2110,
}

# (level, segment) -> (loop the segment opens, parent the loop row hangs off)
_LOOP_OPENERS: Dict[Tuple[LoopLevel, str], Tuple[LoopLevel, Optional[ParentKind]]] = {
    (LoopLevel.HEADER, "ST"): (LoopLevel.HEADER, None),
    (LoopLevel.LOOP_1000, "N1"): (LoopLevel.LOOP_1000, ParentKind.HEADER),
    (LoopLevel.LOOP_2000, "LX"): (LoopLevel.LOOP_2000, ParentKind.HEADER),
    (LoopLevel.LOOP_2100, "CLP"): (LoopLevel.LOOP_2100, ParentKind.LOOP_2000),
    (LoopLevel.LOOP_2105, "N1"): (LoopLevel.LOOP_2105, ParentKind.LOOP_2100),
    (LoopLevel.LOOP_2110, "SVC"): (LoopLevel.LOOP_2110, ParentKind.LOOP_2100),
}


def _attach(parent: ParentKind, *names: str) -> Dict[str, ParentKind]:
    return {name: parent for name in names}


# Non-loop segments accepted at each level and the open row they attach to.
_ATTRIBUTE_PARENTS: Dict[LoopLevel, Dict[str, ParentKind]] = {
    LoopLevel.HEADER: _attach(ParentKind.HEADER, "BPR", "TRN", "CUR", "REF", "DTM", "NTE"),
    LoopLevel.LOOP_1000: {
        **_attach(ParentKind.N1, "N2", "N3", "N4"),
        **_attach(ParentKind.LOOP_1000, "REF", "PER", "RDM", "DTM"),
    },
    LoopLevel.LOOP_2000: _attach(ParentKind.LOOP_2000, "TS3", "TS2"),
    LoopLevel.LOOP_2100: _attach(
        ParentKind.LOOP_2100, "CAS", "NM1", "MIA", "MOA", "REF", "DTM", "PER", "AMT", "QTY", "RAS", "K3"
    ),
    LoopLevel.LOOP_2105: {
        **_attach(ParentKind.N1, "N2", "N3", "N4"),
        **_attach(ParentKind.LOOP_2105, "REF", "PER", "DTM"),
    },
    LoopLevel.LOOP_2110: _attach(ParentKind.LOOP_2110, "DTM", "CAS", "REF", "AMT", "QTY", "LQ", "RAS", "K3"),
    LoopLevel.SUMMARY: _attach(ParentKind.HEADER, "PLB", "SE"),
}


def log_transition(previous: ParseState, current: ParseState, segment: Segment) -> None:
    logger.debug(f"=============== {current.describe()} (entered on '{segment.name}', was {previous.describe()})")


class LoopDispatcher:
    """
    Walks an 835 segment stream, keeps the structural cursor current and sends
    every recognised segment to the sink under the row it belongs to.
    """

    def __init__(
        self,
        sink: Sink,
        observer: Optional[TransitionObserver] = None,
        composite_elements: Optional[Mapping[str, Sequence[int]]] = None,
        repetition_separator: str = "^",
        composite_separator: str = ":",
    ):
        self.sink = sink
        self.observer = observer or log_transition
        self.composite_elements = dict(COMPOSITE_ELEMENTS if composite_elements is None else composite_elements)
        self.repetition_separator = repetition_separator
        self.composite_separator = composite_separator
        self.anomalies: List[StructuralAnomaly] = []

    def new_state(self, previous: Optional[ParseState] = None) -> ParseState:
        """Fresh cursor; only the active separators carry over from `previous`."""
        if previous is None:
            return ParseState(
                repetition_separator=self.repetition_separator,
                composite_separator=self.composite_separator,
            )
        return ParseState(
            repetition_separator=previous.repetition_separator,
            composite_separator=previous.composite_separator,
        )

    def process(self, state: ParseState, segment: Segment) -> ParseState:
        result = transition(state, segment.name)
        if isinstance(result, Changed):
            previous = state
            state = result.state
            state.current_order = 0
            state.previous_segment_name = None
            state.n1_handle = None
            self._drop_closed_handles(state)
            self.observer(previous, state, segment)

        state.current_order = next_order(state.previous_segment_name, segment.name, state.current_order)
        normalized = self._normalize(state, segment)
        self._route(state, normalized)
        state.previous_segment_name = segment.name
        return state

    def consume(self, segments: Iterable[Segment]) -> List[ParseState]:
        """
        Processes a whole stream. Each ST after the first starts a fresh cursor,
        so one final state comes back per transaction set.
        """
        finished: List[ParseState] = []
        state = self.new_state()
        for segment in segments:
            if segment.name == "ST" and state.header_handle is not None:
                self._finish(state, finished)
                state = self.new_state(state)
            state = self.process(state, segment)

        if state.header_handle is not None:
            self._finish(state, finished)

        if self.anomalies:
            logger.warning("--- 835 LOAD SUMMARY: STRUCTURAL ANOMALIES FOUND ---")
            logger.warning(f"Transactions: {len(finished)}, anomalies: {len(self.anomalies)}")
            for anomaly in self.anomalies:
                logger.warning(f"  - {anomaly.message}")
            logger.warning("--- END OF SUMMARY ---")
        else:
            logger.info(f"--- 835 LOAD SUMMARY: {len(finished)} transaction(s), no anomalies ---")
        return finished

    def _finish(self, state: ParseState, finished: List[ParseState]) -> None:
        if not state.transaction_complete:
            logger.warning(f"Transaction set ended in {state.describe()} without an SE trailer.")
        finished.append(state)

    def _drop_closed_handles(self, state: ParseState) -> None:
        for level, parent_kind in _LOOP_HANDLES.items():
            if level != LoopLevel.HEADER and state.index_for(level) is None:
                state.set_handle(parent_kind, None)
        # The entered loop's handle belongs to its previous instance until the opener replaces it.
        if state.level != LoopLevel.HEADER and state.level in _LOOP_HANDLES:
            state.set_handle(_LOOP_HANDLES[state.level], None)

    def _normalize(self, state: ParseState, segment: Segment) -> Segment:
        indices = self.composite_elements.get(segment.name)
        if not indices:
            return segment
        return normalize(segment, state.repetition_separator, state.composite_separator, indices)

    def _route(self, state: ParseState, segment: Segment) -> None:
        name = segment.name
        if name in ENVELOPE_SEGMENTS:
            if name == "ISA":
                self._read_separators(state, segment)
            return

        opener = _LOOP_OPENERS.get((state.level, name))
        if opener is not None:
            loop_kind, parent_kind = opener
            self._open_loop(state, segment, loop_kind, parent_kind)
            return

        parent_kind = _ATTRIBUTE_PARENTS.get(state.level, {}).get(name)
        if parent_kind is None:
            self._anomaly(state, segment, f"No rule for '{name}' in {state.describe()}; segment ignored.")
            return

        parent_handle = state.handle_for(parent_kind)
        if parent_handle is None:
            self._anomaly(state, segment, f"'{name}' belongs under {parent_kind.value} but none is open; segment ignored.")
            return

        self._write(state, segment, parent_kind, parent_handle)
        if name == "SE":
            state.transaction_complete = True
            logger.info(f"=== TRANSACTION SET {segment.get(2) or 'UNKNOWN'} COMPLETE ===")

    def _open_loop(
        self,
        state: ParseState,
        segment: Segment,
        loop_kind: LoopLevel,
        parent_kind: Optional[ParentKind],
    ) -> None:
        parent_handle = None
        if parent_kind is not None:
            parent_handle = state.handle_for(parent_kind)
            if parent_handle is None:
                self._anomaly(state, segment, f"Cannot open {loop_kind.label}: no open {parent_kind.value}.")
                return

        if loop_kind == LoopLevel.HEADER:
            logger.info(f"=== TRANSACTION SET {segment.get(2) or 'UNKNOWN'} ===")

        ordinal = state.index_for(loop_kind) or 0
        handle = self._call_sink(state, segment, self.sink.open_loop, loop_kind, parent_handle, ordinal)
        own_kind = _LOOP_HANDLES[loop_kind]
        state.set_handle(own_kind, handle)

        row = self._write(state, segment, own_kind, handle)
        if segment.name == "N1":
            state.n1_handle = row

    def _write(self, state: ParseState, segment: Segment, parent_kind: ParentKind, parent_handle: Any) -> Any:
        return self._call_sink(
            state,
            segment,
            self.sink.write_attributes,
            segment.name,
            parent_kind,
            parent_handle,
            state.current_order,
            segment.as_dict(),
        )

    def _call_sink(self, state: ParseState, segment: Segment, operation: Callable[..., Any], *args: Any) -> Any:
        try:
            return operation(*args)
        except Exception as exc:
            logger.error(f"Sink failure on '{segment.name}' in {state.describe()}: {exc}", exc_info=True)
            raise SinkFailure(segment.name, state.level, segment.line_number, detail=str(exc)) from exc

    def _read_separators(self, state: ParseState, segment: Segment) -> None:
        repetition = segment.get(11)
        composite = segment.get(16)
        if repetition:
            state.repetition_separator = repetition
        if composite:
            state.composite_separator = composite
        logger.debug(
            f"Separators from ISA: repetition='{state.repetition_separator}', composite='{state.composite_separator}'"
        )

    def _anomaly(self, state: ParseState, segment: Segment, message: str) -> None:
        logger.debug(f"[STRUCTURAL ANOMALY] {message}")
        self.anomalies.append(
            StructuralAnomaly(
                message=message,
                segment_name=segment.name,
                level=state.level,
                line_number=segment.line_number,
            )
        )
