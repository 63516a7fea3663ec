import logging
from typing import Dict, Iterable, List, Optional, Tuple

from remit_models import ElementPath, Segment, SegmentElement

logger = logging.getLogger(__name__)

# Element groups that carry composites (and may repeat) per segment type in the
# 005010X221A1 guide. Only these groups are re-split by the dispatcher.
COMPOSITE_ELEMENTS: Dict[str, Tuple[int, ...]] = {
    "CLP": (11,),
    "K3": (3,),
    "PLB": (3, 5, 7, 9, 11, 13),
    "QTY": (3,),
    "RAS": (3,),
    "RDM": (4, 5),
    "REF": (4,),
    "SVC": (1, 6),
}


def _composite_chain(index: int, values: Dict[ElementPath, str]) -> List[ElementPath]:
    chain = [ElementPath(index=index)]
    sub_index = 1
    while True:
        path = ElementPath(index=index, component=sub_index)
        if path not in values:
            return chain
        chain.append(path)
        sub_index += 1


def _split_literal(index: int, literal: str, repetition_separator: str, composite_separator: str) -> List[SegmentElement]:
    if not composite_separator or composite_separator == repetition_separator:
        # Components cannot be told apart from repetitions here.
        logger.debug(
            f"Ambiguous separators (repetition='{repetition_separator}', composite='{composite_separator}') "
            f"for element {index}; keeping each repetition whole."
        )
        repetitions = [literal] if composite_separator else literal.split(repetition_separator)
        return [
            SegmentElement(path=ElementPath(index=index, repetition=rep_idx, component=1), value=value)
            for rep_idx, value in enumerate(repetitions)
        ]

    rebuilt: List[SegmentElement] = []
    for rep_idx, instance in enumerate(literal.split(repetition_separator)):
        for comp_idx, value in enumerate(instance.split(composite_separator), start=1):
            rebuilt.append(SegmentElement(path=ElementPath(index=index, repetition=rep_idx, component=comp_idx), value=value))
    return rebuilt


def normalize(
    segment: Segment,
    repetition_separator: str,
    composite_separator: str,
    indices: Optional[Iterable[int]] = None,
) -> Segment:
    """
    Repairs element groups the tokenizer flattened out of a repeated composite.

    The tokenizer splits on the composite separator eagerly but leaves the
    repetition separator inside the values, so "AA:BB^CC:DD" arrives as
    {3: "AA", 3-1: "BB^CC", 3-2: "DD"}. For each such group the original literal
    is rebuilt and re-split into 3(k)_m paths (k 0-based repetition, m 1-based
    component). Well-formed groups are left untouched.

    Returns a new Segment; the input is never modified. Running it again on its
    own output is a no-op because no top-level path remains for a rebuilt group.
    """
    elements = [el.model_copy() for el in segment.elements]
    if not repetition_separator:
        logger.debug(f"No repetition separator set; '{segment.name}' passed through unchanged.")
        return Segment(name=segment.name, elements=elements, line_number=segment.line_number)

    wanted = set(indices) if indices is not None else None
    for index in segment.element_indices():
        if wanted is not None and index not in wanted:
            continue

        values = {el.path: el.value for el in segment.elements_for(index)}
        if ElementPath(index=index) not in values:
            continue

        chain = _composite_chain(index, values)
        pieces = [values[path] for path in chain]
        if not any(repetition_separator in piece for piece in pieces):
            continue

        literal = composite_separator.join(pieces)
        rebuilt = _split_literal(index, literal, repetition_separator, composite_separator)
        logger.debug(f"Decomposed {segment.name}{index:02d} '{literal}' into {len(rebuilt)} repeated components.")

        replaced = set(chain)
        elements = [el for el in elements if el.path not in replaced] + rebuilt

    return Segment(name=segment.name, elements=elements, line_number=segment.line_number)
