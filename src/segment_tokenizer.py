import logging
from typing import Iterator, List

from pydantic import BaseModel

from remit_models import ElementPath, Segment, SegmentElement

logger = logging.getLogger(__name__)

ISA_LENGTH = 106


class Delimiters(BaseModel):
    element: str = "*"
    repetition: str = "^"
    component: str = ":"
    segment: str = "~"


def detect_delimiters(edi_string: str) -> Delimiters:
    clean_edi = edi_string.strip()
    if clean_edi.startswith("ISA") and len(clean_edi) >= ISA_LENGTH:
        # Positions are fixed in the X12 standard
        delimiters = Delimiters(
            element=clean_edi[3],
            repetition=clean_edi[82],
            component=clean_edi[104],
            segment=clean_edi[105],
        )
        logger.debug(
            f"Delimiters detected: Element='{delimiters.element}', Repetition='{delimiters.repetition}', "
            f"Component='{delimiters.component}', Segment='{delimiters.segment}'"
        )
        return delimiters
    logger.warning("Could not find standard ISA segment. Falling back to default delimiters ('*', '^', ':', '~').")
    return Delimiters()


class X12Tokenizer:
    """
    Splits raw X12 text into Segments.

    Values holding the component separator are split eagerly into i, i-1, i-2...
    while the repetition separator is left inside the values. That is how the
    common streaming X12 readers behave, and the element decomposer repairs the
    groups that were repeated.
    """

    def __init__(self, edi_string: str):
        self.edi_string = edi_string
        self.delimiters = detect_delimiters(edi_string)

    def segments(self) -> Iterator[Segment]:
        edi_content = self.edi_string.strip().replace("\r\n", "\n").replace("\r", "\n")
        if self.delimiters.segment != "\n":
            edi_content = edi_content.replace("\n", "")

        for i, seg_str in enumerate(edi_content.split(self.delimiters.segment)):
            clean_seg = seg_str.strip()
            if not clean_seg:
                continue

            parts = clean_seg.split(self.delimiters.element)
            segment_id = parts[0]
            yield Segment(name=segment_id, elements=self._elements(segment_id, parts[1:]), line_number=i + 1)
            if segment_id == "IEA":
                break

    def _elements(self, segment_id: str, values: List[str]) -> List[SegmentElement]:
        elements: List[SegmentElement] = []
        for position, value in enumerate(values, start=1):
            # ISA16 is the component separator itself.
            if segment_id == "ISA" or self.delimiters.component not in value:
                elements.append(SegmentElement(path=ElementPath(index=position), value=value))
                continue
            head, *rest = value.split(self.delimiters.component)
            elements.append(SegmentElement(path=ElementPath(index=position), value=head))
            for sub_index, sub_value in enumerate(rest, start=1):
                elements.append(SegmentElement(path=ElementPath(index=position, component=sub_index), value=sub_value))
        return elements
