from typing import Optional


def next_order(previous_segment_name: Optional[str], current_segment_name: str, counter: int) -> int:
    """
    Ordinal for a segment under its current parent.

    Consecutive segments with the same name under one parent (three REFs under a
    CLP, say) get 0, 1, 2, ...; any other name restarts at 0. The dispatcher
    clears `previous_segment_name` on every loop transition, so no memory leaks
    across parents.
    """
    if previous_segment_name is not None and current_segment_name == previous_segment_name:
        return counter + 1
    return 0
