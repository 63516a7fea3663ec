"""
Loop transitions for an 835 transaction set.

The 835 loop nesting is strictly ordered and each loop-opening segment name is
unique to its nesting context, so the next structural position depends only on
the current level and the incoming segment name. No lookahead is needed.
"""
from typing import Any, Callable, Dict, Optional

from remit_models import UNCHANGED, Changed, LoopLevel, ParseState, TransitionResult

_CLAIM_LEVELS = (LoopLevel.LOOP_2100, LoopLevel.LOOP_2105, LoopLevel.LOOP_2110)
_PAYMENT_LEVELS = (LoopLevel.LOOP_2000,) + _CLAIM_LEVELS


def _changed(state: ParseState, **updates: Any) -> Changed:
    return Changed(state=state.model_copy(update=updates))


def _bump(idx: Optional[int]) -> int:
    return 0 if idx is None else idx + 1


def _on_n1(state: ParseState) -> TransitionResult:
    if state.level == LoopLevel.HEADER:
        return _changed(state, level=LoopLevel.LOOP_1000, loop_1000_idx=0)
    if state.level == LoopLevel.LOOP_1000:
        return _changed(state, loop_1000_idx=_bump(state.loop_1000_idx))
    if state.level == LoopLevel.LOOP_2100:
        return _changed(state, level=LoopLevel.LOOP_2105, loop_2105_idx=0)
    if state.level in (LoopLevel.LOOP_2105, LoopLevel.LOOP_2110):
        return _changed(state, level=LoopLevel.LOOP_2105, loop_2105_idx=_bump(state.loop_2105_idx))
    return UNCHANGED


def _on_lx(state: ParseState) -> TransitionResult:
    if state.level in (LoopLevel.HEADER, LoopLevel.LOOP_1000):
        return _changed(state, level=LoopLevel.LOOP_2000, loop_2000_idx=0)
    if state.level in _PAYMENT_LEVELS:
        return _changed(
            state,
            level=LoopLevel.LOOP_2000,
            loop_2000_idx=_bump(state.loop_2000_idx),
            loop_2100_idx=None,
            loop_2105_idx=None,
            loop_2110_idx=None,
        )
    return UNCHANGED


def _on_clp(state: ParseState) -> TransitionResult:
    if state.level == LoopLevel.LOOP_2000:
        return _changed(state, level=LoopLevel.LOOP_2100, loop_2100_idx=0)
    if state.level in _CLAIM_LEVELS:
        return _changed(
            state,
            level=LoopLevel.LOOP_2100,
            loop_2100_idx=_bump(state.loop_2100_idx),
            loop_2105_idx=None,
            loop_2110_idx=None,
        )
    return UNCHANGED


def _on_svc(state: ParseState) -> TransitionResult:
    if state.level == LoopLevel.LOOP_2110:
        return _changed(state, loop_2110_idx=_bump(state.loop_2110_idx))
    if state.level in (LoopLevel.LOOP_2100, LoopLevel.LOOP_2105):
        return _changed(state, level=LoopLevel.LOOP_2110, loop_2110_idx=0)
    return UNCHANGED


def _on_closing(state: ParseState) -> TransitionResult:
    # PLB and SE both close the detail section; once in summary nothing reopens it.
    if state.level == LoopLevel.SUMMARY:
        return UNCHANGED
    return _changed(state, level=LoopLevel.SUMMARY)


_RULES: Dict[str, Callable[[ParseState], TransitionResult]] = {
    "N1": _on_n1,
    "LX": _on_lx,
    "CLP": _on_clp,
    "SVC": _on_svc,
    "PLB": _on_closing,
    "SE": _on_closing,
}


def transition(state: ParseState, segment_name: str) -> TransitionResult:
    """
    Computes the structural position after `segment_name`.

    Returns Changed with a new state when the segment opens, repeats or closes a
    loop, and Unchanged otherwise. Never raises and never mutates `state`;
    resetting the order counter and open handles is left to the caller.
    """
    rule = _RULES.get(segment_name)
    if rule is None:
        return UNCHANGED
    return rule(state)
