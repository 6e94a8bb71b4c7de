from __future__ import annotations

from enum import Enum
from typing import Dict, FrozenSet

from core.errors import InvalidTransitionError


class RecordState(str, Enum):
    UPLOADED = "uploaded"
    ESTIMATING = "estimating"
    ESTIMATED = "estimated"
    EDITING = "editing"
    SAVED = "saved"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


_S = RecordState

TRANSITIONS: Dict[RecordState, FrozenSet[RecordState]] = {
    _S.UPLOADED: frozenset({_S.ESTIMATING, _S.EDITING, _S.REJECTED}),
    _S.ESTIMATING: frozenset({_S.ESTIMATED}),
    _S.ESTIMATED: frozenset({_S.ESTIMATING, _S.EDITING, _S.SAVED, _S.REJECTED}),
    _S.EDITING: frozenset({_S.ESTIMATING, _S.EDITING, _S.SAVED, _S.REJECTED}),
    _S.SAVED: frozenset({_S.ESTIMATING, _S.EDITING, _S.SAVED, _S.ACCEPTED, _S.REJECTED}),
    _S.ACCEPTED: frozenset({_S.ESTIMATING, _S.EDITING, _S.SAVED, _S.ACCEPTED, _S.REJECTED}),
    _S.REJECTED: frozenset({_S.ESTIMATING, _S.EDITING, _S.SAVED, _S.ACCEPTED}),
}


def can_transition(current: RecordState, target: RecordState, has_crop: bool = False) -> bool:
    if target not in TRANSITIONS[current]:
        return False
    if target is RecordState.ACCEPTED and not has_crop:
        return False
    return True


def transition(current: RecordState, target: RecordState, has_crop: bool = False) -> RecordState:
    if target not in TRANSITIONS[current]:
        raise InvalidTransitionError(f"cannot move from {current.value} to {target.value}")
    if target is RecordState.ACCEPTED and not has_crop:
        raise InvalidTransitionError("cannot accept a record without a saved crop")
    return target


def is_exportable(state: RecordState, has_crop: bool) -> bool:
    return state is RecordState.ACCEPTED and has_crop
