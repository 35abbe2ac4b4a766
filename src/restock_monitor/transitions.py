"""
Transition Detector for the restock monitor.

Maps a (previous, current) pair of stock observations to a transition kind.
Only ``in_stock`` counts as buyable; every other status, including
``pre_order`` and ``coming_soon``, is treated as not buyable.
"""

from typing import Optional, Union

from .enums import StockStatus, TransitionKind
from .models import StockState, TransitionEvent

StatusLike = Union[StockState, StockStatus]


def _status_of(value: StatusLike) -> StockStatus:
    if isinstance(value, StockState):
        return value.status
    return value


def is_buyable(status: StockStatus) -> bool:
    """Check whether a status allows the product to be bought."""
    return status == StockStatus.IN_STOCK


def detect_transition(
    previous: Optional[StatusLike],
    current: StatusLike,
) -> TransitionKind:
    """
    Classify the change between two observations of one URL.

    The first observation of a URL (``previous`` is None) is a restock when
    the product is buyable and no transition otherwise; it is never a
    sold-out event. Changes between two non-buyable statuses are not
    transitions.

    Args:
        previous: The previous StockState or status, None on first observation
        current: The current StockState or status

    Returns:
        RESTOCK, SOLD_OUT or NONE
    """
    now_buyable = is_buyable(_status_of(current))

    if previous is None:
        return TransitionKind.RESTOCK if now_buyable else TransitionKind.NONE

    was_buyable = is_buyable(_status_of(previous))
    if not was_buyable and now_buyable:
        return TransitionKind.RESTOCK
    if was_buyable and not now_buyable:
        return TransitionKind.SOLD_OUT
    return TransitionKind.NONE


def transition_event(
    previous: Optional[StatusLike],
    current: StatusLike,
) -> TransitionEvent:
    """Classify like ``detect_transition``, keeping both statuses with the kind."""
    return TransitionEvent(
        kind=detect_transition(previous, current),
        previous_status=_status_of(previous) if previous is not None else None,
        new_status=_status_of(current),
    )
