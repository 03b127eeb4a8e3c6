"""Item quantity change logs."""

from collections.abc import Callable, Iterable
from typing import Any

from record_keeper.models import Record
from record_keeper.utils import current_time


def new_item_log(
    item_definition_id: int | None = None,
    quantity_change: int = 0,
) -> Callable[[], dict[str, Any]]:
    """Factory for a fresh item log, dated now."""

    def factory() -> dict[str, Any]:
        return {
            "quantity_change": quantity_change,
            "item_definition_id": item_definition_id,
            "date": current_time().replace(microsecond=0),
        }

    return factory


def item_totals(logs: Iterable[Record]) -> dict[int | None, int]:
    """Net quantity per item definition id.

    Logs without an item definition are totalled under None.
    """
    totals: dict[int | None, int] = {}
    for log in logs:
        item_id = log.get("item_definition_id")
        totals[item_id] = totals.get(item_id, 0) + (log.get("quantity_change") or 0)
    return totals
