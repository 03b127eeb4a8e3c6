"""Bond tracking between the user and their Pokemon.

Bond logs record changes in bond value for one Pokemon. Each Pokemon may have
one styling config; Pokemon without a stored config get an unsaved placeholder
so the config editor can show a row for every Pokemon.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

from record_keeper.editing.debounce import ErrorObserver
from record_keeper.editing.list_editor import OptimisticListEditor
from record_keeper.models import Record
from record_keeper.persistence.base import RecordStore
from record_keeper.utils import current_time


def pokemon_label(pokemon: Record) -> str:
    """Display label such as "Sparky the Pikachu"."""
    name = pokemon.get("name") or "(Unnamed)"
    species = pokemon.get("species") or "(Unknown Pokemon)"
    return f"{name} the {species}"


def placeholder_configs(
    configs: Sequence[Record],
    pokemon: Sequence[Record],
    key_factory: Callable[[], str] | None = None,
) -> list[Record]:
    """Build unsaved configs for every Pokemon that has no config row.

    Args:
        configs: Stored styling configs.
        pokemon: All Pokemon, in display order.
        key_factory: Allocates keys for the placeholders. Defaults to uuid4 hex.

    Returns:
        One placeholder per Pokemon lacking a config, in Pokemon order.
    """
    key_factory = key_factory or (lambda: uuid.uuid4().hex)
    configured = {config.get("pokemon_uuid") for config in configs}
    return [
        Record(
            key=key_factory(),
            fields={"pokemon_uuid": pkm.key, "color": None, "image_url": None},
        )
        for pkm in pokemon
        if pkm.key not in configured
    ]


def new_bond_log(pokemon: Sequence[Record]) -> Callable[[], dict[str, Any]]:
    """Factory for a fresh bond log against the first Pokemon.

    Raises:
        ValueError: If there are no Pokemon to log bond for.
    """
    if not pokemon:
        raise ValueError("Cannot create a bond log without any Pokemon")
    first = pokemon[0].key

    def factory() -> dict[str, Any]:
        return {"value": 0, "pokemon": first, "date": current_time().replace(microsecond=0)}

    return factory


@dataclass(frozen=True, slots=True)
class BondSummaryRow:
    """Bond total for one Pokemon.

    Attributes:
        pokemon_uuid: Key of the Pokemon.
        label: Display label of the Pokemon.
        total: Sum of the values of its bond logs.
        log_count: Number of bond logs.
        config: Its styling config, if any.
    """

    pokemon_uuid: str
    label: str
    total: int
    log_count: int
    config: Record | None = None


def summarize_bonds(
    logs: Sequence[Record],
    configs: Sequence[Record],
    pokemon: Sequence[Record],
) -> list[BondSummaryRow]:
    """Total bond per Pokemon, in Pokemon order."""
    totals: dict[str, int] = {}
    counts: dict[str, int] = {}
    for log in logs:
        pokemon_uuid = log.get("pokemon")
        totals[pokemon_uuid] = totals.get(pokemon_uuid, 0) + (log.get("value") or 0)
        counts[pokemon_uuid] = counts.get(pokemon_uuid, 0) + 1

    configs_by_pokemon = {config.get("pokemon_uuid"): config for config in configs}
    return [
        BondSummaryRow(
            pokemon_uuid=pkm.key,
            label=pokemon_label(pkm),
            total=totals.get(pkm.key, 0),
            log_count=counts.get(pkm.key, 0),
            config=configs_by_pokemon.get(pkm.key),
        )
        for pkm in pokemon
    ]


class BondTracker:
    """Bond logs and styling configs, edited optimistically.

    Args:
        log_store: Store of bond logs.
        config_store: Store of bond styling configs.
        pokemon_store: Store of Pokemon, read only here.
        window_ms: Debounce window for both editors.
        on_write_error: Observer for failed debounced writes.

    Example:
        ```python
        tracker = BondTracker(log_store, config_store, pokemon_store)
        await tracker.load()
        log = await tracker.add_log()
        tracker.logs.edit(log, "value", 3)
        rows = tracker.summary()
        ```
    """

    def __init__(
        self,
        log_store: RecordStore,
        config_store: RecordStore,
        pokemon_store: RecordStore,
        window_ms: float | None = None,
        on_write_error: ErrorObserver | None = None,
    ) -> None:
        self._pokemon_store = pokemon_store
        self._pokemon: list[Record] = []
        self.logs = OptimisticListEditor(
            log_store, window_ms=window_ms, on_write_error=on_write_error
        )
        self.configs = OptimisticListEditor(
            config_store, window_ms=window_ms, on_write_error=on_write_error
        )

    @property
    def pokemon(self) -> list[Record]:
        return list(self._pokemon)

    async def load(self) -> None:
        """Load logs, Pokemon and configs, adding placeholder configs."""
        await self.logs.load()
        self._pokemon = await self._pokemon_store.find_all()
        configs = await self.configs.load()
        self.configs.adopt(placeholder_configs(configs, self._pokemon), persisted=False)

    async def add_log(self) -> Record | None:
        return await self.logs.add(new_bond_log(self._pokemon))

    def summary(self) -> list[BondSummaryRow]:
        return summarize_bonds(self.logs.records, self.configs.records, self._pokemon)

    async def flush(self) -> None:
        await self.logs.flush()
        await self.configs.flush()

    async def close(self) -> None:
        await self.logs.close()
        await self.configs.close()
