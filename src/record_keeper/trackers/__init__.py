"""Trackers built on the optimistic editor and debounced writes."""

from record_keeper.trackers.bond import (
    BondSummaryRow,
    BondTracker,
    new_bond_log,
    placeholder_configs,
    pokemon_label,
    summarize_bonds,
)
from record_keeper.trackers.items import item_totals, new_item_log
from record_keeper.trackers.word_counter import (
    WORD_COUNTER_KEY,
    WordCounter,
    count_words,
    word_count_label,
)

__all__ = [
    # Bond
    "BondSummaryRow",
    "BondTracker",
    "new_bond_log",
    "placeholder_configs",
    "pokemon_label",
    "summarize_bonds",
    # Items
    "item_totals",
    "new_item_log",
    # Word counter
    "WORD_COUNTER_KEY",
    "WordCounter",
    "count_words",
    "word_count_label",
]
