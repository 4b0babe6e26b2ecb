from __future__ import annotations

from typing import Callable

import logging

import pandas as pd

LOGGER = logging.getLogger(__name__)


def count_distinct(
        table: pd.DataFrame,
        id_column: str,
        group_column: str,
        value_column: str = None,
        predicate: Callable[[pd.Series], pd.Series] = None,
        threshold: float = None) -> pd.Series:
    """
    Count the distinct identifiers per group among the rows passing a filter.

    Used to tally species per cell from an occurrence table before substituting
    the counts into a cell identifier grid.

    Args:
        table (pd.DataFrame): Rows of (identifier, group key, secondary value).
        id_column (str): Column of the identifiers to count, e.g. species.
        group_column (str): Column of the group keys, e.g. cell identifiers.
        value_column (str, optional): Column the filter is applied to.
        predicate (Callable[[pd.Series], pd.Series], optional): Boolean filter on the value column.
        threshold (float, optional): Shorthand for keeping rows whose value is at least the threshold.

    Returns:
        pd.Series: Count of distinct identifiers indexed by group key.
    """
    if predicate is not None and threshold is not None:
        raise ValueError("give either a predicate or a threshold, not both")

    if threshold is not None:
        predicate = lambda values: values >= threshold

    missing_columns = [
        column
        for column
        in (id_column, group_column, value_column)
        if column is not None and column not in table.columns
    ]

    if missing_columns:
        raise KeyError(f"columns not found in table: {missing_columns}")

    if predicate is not None:
        if value_column is None:
            raise ValueError("a value column is required to filter rows")

        table = table[predicate(table[value_column]).astype(bool)]

    counts = table.groupby(group_column)[id_column].nunique()
    counts.name = "count"

    LOGGER.debug("counted %s per %s over %d rows", id_column, group_column, len(table))

    return counts
