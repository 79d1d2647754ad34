"""CSV result bodies to polars DataFrames."""

from __future__ import annotations

import io
import re
from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING

import polars as pl

if TYPE_CHECKING:
    from typing import TypeAlias

    ColumnTypes: TypeAlias = (
        Sequence[type[pl.DataType] | pl.DataType | None]
        | Mapping[str, type[pl.DataType] | pl.DataType | None]
    )

DUNE_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S%.3f UTC"
_DUNE_TIMESTAMP = re.compile(r"\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}\.\d{3} UTC$")


def process_raw_table(
    raw_csv: str,
    types: ColumnTypes | None = None,
    all_types: ColumnTypes | None = None,
) -> pl.DataFrame:
    """Parse a Dune CSV body, casting columns to explicit or inferred types.

    ``types`` overrides some columns (by position or by name); ``all_types``
    must name every column.
    """
    if all_types is not None and types is not None:
        raise ValueError("cannot specify both types and all_types")
    elif all_types is not None:
        types = all_types

    if not raw_csv.strip():
        return pl.DataFrame()

    # read everything as text first, cast afterwards
    first_line = raw_csv.split("\n", maxsplit=1)[0]
    column_order = first_line.split(",")
    df = pl.read_csv(
        io.StringIO(raw_csv),
        null_values="<nil>",
        truncate_ragged_lines=True,
        schema_overrides={column.strip('"'): pl.String for column in column_order},
    )

    new_types = []
    for c, column in enumerate(df.columns):
        new_type = None
        if types is not None:
            if isinstance(types, Mapping):
                new_type = types.get(column)
            elif isinstance(types, Sequence):
                if len(types) > c:
                    new_type = types[c]
            else:
                raise ValueError("invalid format for types")

        if new_type is None:
            new_type = infer_type(df[column])

        if new_type == pl.Datetime or isinstance(new_type, pl.Datetime):
            df = df.with_columns(
                pl.col(column).str.to_datetime(DUNE_TIMESTAMP_FORMAT).dt.replace_time_zone("UTC")
            )
            new_type = None

        new_types.append(new_type)

    if isinstance(types, Mapping):
        missing = [name for name in types.keys() if name not in df.columns]
        if missing:
            raise ValueError("types specified for missing columns: " + str(missing))
    if isinstance(all_types, Mapping):
        missing = [name for name in df.columns if name not in all_types]
        if missing:
            raise ValueError("types not specified for columns: " + str(missing))

    casts = []
    for column, dtype in zip(df.columns, new_types):
        if dtype is None:
            continue
        if dtype == pl.Boolean:
            casts.append(pl.col(column) == "true")
        else:
            casts.append(pl.col(column).cast(dtype))
    return df.with_columns(*casts)


def infer_type(s: pl.Series) -> pl.DataType:
    # Dune exports timestamps as "2024-01-01 00:00:00.000 UTC"
    non_null = [v for v in s.to_list() if v is not None]
    if non_null and all(isinstance(v, str) and _DUNE_TIMESTAMP.match(v) for v in non_null):
        return pl.Datetime()

    try:
        as_csv = pl.DataFrame(s).write_csv(None)
        return pl.read_csv(io.StringIO(as_csv))[s.name].dtype
    except pl.exceptions.PolarsError:
        return pl.String()
