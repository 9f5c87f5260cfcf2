"""CSV rendering for the backup and audit log exports."""

from __future__ import annotations

import csv
import io
from collections.abc import Iterable
from datetime import datetime
from typing import Any


def rows_to_csv(columns: Iterable[tuple[str, str]], rows: Iterable[Any]) -> str:
    """CSV text with one quoted row per object.

    `columns` pairs a heading with the attribute read from each row. Missing
    values are written empty and datetimes as ISO-8601.
    """
    columns = tuple(columns)
    buf = io.StringIO()
    writer = csv.writer(buf, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow([heading for heading, _ in columns])
    for obj in rows:
        row = []
        for _, attr in columns:
            value = getattr(obj, attr, None)
            if isinstance(value, datetime):
                value = value.isoformat()
            row.append("" if value is None else value)
        writer.writerow(row)
    return buf.getvalue()
