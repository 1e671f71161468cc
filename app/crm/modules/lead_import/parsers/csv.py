from __future__ import annotations

import csv
import io


def decode_csv_bytes(file_bytes: bytes) -> str:
    # utf-8-sig drops a leading BOM.
    return file_bytes.decode("utf-8-sig", errors="replace")


def parse_csv(text: str) -> list[list[str]]:
    """
    Parse raw CSV text into rows of string fields.

    Quoted fields may hold commas, newlines and doubled quotes ("" -> ").
    Accepts \\n and \\r\\n line endings, drops blank lines, and treats an
    unterminated quote as running to the end of the input. The header row is
    returned like any other row.
    """
    text = text.lstrip("\ufeff")
    # A single field may span the whole upload (long notes, unterminated quote).
    if len(text) >= csv.field_size_limit():
        csv.field_size_limit(len(text) + 1)
    reader = csv.reader(io.StringIO(text, newline=""), strict=False)
    rows: list[list[str]] = []
    for row in reader:
        if not row or (len(row) == 1 and not row[0].strip()):
            continue
        rows.append(row)
    return rows
