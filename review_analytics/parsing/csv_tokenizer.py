"""
Quote-aware CSV tokenizer for spreadsheet exports.

Splits raw export text into logical lines (a quoted field may span several
physical lines) and each logical line into trimmed cells.
"""

from typing import List, Sequence


def split_logical_lines(csv_text: str) -> List[str]:
    """
    Split CSV text into logical lines.

    Newlines inside a quoted field stay part of the line. A doubled quote
    ("") is copied through without toggling the quoted state.

    Args:
        csv_text: Raw CSV export

    Returns:
        Logical lines in input order, without their line terminators
    """
    lines = []
    cur = []
    in_quotes = False
    i = 0
    length = len(csv_text)

    while i < length:
        ch = csv_text[i]
        if ch == '"':
            if i + 1 < length and csv_text[i + 1] == '"':
                cur.append('""')
                i += 2
                continue
            in_quotes = not in_quotes
            cur.append(ch)
        elif ch == "\n" and not in_quotes:
            line = "".join(cur)
            if line.endswith("\r"):
                line = line[:-1]
            lines.append(line)
            cur = []
        else:
            cur.append(ch)
        i += 1

    if cur:
        lines.append("".join(cur))

    return lines


def parse_line(line: str) -> List[str]:
    """
    Split one logical line into cells.

    Commas inside quotes do not split, "" inside quotes is a literal quote,
    and every cell is trimmed after unquoting.
    """
    cells = []
    cell = []
    quoted = False
    i = 0
    length = len(line)

    while i < length:
        ch = line[i]
        if ch == '"':
            if quoted and i + 1 < length and line[i + 1] == '"':
                cell.append('"')
                i += 2
                continue
            quoted = not quoted
        elif ch == "," and not quoted:
            cells.append("".join(cell))
            cell = []
        else:
            cell.append(ch)
        i += 1

    cells.append("".join(cell))
    return [c.strip() for c in cells]


def format_cell(value) -> str:
    """Quote a cell value if it contains a comma, quote or newline."""
    text = "" if value is None else str(value)
    if "," in text or '"' in text or "\n" in text:
        return '"' + text.replace('"', '""') + '"'
    return text


def rows_to_csv(rows: Sequence[Sequence]) -> str:
    """
    Serialize tabular values (e.g. a Sheets API response) to CSV text
    that split_logical_lines/parse_line read back losslessly.
    """
    return "\n".join(",".join(format_cell(cell) for cell in row) for row in rows)
