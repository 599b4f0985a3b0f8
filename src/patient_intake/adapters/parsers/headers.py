"""Header normalization shared by the file parsers."""

from typing import Any, Iterable

from patient_intake.domain.utils import cell_to_text


def dedupe_headers(raw_headers: Iterable[Any]) -> tuple[str, ...]:
    """Trim header cells and make every column addressable.

    Blank cells become ``Column <n>`` (1-based position) and repeated names
    get a ``_<k>`` suffix, so no two columns share a key.

    >>> dedupe_headers(["Name", " ", "Name"])
    ('Name', 'Column 2', 'Name_2')
    """
    headers: list[str] = []
    seen: dict[str, int] = {}
    for position, raw in enumerate(raw_headers, start=1):
        header = cell_to_text(raw) or f"Column {position}"
        if header in seen:
            seen[header] += 1
            candidate = f"{header}_{seen[header]}"
            while candidate in seen:
                seen[header] += 1
                candidate = f"{header}_{seen[header]}"
            header = candidate
        seen[header] = 1
        headers.append(header)
    return tuple(headers)
