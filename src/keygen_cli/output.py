from __future__ import annotations

import csv
import dataclasses
import json
import sys
import typing as t

from rich.cells import cell_len
from rich.console import Console
from rich.table import Table

from .models import to_dict

FORMATS = ("json", "table", "csv")


def _plain(obj: t.Any) -> t.Any:
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return to_dict(obj)
    if isinstance(obj, (list, tuple)):
        return [_plain(v) for v in obj]
    if isinstance(obj, dict):
        return {k: _plain(v) for k, v in obj.items()}
    return obj


def print_json(obj: t.Any) -> None:
    sys.stdout.write(json.dumps(_plain(obj), indent=2) + "\n")


def success(data: t.Any) -> None:
    print_json({"ok": True, "data": data})


def success_list(items: t.Sequence[t.Any]) -> None:
    print_json({"ok": True, "count": len(items), "data": list(items)})


def error(message: str, *, hint: str | None = None) -> None:
    out: dict[str, t.Any] = {"ok": False, "error": message}
    if hint:
        out["hint"] = hint
    print_json(out)


def table(headers: t.Sequence[str], rows: t.Iterable[t.Sequence[str]]) -> None:
    cells = [[str(v) for v in row] for row in rows]
    widths = [cell_len(h) for h in headers]
    for row in cells:
        for i, v in enumerate(row[: len(widths)]):
            widths[i] = max(widths[i], cell_len(v))

    tbl = Table(show_lines=False, header_style="bold")
    for h in headers:
        tbl.add_column(h, justify="left", no_wrap=True, overflow="fold")
    for row in cells:
        tbl.add_row(*row)
    # one space of padding either side plus one border per column
    width = sum(w + 3 for w in widths) + 1
    Console(file=sys.stdout, width=max(width, 80), soft_wrap=True).print(tbl)


def write_csv(headers: t.Sequence[str], rows: t.Iterable[t.Sequence[str]]) -> None:
    w = csv.writer(sys.stdout, lineterminator="\n")
    w.writerow(headers)
    for row in rows:
        w.writerow([str(v) for v in row])


def tabular(fmt: str, headers: t.Sequence[str], rows: t.Iterable[t.Sequence[str]]) -> None:
    if fmt == "csv":
        write_csv(headers, rows)
    else:
        table(headers, rows)


def mask_token(token: str) -> str:
    if not token:
        return ""
    if len(token) > 8:
        return token[:4] + "*" * (len(token) - 8) + token[-4:]
    return "****"
