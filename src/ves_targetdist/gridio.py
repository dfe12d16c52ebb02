"""Plain-text grid files — export and restart.

Format
------
::

    #! FIELDS s1 s2 targetdist
    #! SET min_s1 -3
    #! SET max_s1 3
    #! SET nbins_s1 60
    #! SET periodic_s1 false
    #! SET min_s2 ...
    -3 -3 0.0012
    -2.9 -3 0.0013
    ...

One line per grid point, first axis fastest, coordinates followed by the
value.  Values are written with 17 significant digits so reading a file
back reproduces the doubles exactly.

Usage
-----
>>> path = write_grid(engine.targetdist_grid, "targetdist.data")
>>> grid = read_grid(path)
"""

from __future__ import annotations

import io
from pathlib import Path
from typing import Dict, List, Union

import numpy as np

from .grid import Axis, Grid

__all__ = [
    "format_grid",
    "parse_grid",
    "write_grid",
    "read_grid",
]

PathLike = Union[str, Path]


def format_grid(grid: Grid) -> str:
    """Serialise *grid* to the text format."""
    lines = ["#! FIELDS " + " ".join(grid.arg_names + [grid.name])]
    for a in grid.axes:
        lines.append(f"#! SET min_{a.name} {float(a.minimum)!r}")
        lines.append(f"#! SET max_{a.name} {float(a.maximum)!r}")
        lines.append(f"#! SET nbins_{a.name} {int(a.nbins)}")
        lines.append(f"#! SET periodic_{a.name} {'true' if a.periodic else 'false'}")
    buf = io.StringIO()
    np.savetxt(buf, np.column_stack([grid.points(), grid.values]), fmt="%.17g")
    return "\n".join(lines) + "\n" + buf.getvalue()


def parse_grid(text: str) -> Grid:
    """Parse the text format back into a :class:`Grid`.

    Raises
    ------
    ValueError
        If the header is incomplete or the number of values does not
        match the header.
    """
    fields: List[str] = []
    settings: Dict[str, str] = {}
    body: List[str] = []
    for line in text.splitlines():
        stripped = line.strip()
        if not stripped:
            continue
        if stripped.startswith("#!"):
            words = stripped[2:].split()
            if words and words[0] == "FIELDS":
                fields = words[1:]
            elif len(words) == 3 and words[0] == "SET":
                settings[words[1]] = words[2]
            continue
        if stripped.startswith("#"):
            continue
        body.append(stripped)

    if len(fields) < 2:
        raise ValueError("grid file has no '#! FIELDS' line with arguments and a value column")
    arg_names, name = fields[:-1], fields[-1]
    axes = []
    try:
        for arg in arg_names:
            axes.append(Axis(
                arg,
                float(settings[f"min_{arg}"]),
                float(settings[f"max_{arg}"]),
                int(settings[f"nbins_{arg}"]),
                settings.get(f"periodic_{arg}", "false").lower() == "true",
            ))
    except KeyError as e:
        raise ValueError(f"grid file header is missing {e.args[0]}") from e

    if body:
        data = np.loadtxt(io.StringIO("\n".join(body)), ndmin=2)
        if data.shape[1] != len(fields):
            raise ValueError(
                f"grid file rows have {data.shape[1]} columns, expected {len(fields)}")
        values = data[:, -1]
    else:
        values = np.zeros(0)
    return Grid(name, axes, values)


def write_grid(grid: Grid, path: PathLike) -> Path:
    """Write *grid* to *path*, creating parent directories.  Returns the path."""
    path = Path(path).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(format_grid(grid), encoding="utf-8")
    return path


def read_grid(path: PathLike) -> Grid:
    """Read a grid file.

    Raises
    ------
    FileNotFoundError
        If *path* does not exist.
    """
    path = Path(path).expanduser()
    if not path.exists():
        raise FileNotFoundError(f"No grid file at {path}")
    return parse_grid(path.read_text(encoding="utf-8"))
