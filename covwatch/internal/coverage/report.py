import json
import os
from pathlib import Path
import sys
import typing as t

from covwatch.internal.coverage.data import CoverageMap
from covwatch.internal.coverage.data import FileCoverage
from covwatch.internal.utils.fs import atomic_write


FINAL_REPORT_NAME = "coverage-final.json"


def _terminal_width():
    # type: () -> int
    try:
        w, _ = os.get_terminal_size()
    except OSError:
        w = 80
    return w


def collapse_ranges(numbers):
    # type: (t.List[int]) -> t.List[t.Tuple[int, int]]
    """Collapse sorted numbers into inclusive ranges.

    >>> collapse_ranges([1, 2, 3, 5, 7, 8])
    [(1, 3), (5, 5), (7, 8)]
    """
    ranges = []  # type: t.List[t.Tuple[int, int]]
    for n in numbers:
        if ranges and n <= ranges[-1][1] + 1:
            ranges[-1] = (ranges[-1][0], max(n, ranges[-1][1]))
        else:
            ranges.append((n, n))
    return ranges


def missed_lines(record):
    # type: (FileCoverage) -> t.List[int]
    """Start lines of the statements that never ran."""
    return sorted(
        {record.statement_map[i].start_line for i, c in record.s.items() if not c and i in record.statement_map}
    )


def _percent(covered, total):
    # type: (int, int) -> str
    return "%d%%" % int(covered / total * 100) if total else "-"


def print_coverage_report(coverage_map, workspace_path=None, file=None):
    # type: (CoverageMap, t.Optional[t.Union[str, Path]], t.Optional[t.TextIO]) -> None
    out = file if file is not None else sys.stdout
    w = _terminal_width()

    def relative(path):
        if workspace_path is not None:
            try:
                return str(Path(path).relative_to(workspace_path))
            except ValueError:
                pass
        return path

    paths = {path: relative(path) for path in coverage_map}
    n = max([len(p) for p in paths.values()] + [5]) + 4

    # Title
    print(" COVWATCH COVERAGE REPORT ".center(w, "="), file=out)

    # Header
    print(f"{'PATH':<{n}}{'STMTS':>8}{'MISSED':>8}{'STMTS%':>8}{'BRANCH%':>9}{'FUNCS%':>8}  MISSED LINES", file=out)
    print("-" * w, file=out)

    totals = {"statements": [0, 0], "branches": [0, 0], "functions": [0, 0]}
    for path, record in sorted(coverage_map.items()):
        covered = record.covered()
        for kind, (c, total) in covered.items():
            totals[kind][0] += c
            totals[kind][1] += total

        s_covered, s_total = covered["statements"]
        missed = ",".join(
            f"{start}-{end}" if start != end else str(start) for start, end in collapse_ranges(missed_lines(record))
        )
        missed_str = f"  [{missed}]" if missed else ""
        print(
            f"{paths[path]:{n}s}{s_total:>8}{s_total - s_covered:>8}{_percent(s_covered, s_total):>8}"
            f"{_percent(*covered['branches']):>9}{_percent(*covered['functions']):>8}{missed_str}",
            file=out,
        )

    print("-" * w, file=out)
    s_covered, s_total = totals["statements"]
    print(
        f"{'TOTAL':<{n}}{s_total:>8}{s_total - s_covered:>8}{_percent(s_covered, s_total):>8}"
        f"{_percent(*totals['branches']):>9}{_percent(*totals['functions']):>8}",
        file=out,
    )
    print(file=out)


def write_json_report(coverage_map, directory):
    # type: (CoverageMap, t.Union[str, Path]) -> Path
    """Write the merged map to ``coverage-final.json`` in ``directory``."""
    os.makedirs(str(directory), exist_ok=True)
    path = Path(directory) / FINAL_REPORT_NAME
    atomic_write(path, json.dumps(coverage_map.to_dict(), indent=2, sort_keys=True).encode("utf-8"))
    return path
