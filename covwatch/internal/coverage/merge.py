"""Combine the reports written by every process of a run.

Merging sums counters per id and does not depend on the order reports are
read in, so it is commutative and associative. Reports that cannot be read
are skipped with a warning, they never abort the merge of the others.
"""
from collections import defaultdict
import json
import logging
import os
from pathlib import Path
import typing as t

from covwatch.internal.coverage.data import CoverageMap
from covwatch.internal.coverage.data import CoverageSkeleton
from covwatch.internal.coverage.data import FileCoverage
from covwatch.internal.coverage.data import merge_file_coverage
from covwatch.internal.coverage.errors import CoverageError
from covwatch.internal.utils.fs import is_temporary


# Not rate limited, every skipped report or file gets its own warning
log = logging.getLogger(__name__)


REPORT_SUFFIX = ".json"


class ProcessReport(t.NamedTuple):
    path: str
    process: t.Dict[str, t.Any]
    coverage: CoverageMap


def read_report(path):
    # type: (t.Union[str, Path]) -> ProcessReport
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)

    if isinstance(data, dict) and "coverage" in data and isinstance(data.get("process"), dict):
        return ProcessReport(str(path), data["process"], CoverageMap.from_dict(data["coverage"]))

    # A bare coverage map, e.g. one written by another tool
    return ProcessReport(str(path), {}, CoverageMap.from_dict(data))


def load_reports(directory):
    # type: (t.Union[str, Path]) -> t.List[ProcessReport]
    try:
        names = sorted(os.listdir(str(directory)))
    except FileNotFoundError:
        log.debug("No coverage reports in %s", directory)
        return []

    reports = []
    for name in names:
        if not name.endswith(REPORT_SUFFIX) or is_temporary(name):
            continue
        path = os.path.join(str(directory), name)
        try:
            reports.append(read_report(path))
        except (OSError, ValueError) as e:
            log.warning("Skipping unreadable coverage report %s: %s", path, e)

    return reports


def merge(record_sets):
    # type: (t.Iterable[t.Union[ProcessReport, CoverageMap]]) -> CoverageMap
    by_path = defaultdict(list)  # type: t.DefaultDict[str, t.List[FileCoverage]]
    for record_set in record_sets:
        coverage = record_set.coverage if isinstance(record_set, ProcessReport) else record_set
        for path, record in coverage.items():
            by_path[path].append(record)

    return CoverageMap((path, merge_file_coverage(records)) for path, records in sorted(by_path.items()))


def add_all_files(coverage_map, root, eligible_paths, skeleton_for):
    # type: (CoverageMap, t.Union[str, Path], t.Iterable[str], t.Callable[[str], CoverageSkeleton]) -> CoverageMap
    """Add a zero filled record for every eligible file no process loaded.

    ``skeleton_for`` instruments a file to get its skeleton. The file itself
    is never executed. Relative paths are taken relative to ``root``.
    """
    for path in eligible_paths:
        path = str(Path(root, path).resolve())
        if path in coverage_map:
            continue
        try:
            skeleton = skeleton_for(path)
        except (CoverageError, OSError, UnicodeDecodeError) as e:
            log.warning("Cannot report never loaded file %s: %s", path, e)
            continue
        coverage_map[path] = FileCoverage.from_skeleton(skeleton)

    return coverage_map
