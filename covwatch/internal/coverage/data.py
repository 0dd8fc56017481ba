"""Coverage data model.

The serialized form of a file record follows the istanbul file coverage
layout, so merged maps can be handed to any reporter that understands it::

    {
        "path": "/abs/path/module.py",
        "hash": "<sha256 of the source that was instrumented>",
        "statementMap": {"0": {"start": {"line": 1, "column": 0}, "end": {...}}},
        "fnMap": {"0": {"name": "f", "line": 3, "decl": {...}, "loc": {...}}},
        "branchMap": {"0": {"type": "if", "line": 5, "loc": {...}, "locations": [{...}, {...}]}},
        "s": {"0": 1},
        "f": {"0": 0},
        "b": {"0": [1, 0]}
    }

Ids are fixed by instrumentation. Only the counters change afterwards.
"""
from dataclasses import dataclass
from dataclasses import field
import logging
import typing as t

from covwatch.internal.coverage.errors import CorruptReportError


# Not rate limited: each record mismatch gets its own warning
log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Range:
    start_line: int
    start_column: int
    end_line: int
    end_column: int

    @classmethod
    def from_node(cls, node: t.Any) -> "Range":
        end_line = getattr(node, "end_lineno", None)
        end_column = getattr(node, "end_col_offset", None)
        return cls(
            node.lineno,
            node.col_offset,
            end_line if end_line is not None else node.lineno,
            end_column if end_column is not None else node.col_offset,
        )

    def to_dict(self) -> t.Dict[str, t.Dict[str, int]]:
        return {
            "start": {"line": self.start_line, "column": self.start_column},
            "end": {"line": self.end_line, "column": self.end_column},
        }

    @classmethod
    def from_dict(cls, data: t.Mapping[str, t.Any]) -> "Range":
        return cls(
            int(data["start"]["line"]),
            int(data["start"]["column"]),
            int(data["end"]["line"]),
            int(data["end"]["column"]),
        )


@dataclass(frozen=True)
class FunctionMeta:
    name: str
    line: int
    decl: Range
    loc: Range

    def to_dict(self) -> t.Dict[str, t.Any]:
        return {"name": self.name, "line": self.line, "decl": self.decl.to_dict(), "loc": self.loc.to_dict()}

    @classmethod
    def from_dict(cls, data: t.Mapping[str, t.Any]) -> "FunctionMeta":
        return cls(str(data["name"]), int(data["line"]), Range.from_dict(data["decl"]), Range.from_dict(data["loc"]))


@dataclass(frozen=True)
class BranchMeta:
    type: str
    line: int
    loc: Range
    locations: t.Tuple[Range, ...]

    def to_dict(self) -> t.Dict[str, t.Any]:
        return {
            "type": self.type,
            "line": self.line,
            "loc": self.loc.to_dict(),
            "locations": [r.to_dict() for r in self.locations],
        }

    @classmethod
    def from_dict(cls, data: t.Mapping[str, t.Any]) -> "BranchMeta":
        return cls(
            str(data["type"]),
            int(data["line"]),
            Range.from_dict(data["loc"]),
            tuple(Range.from_dict(r) for r in data["locations"]),
        )


def _ids(mapping: t.Mapping[str, t.Any]) -> t.Iterator[t.Tuple[int, t.Any]]:
    for k, v in mapping.items():
        yield int(k), v


@dataclass(frozen=True)
class CoverageSkeleton:
    """The countable shape of a file, as produced by an instrumenter.

    ``line_map`` pairs lines of the instrumented text with the original lines
    they come from. It is only used to compile the instrumented text and is
    not part of coverage reports.
    """

    path: str
    hash: str
    statement_map: t.Tuple[Range, ...]
    fn_map: t.Tuple[FunctionMeta, ...] = ()
    branch_map: t.Tuple[BranchMeta, ...] = ()
    line_map: t.Tuple[t.Tuple[int, int], ...] = ()

    def to_dict(self) -> t.Dict[str, t.Any]:
        return {
            "path": self.path,
            "hash": self.hash,
            "statementMap": {str(i): r.to_dict() for i, r in enumerate(self.statement_map)},
            "fnMap": {str(i): f.to_dict() for i, f in enumerate(self.fn_map)},
            "branchMap": {str(i): b.to_dict() for i, b in enumerate(self.branch_map)},
            "lineMap": [list(pair) for pair in self.line_map],
        }

    @classmethod
    def from_dict(cls, data: t.Mapping[str, t.Any]) -> "CoverageSkeleton":
        def ordered(mapping, factory):
            items = sorted(_ids(mapping))
            if [i for i, _ in items] != list(range(len(items))):
                raise ValueError("ids are not contiguous")
            return tuple(factory(v) for _, v in items)

        return cls(
            path=str(data["path"]),
            hash=str(data["hash"]),
            statement_map=ordered(data["statementMap"], Range.from_dict),
            fn_map=ordered(data["fnMap"], FunctionMeta.from_dict),
            branch_map=ordered(data["branchMap"], BranchMeta.from_dict),
            line_map=tuple((int(a), int(b)) for a, b in data.get("lineMap", ())),
        )


@dataclass
class FileCoverage:
    path: str
    hash: str
    statement_map: t.Dict[int, Range] = field(default_factory=dict)
    fn_map: t.Dict[int, FunctionMeta] = field(default_factory=dict)
    branch_map: t.Dict[int, BranchMeta] = field(default_factory=dict)
    s: t.Dict[int, int] = field(default_factory=dict)
    f: t.Dict[int, int] = field(default_factory=dict)
    b: t.Dict[int, t.List[int]] = field(default_factory=dict)

    @classmethod
    def from_skeleton(cls, skeleton: CoverageSkeleton) -> "FileCoverage":
        """A record with every counter of the skeleton at zero."""
        return cls(
            path=skeleton.path,
            hash=skeleton.hash,
            statement_map=dict(enumerate(skeleton.statement_map)),
            fn_map=dict(enumerate(skeleton.fn_map)),
            branch_map=dict(enumerate(skeleton.branch_map)),
            s={i: 0 for i in range(len(skeleton.statement_map))},
            f={i: 0 for i in range(len(skeleton.fn_map))},
            b={i: [0] * len(m.locations) for i, m in enumerate(skeleton.branch_map)},
        )

    @property
    def id_space(self) -> int:
        return len(self.statement_map) + len(self.fn_map) + sum(len(m.locations) for m in self.branch_map.values())

    def copy(self) -> "FileCoverage":
        return FileCoverage(
            path=self.path,
            hash=self.hash,
            statement_map=dict(self.statement_map),
            fn_map=dict(self.fn_map),
            branch_map=dict(self.branch_map),
            s=dict(self.s),
            f=dict(self.f),
            b={i: list(c) for i, c in self.b.items()},
        )

    def to_dict(self) -> t.Dict[str, t.Any]:
        return {
            "path": self.path,
            "hash": self.hash,
            "statementMap": {str(i): r.to_dict() for i, r in sorted(self.statement_map.items())},
            "fnMap": {str(i): m.to_dict() for i, m in sorted(self.fn_map.items())},
            "branchMap": {str(i): m.to_dict() for i, m in sorted(self.branch_map.items())},
            "s": {str(i): c for i, c in sorted(self.s.items())},
            "f": {str(i): c for i, c in sorted(self.f.items())},
            "b": {str(i): list(c) for i, c in sorted(self.b.items())},
        }

    @classmethod
    def from_dict(cls, data: t.Mapping[str, t.Any]) -> "FileCoverage":
        try:
            return cls(
                path=str(data["path"]),
                hash=str(data.get("hash", "")),
                statement_map={i: Range.from_dict(v) for i, v in _ids(data["statementMap"])},
                fn_map={i: FunctionMeta.from_dict(v) for i, v in _ids(data.get("fnMap", {}))},
                branch_map={i: BranchMeta.from_dict(v) for i, v in _ids(data.get("branchMap", {}))},
                s={i: int(v) for i, v in _ids(data["s"])},
                f={i: int(v) for i, v in _ids(data.get("f", {}))},
                b={i: [int(c) for c in v] for i, v in _ids(data.get("b", {}))},
            )
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise CorruptReportError("Invalid file coverage record: %r" % e) from e

    def covered(self) -> t.Dict[str, t.Tuple[int, int]]:
        """(covered, total) pairs for statements, branches and functions."""
        branch_paths = [c for counts in self.b.values() for c in counts]
        return {
            "statements": (sum(1 for c in self.s.values() if c), len(self.s)),
            "branches": (sum(1 for c in branch_paths if c), len(branch_paths)),
            "functions": (sum(1 for c in self.f.values() if c), len(self.f)),
        }


def _rank(record: FileCoverage) -> t.Tuple[int, str]:
    return (record.id_space, record.hash)


def merge_file_coverage(records: t.Sequence[FileCoverage]) -> FileCoverage:
    """Combine records of the same file into a new one, summing counters per id.

    All records normally share the same skeleton. When they do not (e.g. the
    source changed while the suite ran), the id spaces are united and the
    location metadata of the most complete record wins. Records are ranked
    by id space size and then hash, so the result does not depend on the
    order of ``records``.
    """
    if not records:
        raise ValueError("Cannot merge an empty list of file coverage records")

    ranked = sorted(records, key=_rank)
    primary = ranked[-1]

    hashes = {r.hash for r in records}
    if len(hashes) > 1:
        log.warning(
            "Coverage records of %s come from %d different versions of the file, keeping the most complete one",
            primary.path,
            len(hashes),
        )

    merged = FileCoverage(path=primary.path, hash=primary.hash)
    for record in ranked:
        merged.statement_map.update(record.statement_map)
        merged.fn_map.update(record.fn_map)
        merged.branch_map.update(record.branch_map)

    merged.s = {i: sum(r.s.get(i, 0) for r in records) for i in sorted(merged.statement_map)}
    merged.f = {i: sum(r.f.get(i, 0) for r in records) for i in sorted(merged.fn_map)}
    for i, meta in sorted(merged.branch_map.items()):
        width = max([len(meta.locations)] + [len(r.b.get(i, ())) for r in records])
        counts = [0] * width
        for r in records:
            for n, c in enumerate(r.b.get(i, ())):
                counts[n] += c
        merged.b[i] = counts

    return merged


class CoverageMap(t.Dict[str, FileCoverage]):
    """Mapping of absolute file paths to their coverage record."""

    def to_dict(self) -> t.Dict[str, t.Any]:
        return {path: record.to_dict() for path, record in sorted(self.items())}

    @classmethod
    def from_dict(cls, data: t.Any) -> "CoverageMap":
        if not isinstance(data, dict):
            raise CorruptReportError("A coverage map must be a JSON object, got %s" % type(data).__name__)
        return cls((path, FileCoverage.from_dict(record)) for path, record in data.items())

    def filter(self, predicate: t.Callable[[str], bool]) -> "CoverageMap":
        return CoverageMap((path, record) for path, record in self.items() if predicate(path))
