from textwrap import dedent

from covwatch.internal.coverage.data import BranchMeta
from covwatch.internal.coverage.data import CoverageSkeleton
from covwatch.internal.coverage.data import FileCoverage
from covwatch.internal.coverage.data import FunctionMeta
from covwatch.internal.coverage.data import Range
from covwatch.internal.coverage.instrumentation import COUNTERS_NAME
from covwatch.internal.coverage.instrumentation import AstInstrumenter
from covwatch.internal.coverage.instrumentation import compile_instrumented
from covwatch.internal.coverage.registry import FileCounters


def make_skeleton(path="/project/module.py", statements=2, functions=1, branches=1, hash="h"):
    return CoverageSkeleton(
        path=path,
        hash=hash,
        statement_map=tuple(Range(i + 1, 0, i + 1, 10) for i in range(statements)),
        fn_map=tuple(
            FunctionMeta("f%d" % i, i + 1, Range(i + 1, 0, i + 1, 6), Range(i + 1, 0, i + 2, 10))
            for i in range(functions)
        ),
        branch_map=tuple(
            BranchMeta("if", i + 1, Range(i + 1, 0, i + 3, 10), (Range(i + 2, 4, i + 2, 10), Range(i + 1, 0, i + 3, 10)))
            for i in range(branches)
        ),
    )


def make_record(path="/project/module.py", s=(0, 0), f=(0,), b=((0, 0),), hash="h"):
    record = FileCoverage.from_skeleton(
        make_skeleton(path, statements=len(s), functions=len(f), branches=len(b), hash=hash)
    )
    record.s = dict(enumerate(s))
    record.f = dict(enumerate(f))
    record.b = {i: list(c) for i, c in enumerate(b)}
    return record


def run_instrumented(source, path="/project/module.py", **options):
    """Instrument ``source``, execute it and return its namespace, counters and skeleton."""
    text, skeleton = AstInstrumenter(**options).instrument(path, dedent(source).lstrip("\n"))
    counters = FileCounters(skeleton)
    namespace = {COUNTERS_NAME: counters, "__name__": "instrumented"}
    exec(compile_instrumented(text, path, skeleton.line_map), namespace)
    return namespace, counters, skeleton
