import asyncio
from textwrap import dedent
import traceback

import pytest

from covwatch.internal.coverage.errors import InstrumentationError
from covwatch.internal.coverage.instrumentation import COUNTERS_NAME
from covwatch.internal.coverage.instrumentation import AstInstrumenter
from covwatch.internal.coverage.instrumentation import content_hash
from tests.coverage.utils import run_instrumented


def test_statements_functions_and_branches():
    namespace, counters, skeleton = run_instrumented(
        """
        def f(x):
            if x:
                return 1
            return 2

        f(True)
        f(True)
        f(False)
        """
    )

    record = counters.snapshot()

    assert [r.start_line for r in skeleton.statement_map] == [1, 2, 3, 4, 6, 7, 8]
    assert record.s == {0: 1, 1: 3, 2: 2, 3: 1, 4: 1, 5: 1, 6: 1}
    assert record.f == {0: 3}
    assert record.b == {0: [2, 1]}

    (function,) = skeleton.fn_map
    assert function.name == "f"
    assert function.line == 1
    assert (function.decl.start_column, function.decl.end_column) == (0, 5)

    (branch,) = skeleton.branch_map
    assert branch.type == "if"
    assert branch.line == 2
    assert branch.locations[0].start_line == 3
    # A missing else is located at the if statement
    assert branch.locations[1] == branch.loc


def test_else_branch_location():
    _, counters, skeleton = run_instrumented(
        """
        x = 0
        if x:
            y = 1
        else:
            y = 2
        """
    )

    assert skeleton.branch_map[0].locations[1].start_line == 5
    assert counters.snapshot().b == {0: [0, 1]}


def test_conditional_expression():
    namespace, counters, skeleton = run_instrumented(
        """
        def g(x):
            return "a" if x else "b"

        g(1)
        g(0)
        g(0)
        """
    )

    assert skeleton.branch_map[0].type == "cond-expr"
    assert counters.snapshot().b == {0: [1, 2]}
    assert namespace["g"](1) == "a"
    assert namespace["g"](0) == "b"


def test_elif_is_a_nested_branch():
    _, counters, skeleton = run_instrumented(
        """
        def h(x):
            if x == 1:
                return "one"
            elif x == 2:
                return "two"
            return "many"

        for i in (1, 2, 3, 3):
            h(i)
        """
    )

    assert [b.line for b in skeleton.branch_map] == [2, 4]
    assert counters.snapshot().b == {0: [1, 3], 1: [1, 2]}


def test_docstrings_and_future_imports_are_not_statements():
    namespace, counters, skeleton = run_instrumented(
        '''
        """Module docstring."""
        from __future__ import annotations


        def f() -> int:
            """Function docstring."""
            return 1


        class C:
            """Class docstring."""

            x = 1
        '''
    )

    assert [r.start_line for r in skeleton.statement_map] == [5, 7, 10, 13]
    assert namespace["__doc__"] == "Module docstring."
    assert namespace["f"].__doc__ == "Function docstring."
    assert namespace["C"].__doc__ == "Class docstring."

    assert counters.snapshot().f == {0: 0}
    assert namespace["f"]() == 1
    assert counters.snapshot().f == {0: 1}


def test_try_except_bodies_are_counted():
    _, counters, skeleton = run_instrumented(
        """
        try:
            x = 1 / 0
        except ZeroDivisionError:
            x = 0
        finally:
            y = 1
        """
    )

    assert [r.start_line for r in skeleton.statement_map] == [1, 2, 4, 6]
    assert counters.snapshot().s == {0: 1, 1: 1, 2: 1, 3: 1}


def test_async_function():
    namespace, counters, skeleton = run_instrumented(
        """
        async def a():
            return 1
        """
    )

    assert skeleton.fn_map[0].name == "a"
    assert asyncio.run(namespace["a"]()) == 1
    assert counters.snapshot().f == {0: 1}


def test_without_branches():
    instrumenter = AstInstrumenter(branches=False)
    text, skeleton = instrumenter.instrument("/project/module.py", "x = 1 if True else 2\nif x:\n    pass\n")

    assert instrumenter.options == {"branches": False}
    assert skeleton.branch_map == ()
    assert len(skeleton.statement_map) == 3
    assert "%s.t(" % COUNTERS_NAME not in text
    assert "%s.b(" % COUNTERS_NAME not in text


def test_instrumentation_is_deterministic():
    source = dedent(
        """
        import os

        def f(x):
            return [i if i else -i for i in range(x)]

        class K:
            def m(self):
                if self:
                    return os.sep
        """
    )

    first = AstInstrumenter().instrument("/project/module.py", source)
    second = AstInstrumenter().instrument("/project/module.py", source)

    assert first == second
    assert first[1].hash == content_hash(source)


def test_tracebacks_point_at_original_lines():
    path = "/project/module.py"
    namespace, _, _ = run_instrumented(
        """
        x = [
            1,
            2,
        ]


        def boom():
            y = (
                1
                / 0
            )
            return y
        """,
        path=path,
    )

    with pytest.raises(ZeroDivisionError) as excinfo:
        namespace["boom"]()

    frame = traceback.extract_tb(excinfo.tb)[-1]
    assert frame.filename == path
    assert frame.name == "boom"
    # The statement the failing expression belongs to
    assert frame.lineno == 8


def test_syntax_error():
    with pytest.raises(InstrumentationError) as excinfo:
        AstInstrumenter().instrument("/project/broken.py", "def f(:\n")

    assert excinfo.value.path == "/project/broken.py"
    assert isinstance(excinfo.value.__cause__, SyntaxError)
