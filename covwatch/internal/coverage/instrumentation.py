import abc
import ast
from hashlib import sha256
from types import CodeType
import typing as t

from covwatch.internal.coverage.data import BranchMeta
from covwatch.internal.coverage.data import CoverageSkeleton
from covwatch.internal.coverage.data import FunctionMeta
from covwatch.internal.coverage.data import Range
from covwatch.internal.coverage.errors import InstrumentationError
from covwatch.internal.logger import get_logger


log = get_logger(__name__)


# Name of the module global through which instrumented code reaches its counters
COUNTERS_NAME = "__covwatch__"

_match_case = getattr(ast, "match_case", ())


def content_hash(content: str) -> str:
    return sha256(content.encode("utf-8")).hexdigest()


class Instrumenter(abc.ABC):
    """Turns source text into instrumented source text plus the skeleton of
    the counters the instrumented text updates.

    Implementations must be deterministic: the same ``path``, ``content`` and
    ``options`` must always produce byte-identical results, since results are
    cached and shared between processes.
    """

    version = "0"

    @property
    def options(self) -> t.Dict[str, t.Any]:
        """The options that affect the instrumented output."""
        return {}

    @abc.abstractmethod
    def instrument(self, path: str, content: str) -> t.Tuple[str, CoverageSkeleton]:
        pass


def _is_docstring(node: ast.stmt) -> bool:
    return (
        isinstance(node, ast.Expr) and isinstance(node.value, ast.Constant) and isinstance(node.value.value, str)
    )


def _is_future_import(node: ast.stmt) -> bool:
    return isinstance(node, ast.ImportFrom) and node.module == "__future__"


def _span(stmts: t.Sequence[ast.stmt]) -> Range:
    first, last = Range.from_node(stmts[0]), Range.from_node(stmts[-1])
    return Range(first.start_line, first.start_column, last.end_line, last.end_column)


class _CounterInjector(ast.NodeTransformer):
    def __init__(self, branches: bool) -> None:
        self.branches = branches
        self.statements = []  # type: t.List[Range]
        self.functions = []  # type: t.List[FunctionMeta]
        self.branch_map = []  # type: t.List[BranchMeta]

    def _call(self, method: str, *args: int, value: t.Optional[ast.expr] = None) -> ast.Call:
        arguments = [ast.Constant(value=a) for a in args]  # type: t.List[ast.expr]
        if value is not None:
            arguments.append(value)
        return ast.Call(
            func=ast.Attribute(value=ast.Name(id=COUNTERS_NAME, ctx=ast.Load()), attr=method, ctx=ast.Load()),
            args=arguments,
            keywords=[],
        )

    def _counter(self, anchor: ast.AST, method: str, *args: int) -> ast.stmt:
        return ast.copy_location(ast.Expr(value=self._call(method, *args)), anchor)

    def body(self, stmts: t.List[ast.stmt], docstring: bool = False) -> t.List[ast.stmt]:
        instrumented = []  # type: t.List[ast.stmt]
        for i, stmt in enumerate(stmts):
            if i == 0 and docstring and _is_docstring(stmt):
                instrumented.append(stmt)
                continue
            sid = len(self.statements)
            self.statements.append(Range.from_node(stmt))
            instrumented.append(self._counter(stmt, "s", sid))
            instrumented.append(self.visit(stmt))
        return instrumented

    def generic_visit(self, node: ast.AST) -> ast.AST:
        if isinstance(node, ast.stmt):
            return self._visit_statement(node)
        return super().generic_visit(node)

    def _visit_statement(self, node: ast.stmt, docstring: bool = False) -> ast.stmt:
        for name, value in ast.iter_fields(node):
            if isinstance(value, list):
                if not value:
                    continue
                if isinstance(value[0], ast.stmt):
                    setattr(node, name, self.body(value, docstring=docstring and name == "body"))
                elif isinstance(value[0], (ast.excepthandler, _match_case)):
                    for clause in value:
                        for field, child in ast.iter_fields(clause):
                            if field == "body":
                                clause.body = self.body(child)
                            elif isinstance(child, ast.AST):
                                setattr(clause, field, self.visit(child))
                else:
                    setattr(node, name, [self.visit(v) if isinstance(v, ast.AST) else v for v in value])
            elif isinstance(value, ast.AST):
                setattr(node, name, self.visit(value))
        return node

    def visit_Module(self, node: ast.Module) -> ast.Module:
        head = 1 if node.body and _is_docstring(node.body[0]) else 0
        while head < len(node.body) and _is_future_import(node.body[head]):
            head += 1
        node.body = node.body[:head] + self.body(node.body[head:])
        return node

    def visit_ClassDef(self, node: ast.ClassDef) -> ast.ClassDef:
        return t.cast(ast.ClassDef, self._visit_statement(node, docstring=True))

    def visit_FunctionDef(self, node: t.Union[ast.FunctionDef, ast.AsyncFunctionDef]) -> ast.stmt:
        fid = len(self.functions)
        keyword = "async def " if isinstance(node, ast.AsyncFunctionDef) else "def "
        self.functions.append(
            FunctionMeta(
                name=node.name,
                line=node.lineno,
                decl=Range(node.lineno, node.col_offset, node.lineno, node.col_offset + len(keyword) + len(node.name)),
                loc=Range.from_node(node),
            )
        )

        at = 1 if _is_docstring(node.body[0]) else 0
        anchor = node.body[at] if at < len(node.body) else node.body[-1]
        self._visit_statement(node, docstring=True)
        node.body.insert(at, self._counter(anchor, "f", fid))
        return node

    visit_AsyncFunctionDef = visit_FunctionDef

    def visit_If(self, node: ast.If) -> ast.stmt:
        if not self.branches:
            return self._visit_statement(node)

        bid = len(self.branch_map)
        self.branch_map.append(
            BranchMeta(
                type="if",
                line=node.lineno,
                loc=Range.from_node(node),
                locations=(_span(node.body), _span(node.orelse) if node.orelse else Range.from_node(node)),
            )
        )

        node.test = self.visit(node.test)

        anchor = node.body[0]
        node.body = self.body(node.body)
        node.body.insert(0, self._counter(anchor, "b", bid, 0))

        if node.orelse:
            anchor = node.orelse[0]
            node.orelse = self.body(node.orelse)
            node.orelse.insert(0, self._counter(anchor, "b", bid, 1))
        else:
            node.orelse = [self._counter(node, "b", bid, 1)]

        return node

    def visit_IfExp(self, node: ast.IfExp) -> ast.expr:
        if not self.branches:
            return t.cast(ast.expr, super().generic_visit(node))

        bid = len(self.branch_map)
        self.branch_map.append(
            BranchMeta(
                type="cond-expr",
                line=node.lineno,
                loc=Range.from_node(node),
                locations=(Range.from_node(node.body), Range.from_node(node.orelse)),
            )
        )

        super().generic_visit(node)
        node.body = ast.copy_location(self._call("t", bid, 0, value=node.body), node.body)
        node.orelse = ast.copy_location(self._call("t", bid, 1, value=node.orelse), node.orelse)
        return node


def _line_map(tree: ast.AST, text: str) -> t.Tuple[t.Tuple[int, int], ...]:
    """Pair the lines of ``text``, the unparsed form of ``tree``, with the
    original lines of the nodes found on them.

    ``tree`` and the tree parsed back from ``text`` have the same shape, so
    walking both in the same order visits matching nodes at the same time.
    A line takes the start line of the first node starting on it, or else the
    end line of the first node ending on it.
    """
    starts = {}  # type: t.Dict[int, int]
    ends = {}  # type: t.Dict[int, int]
    for original, instrumented in zip(ast.walk(tree), ast.walk(ast.parse(text))):
        if type(original) is not type(instrumented):
            log.debug("Instrumented tree diverges from the original at %r", original)
            break
        lineno = getattr(instrumented, "lineno", None)
        original_lineno = getattr(original, "lineno", None)
        if lineno is None or original_lineno is None:
            continue
        starts.setdefault(lineno, original_lineno)
        end_lineno = getattr(instrumented, "end_lineno", None)
        original_end_lineno = getattr(original, "end_lineno", None)
        if end_lineno is not None and original_end_lineno is not None:
            ends.setdefault(end_lineno, original_end_lineno)

    for line, original_line in ends.items():
        starts.setdefault(line, original_line)

    return tuple(sorted(starts.items()))


class AstInstrumenter(Instrumenter):
    """Count statements, function entries and ``if`` / conditional
    expression branches by injecting calls to the module's counter handle.

    For the source::

        def f(x):
            return 1 if x else 2

    the instrumented text is::

        __covwatch__.s(0)

        def f(x):
            __covwatch__.f(0)
            __covwatch__.s(1)
            return __covwatch__.t(0, 0, 1) if x else __covwatch__.t(0, 1, 2)
    """

    version = "1"

    def __init__(self, branches: bool = True) -> None:
        self.branches = branches

    @classmethod
    def from_config(cls, config: t.Any) -> "AstInstrumenter":
        return cls(branches=config.branches)

    @property
    def options(self) -> t.Dict[str, t.Any]:
        return {"branches": self.branches}

    def instrument(self, path: str, content: str) -> t.Tuple[str, CoverageSkeleton]:
        try:
            tree = ast.parse(content, filename=path)
        except (SyntaxError, ValueError) as e:
            raise InstrumentationError(path, e) from e

        injector = _CounterInjector(self.branches)
        tree = injector.visit(tree)
        ast.fix_missing_locations(tree)

        text = ast.unparse(tree)
        if not text.endswith("\n"):
            text += "\n"

        return text, CoverageSkeleton(
            path=path,
            hash=content_hash(content),
            statement_map=tuple(injector.statements),
            fn_map=tuple(injector.functions),
            branch_map=tuple(injector.branch_map),
            line_map=_line_map(tree, text),
        )


def apply_line_map(tree: ast.AST, line_map: t.Iterable[t.Tuple[int, int]]) -> ast.AST:
    """Move the nodes of a parsed instrumented text to their original lines."""
    lines = dict(line_map)
    if not lines:
        return tree

    for node in ast.walk(tree):
        lineno = getattr(node, "lineno", None)
        if lineno is None:
            continue
        node.lineno = lines.get(lineno, lineno)

        end_lineno = getattr(node, "end_lineno", None)
        if end_lineno is None:
            continue
        node.end_lineno = max(lines.get(end_lineno, end_lineno), node.lineno)

        # Positions must still describe a non-empty range once lines collapse
        if node.end_lineno == node.lineno and node.end_col_offset is not None and node.col_offset is not None:
            if node.end_col_offset < node.col_offset:
                node.end_col_offset = node.col_offset

    return tree


def compile_instrumented(text: str, path: str, line_map: t.Iterable[t.Tuple[int, int]] = ()) -> CodeType:
    try:
        tree = ast.parse(text, filename=path)
    except (SyntaxError, ValueError) as e:
        raise InstrumentationError(path, e) from e
    return compile(apply_line_map(tree, line_map), path, "exec", dont_inherit=True)
