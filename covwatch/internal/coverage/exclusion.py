import os
from pathlib import Path
import typing as t

from covwatch.internal.glob_matching import GlobMatcher
from covwatch.internal.logger import get_logger
from covwatch.internal.packages import is_dependency


log = get_logger(__name__)


# Used when no exclude list is configured. A configured list, even an empty
# one, replaces it.
DEFAULT_EXCLUDE = (
    "coverage/**",
    "tests/**",
    "test/**",
    "**/test_*.py",
    "**/*_test.py",
    "**/conftest.py",
    "setup.py",
    "docs/**",
    "build/**",
    "dist/**",
    ".tox/**",
    ".nox/**",
    "**/__pycache__/**",
)

# Always excluded, unless dependencies are explicitly allowed
DEPENDENCY_EXCLUDE = (
    "**/site-packages/**",
    "**/dist-packages/**",
    "**/.venv/**",
    "**/node_modules/**",
)

_ALWAYS_PRUNED = frozenset(("__pycache__", ".git", ".hg", ".svn"))
_DEPENDENCY_DIRS = frozenset(("site-packages", "dist-packages", ".venv", "node_modules"))


class Decision(t.NamedTuple):
    instrument: bool
    report: bool


_NEITHER = Decision(False, False)


class _PatternSet:
    """Ordered glob patterns where a ``!`` prefix re-includes what earlier
    patterns matched. A pattern also matches everything below the directories
    it matches.
    """

    def __init__(self, patterns):
        # type: (t.Iterable[str]) -> None
        self.patterns = []  # type: t.List[t.Tuple[bool, t.List[GlobMatcher]]]
        for pattern in patterns:
            negated = pattern.startswith("!")
            if negated:
                pattern = pattern[1:]
            if pattern.startswith("./"):
                pattern = pattern[2:]
            pattern = pattern.rstrip("/")
            if not pattern:
                continue
            self.patterns.append((negated, [GlobMatcher(pattern), GlobMatcher(pattern + "/**")]))

    def __bool__(self):
        return bool(self.patterns)

    def matches(self, relpath, abspath):
        # type: (str, str) -> bool
        matched = False
        for negated, matchers in self.patterns:
            if negated != matched:
                continue
            if any(m.match(abspath if m.pattern.startswith("/") else relpath) for m in matchers):
                matched = not negated
        return matched


class ExclusionPolicy:
    """Decide which files are instrumented and which appear in reports.

    Decisions depend only on the path and on the configuration the policy is
    built with, and are cached per policy.
    """

    def __init__(
        self,
        cwd,  # type: t.Union[str, Path]
        include=None,  # type: t.Optional[t.Sequence[str]]
        exclude=None,  # type: t.Optional[t.Sequence[str]]
        extensions=(".py",),  # type: t.Sequence[str]
        exclude_dependencies=True,  # type: bool
        report_exclude=(),  # type: t.Sequence[str]
    ):
        # type: (...) -> None
        self.cwd = Path(cwd).resolve()
        self.extensions = tuple(extensions)
        self.exclude_dependencies = exclude_dependencies
        # An empty include list is the same as no include list
        self._include = _PatternSet(include or ())
        self._exclude = _PatternSet(DEFAULT_EXCLUDE if exclude is None else exclude)
        self._dependencies = _PatternSet(DEPENDENCY_EXCLUDE if exclude_dependencies else ())
        self._report_exclude = _PatternSet(report_exclude)
        self._decisions = {}  # type: t.Dict[str, Decision]

    @classmethod
    def from_config(cls, config, extensions=None):
        # type: (t.Any, t.Optional[t.Sequence[str]]) -> ExclusionPolicy
        return cls(
            config.cwd,
            include=config.include,
            exclude=config.exclude,
            extensions=config.extension if extensions is None else extensions,
            exclude_dependencies=config.exclude_dependencies,
            report_exclude=config.report_exclude,
        )

    def __repr__(self):
        return "ExclusionPolicy(cwd=%r, extensions=%r)" % (str(self.cwd), self.extensions)

    def extension_for(self, path):
        # type: (str) -> t.Optional[str]
        name = os.path.basename(path)
        matches = [ext for ext in self.extensions if name.endswith(ext) and len(name) > len(ext)]
        return max(matches, key=len) if matches else None

    def decide(self, path):
        # type: (t.Union[str, Path]) -> Decision
        key = str(path)
        try:
            return self._decisions[key]
        except KeyError:
            decision = self._decisions[key] = self._decide(Path(path))
            return decision

    def _decide(self, path):
        # type: (Path) -> Decision
        if self.extension_for(path.name) is None:
            return _NEITHER

        path = path.resolve()
        try:
            relpath = path.relative_to(self.cwd).as_posix()
        except ValueError:
            # Outside of the project
            return _NEITHER

        abspath = path.as_posix()

        if self._dependencies and (self._dependencies.matches(relpath, abspath) or is_dependency(path)):
            return _NEITHER

        if self._include and not self._include.matches(relpath, abspath):
            return _NEITHER

        if self._exclude.matches(relpath, abspath):
            return _NEITHER

        return Decision(True, not self._report_exclude.matches(relpath, abspath))

    def should_instrument(self, path):
        # type: (t.Union[str, Path]) -> bool
        return self.decide(path).instrument

    def should_report(self, path):
        # type: (t.Union[str, Path]) -> bool
        return self.decide(path).report

    def eligible_files(self, root=None):
        # type: (t.Optional[t.Union[str, Path]]) -> t.Iterator[str]
        """Every file under ``root`` (the working directory by default) that
        belongs in reports, each yielded once, in a stable order.
        """
        seen = set()  # type: t.Set[str]
        for dirpath, dirnames, filenames in os.walk(str(root if root is not None else self.cwd)):
            dirnames[:] = sorted(
                d
                for d in dirnames
                if d not in _ALWAYS_PRUNED and not (self.exclude_dependencies and d in _DEPENDENCY_DIRS)
            )
            for name in sorted(filenames):
                path = str(Path(dirpath, name).resolve())
                if path in seen:
                    continue
                seen.add(path)
                if self.should_report(path):
                    yield path
