import os
from pathlib import Path
import typing as t

from covwatch.internal.utils.formats import parse_list
from covwatch.settings._core import CovConfig
from covwatch.settings._core import options_source


PREFIX = "covwatch"

PROJECT_MANIFESTS = ("pyproject.toml", "setup.py", "setup.cfg")


def _parse_extensions(value: t.Optional[str]) -> t.List[str]:
    # .py is always eligible, configured extensions come in addition to it
    extensions = [".py"]
    for ext in parse_list(value):
        if ext not in extensions:
            extensions.append(ext)
    return extensions


def find_project_root(start: t.Union[str, Path]) -> t.Optional[Path]:
    """Return the nearest directory, from ``start`` upwards, holding a project manifest."""
    current = Path(start).resolve()
    for candidate in (current, *current.parents):
        if any((candidate / manifest).is_file() for manifest in PROJECT_MANIFESTS):
            return candidate
    return None


def _derive_cwd(config: "CoverageConfig") -> str:
    # An explicit source value takes precedence over COVWATCH_CWD, which takes
    # precedence over looking upwards for a project manifest.
    if config._cwd:
        return str(Path(config._cwd).resolve())
    root = find_project_root(os.getcwd())
    return str(root if root is not None else Path(os.getcwd()).resolve())


def _derive_caching_enabled(config: "CoverageConfig") -> bool:
    # Only processes spawned by covwatch-run share the on-disk cache; the
    # coordinating process prepares the directory and children reuse it.
    return config.cache and config.is_child_process


class CoverageConfig(CovConfig):
    __prefix__ = PREFIX

    extension = CovConfig.v(
        list,
        "extension",
        parser=_parse_extensions,
        default=[".py"],
        help_type="List",
        help="File extensions eligible for instrumentation. Extensions other than .py are made importable",
    )
    include = CovConfig.v(
        t.Optional[list],
        "include",
        parser=parse_list,
        default=None,
        help_type="List",
        help="Glob patterns a file must match to be instrumented. Empty means no include filter",
    )
    exclude = CovConfig.v(
        t.Optional[list],
        "exclude",
        parser=parse_list,
        default=None,
        help_type="List",
        help="Glob patterns of files that are not instrumented. Replaces the default exclude list when set",
    )
    exclude_dependencies = CovConfig.v(
        bool,
        "exclude_dependencies",
        default=True,
        help_type="Boolean",
        help="Always exclude the standard library, site-packages and virtual environments",
    )
    report_exclude = CovConfig.v(
        list,
        "report_exclude",
        parser=parse_list,
        default=[],
        help_type="List",
        help="Glob patterns of files that are instrumented but left out of merged reports",
    )
    cache = CovConfig.v(
        bool,
        "cache",
        default=True,
        help_type="Boolean",
        help="Cache instrumented sources on disk",
    )
    cache_dir = CovConfig.v(
        str,
        "cache_dir",
        default=".covwatch_cache",
        help_type="Path",
        help="Directory of the instrumentation cache, relative to the working directory",
    )
    temp_dir = CovConfig.v(
        str,
        "temp_dir",
        default=".covwatch_output",
        help_type="Path",
        help="Directory where every process writes its coverage report",
    )
    report_dir = CovConfig.v(
        str,
        "report_dir",
        default="coverage",
        help_type="Path",
        help="Directory where merged reports are written",
    )
    is_child_process = CovConfig.v(
        bool,
        "is_child_process",
        default=False,
        help_type="Boolean",
        help="Set by covwatch-run in the processes it spawns",
    )
    parent_id = CovConfig.v(
        t.Optional[str],
        "parent_id",
        default=None,
        help_type="String",
        help="Identifier of the covwatch-run invocation that spawned this process",
    )
    _cwd = CovConfig.v(
        t.Optional[str],
        "cwd",
        default=None,
        help_type="Path",
        help="Working directory override. Defaults to the nearest directory holding a project manifest",
    )
    all_files = CovConfig.v(
        bool,
        "all",
        default=False,
        help_type="Boolean",
        help="Report never-loaded eligible files with zero coverage",
    )
    transform = CovConfig.v(
        t.Optional[str],
        "transform",
        default=None,
        help_type="module:callable",
        help="Pre-transform applied to the source of files with an extension other than .py",
    )
    branches = CovConfig.v(
        bool,
        "branches",
        default=True,
        help_type="Boolean",
        help="Instrument branches of if statements and conditional expressions",
    )
    source_map = CovConfig.v(
        bool,
        "source_map",
        default=True,
        help_type="Boolean",
        help="Map instrumented line numbers back to the original source",
    )

    cwd = CovConfig.d(str, _derive_cwd)
    caching_enabled = CovConfig.d(bool, _derive_caching_enabled)

    @classmethod
    def from_options(cls, **options: t.Any) -> "CoverageConfig":
        """Build a configuration from Python values, e.g. ``from_options(cache=False)``."""
        return cls(source=options_source(PREFIX, **options))

    def _resolve(self, directory: str) -> str:
        return str((Path(self.cwd) / directory).resolve())

    @property
    def cache_directory(self) -> str:
        return self._resolve(self.cache_dir)

    @property
    def temp_directory(self) -> str:
        return self._resolve(self.temp_dir)

    @property
    def report_directory(self) -> str:
        return self._resolve(self.report_dir)

    def child_environment(self) -> t.Dict[str, str]:
        """Environment variables handing this configuration over to a child process."""
        return options_source(
            PREFIX,
            extension=self.extension,
            include=self.include,
            exclude=self.exclude,
            exclude_dependencies=self.exclude_dependencies,
            report_exclude=self.report_exclude,
            cache=self.cache,
            cache_dir=self.cache_directory,
            temp_dir=self.temp_directory,
            cwd=self.cwd,
            transform=self.transform,
            branches=self.branches,
            source_map=self.source_map,
            is_child_process=True,
        )


config = CoverageConfig()
