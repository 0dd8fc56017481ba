import typing as t

from covwatch.internal.coverage.code import SourceCodeCollector
from covwatch.settings.coverage import CoverageConfig


def install(config: t.Optional[CoverageConfig] = None) -> None:
    SourceCodeCollector.install(config=config)
