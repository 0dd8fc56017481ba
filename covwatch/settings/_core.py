from collections import ChainMap
import os
import typing as t

from envier import Env

from covwatch.internal.utils.formats import format_list


class CovConfig(Env):
    """Provides support for loading configurations from multiple sources.

    Order of precedence: explicitly provided source > environment variables > defaults.
    """

    def __init__(
        self,
        source: t.Optional[t.Mapping[str, str]] = None,
        parent: t.Optional["Env"] = None,
        dynamic: t.Optional[t.Dict[str, str]] = None,
    ) -> None:
        self.explicit_source = dict(source or {})
        super().__init__(source=ChainMap(self.explicit_source, os.environ), parent=parent, dynamic=dynamic)

    def is_explicit(self, env_name: str) -> bool:
        return env_name in self.explicit_source


def options_source(prefix: str, **options: t.Any) -> t.Dict[str, str]:
    """Turn Python option values into the string form of environment variables.

    >>> options_source("covwatch", cache=False, exclude=["**/vendor/**"])
    {'COVWATCH_CACHE': 'false', 'COVWATCH_EXCLUDE': '**/vendor/**'}

    Options set to ``None`` are left out so that they keep their default.
    """
    source = {}
    for name, value in options.items():
        if value is None:
            continue
        if isinstance(value, bool):
            raw = "true" if value else "false"
        elif isinstance(value, (list, tuple, set, frozenset)):
            raw = format_list(list(value))
        else:
            raw = str(value)
        source[f"{prefix}_{name}".upper()] = raw
    return source
