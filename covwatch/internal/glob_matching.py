import re


class GlobMatcher:
    """Match ``/``-separated relative paths against a glob pattern.

    ``?`` matches one character and ``*`` any run of characters, neither of
    them crossing a ``/``. A ``**`` path segment matches any number of
    directories, including none, so ``**/vendor/**`` matches both
    ``vendor/lib.py`` and ``src/vendor/lib.py``. Every other character,
    regex metacharacters included, matches itself.
    """

    __slots__ = ("pattern", "_regex")

    def __init__(self, pattern):
        # type: (str) -> None
        self.pattern = pattern
        self._regex = re.compile(_translate(pattern), re.DOTALL)

    def __repr__(self):
        return "GlobMatcher(%r)" % self.pattern

    def match(self, subject):
        # type: (str) -> bool
        return self._regex.fullmatch(subject) is not None


def _translate(pattern):
    # type: (str) -> str
    parts = []
    px = 0
    n = len(pattern)

    while px < n:
        char = pattern[px]

        if char == "*":
            end = px
            while end < n and pattern[end] == "*":
                end += 1

            segment_start = px == 0 or pattern[px - 1] == "/"
            segment_end = end == n or pattern[end] == "/"

            if end - px > 1 and segment_start and segment_end:
                if end == n:
                    parts.append(".*")
                else:
                    # "**/" also matches no directory at all
                    parts.append("(?:.*/)?")
                    end += 1
            else:
                parts.append("[^/]*")
            px = end
            continue

        if char == "?":
            parts.append("[^/]")
        else:
            parts.append(re.escape(char))
        px += 1

    return "".join(parts)
