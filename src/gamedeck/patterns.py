"""Process-name pattern parsing and matching.

A pattern is one or more ``|``-separated alternatives. Each alternative is
either an exact name or a prefix followed by a single trailing ``*``.
Matching is case-insensitive, and a ``.exe`` suffix on the observed process
name is ignored.

Example:
    >>> pattern = ProcessPattern.parse("obs64|obs*")
    >>> pattern.matches("OBS64.exe")
    True
"""

from __future__ import annotations

from dataclasses import dataclass

from gamedeck.errors import ConfigurationError

WILDCARD = "*"
_EXE_SUFFIX = ".exe"


@dataclass(frozen=True)
class _Alternative:
    text: str
    prefix: bool

    def matches(self, name: str) -> bool:
        if self.prefix:
            return name.startswith(self.text)
        return name == self.text


@dataclass(frozen=True)
class ProcessPattern:
    """Parsed process-name pattern.

    Attributes:
        source: The pattern as written in configuration
        alternatives: Normalised alternatives, in declared order
    """

    source: str
    alternatives: tuple[_Alternative, ...]

    @classmethod
    def parse(cls, source: str) -> ProcessPattern:
        """Parse a pattern string.

        Args:
            source: Pattern text such as ``"a|b*"``

        Returns:
            Parsed ProcessPattern

        Raises:
            ConfigurationError: If the pattern is empty or uses a wildcard
                anywhere other than the end of an alternative
        """
        alternatives: list[_Alternative] = []
        for raw in source.split("|"):
            text = raw.strip().lower()
            if not text:
                raise ConfigurationError(f"Empty alternative in process pattern {source!r}")

            prefix = text.endswith(WILDCARD)
            if prefix:
                text = text[:-1]
            if WILDCARD in text:
                raise ConfigurationError(
                    f"Only a single trailing wildcard is supported in {source!r}"
                )
            if prefix and not text:
                raise ConfigurationError(f"Bare wildcard is not allowed in {source!r}")

            alternatives.append(_Alternative(text=text, prefix=prefix))

        return cls(source=source, alternatives=tuple(alternatives))

    def matches(self, process_name: str) -> bool:
        """Return True if the process name matches any alternative."""
        name = process_name.strip().lower()
        candidates = [name]
        if name.endswith(_EXE_SUFFIX):
            candidates.append(name[: -len(_EXE_SUFFIX)])
        return any(alt.matches(c) for alt in self.alternatives for c in candidates)

    def __str__(self) -> str:
        return self.source


def matches(pattern: str, process_name: str) -> bool:
    """Convenience wrapper to parse and match in one call."""
    return ProcessPattern.parse(pattern).matches(process_name)
