"""
Placeholder substitution for query templates.

Query files may contain ``{{NAME}}`` markers, NAME being letters, digits
and underscores. Markers are filled first from an auto-context mapping
(the identity of a chosen resource) and then, for whatever is left, from a
TokenResolver. Resolution happens once per distinct name and every
occurrence receives the same value. Inserted values are never re-scanned.
"""

import logging
import re
from typing import Mapping, Protocol, Sequence

logger = logging.getLogger(__name__)

PLACEHOLDER_PATTERN = re.compile(r"\{\{([A-Za-z0-9_]+)\}\}")


class UnresolvedTokenError(Exception):
    """Raised when placeholders remain and the resolver may not prompt."""

    def __init__(self, names: Sequence[str]):
        self.names = tuple(sorted(names))
        super().__init__(f"Unresolved placeholders: {', '.join(self.names)}")


class TokenResolver(Protocol):
    """Strategy that supplies values for placeholders auto-context did not cover."""

    def resolve(self, names: Sequence[str]) -> dict[str, str]:
        """Return a value for every name in ``names``."""
        ...


class StrictTokenResolver:
    """Never prompts; fails listing every missing name."""

    def resolve(self, names: Sequence[str]) -> dict[str, str]:
        if names:
            raise UnresolvedTokenError(names)
        return {}


class MappingTokenResolver:
    """
    Resolves from a fixed mapping (e.g. ``--token NAME=VALUE`` arguments).

    Names absent from the mapping raise UnresolvedTokenError, all at once.
    """

    def __init__(self, values: Mapping[str, str]):
        self._values = dict(values)

    def resolve(self, names: Sequence[str]) -> dict[str, str]:
        missing = [name for name in names if name not in self._values]
        if missing:
            raise UnresolvedTokenError(missing)
        return {name: self._values[name] for name in names}


class PromptTokenResolver:
    """
    Asks the operator for each name, in order of first appearance.

    Args:
        ask: Callable taking a prompt string and returning the answer.
             An empty answer is a valid (empty) value.
    """

    def __init__(self, ask):
        self._ask = ask

    def resolve(self, names: Sequence[str]) -> dict[str, str]:
        return {name: self._ask(f"Value for {{{{{name}}}}}") for name in names}


def find_placeholders(text: str) -> list[str]:
    """
    Return distinct placeholder names in order of first appearance.

    Malformed markers (unclosed braces, spaces or dashes in the name)
    are not matched.
    """
    seen: dict[str, None] = {}
    for match in PLACEHOLDER_PATTERN.finditer(text):
        seen.setdefault(match.group(1), None)
    return list(seen)


def substitute(
    template: str,
    auto_context: Mapping[str, str] | None = None,
    resolver: TokenResolver | None = None,
) -> str:
    """
    Fill every placeholder in ``template``.

    1. Names with a non-empty value in ``auto_context`` take that value.
    2. Remaining names are resolved once through ``resolver``.
    3. All markers are replaced in a single pass over the template, so
       ``{{...}}`` text inside a value is left as is.

    Args:
        template: Raw query text.
        auto_context: Values derived from a resolved resource, or None.
        resolver: Source for remaining names. Defaults to StrictTokenResolver.

    Returns:
        The substituted query text. A template without placeholders is
        returned unchanged.

    Raises:
        UnresolvedTokenError: If the resolver refuses to supply values.
    """
    names = find_placeholders(template)
    if not names:
        return template

    values: dict[str, str] = {}
    if auto_context:
        for name in names:
            value = auto_context.get(name)
            if value:
                values[name] = str(value)
        if values:
            logger.debug("Auto-filled placeholders: %s", ", ".join(values))

    remaining = [name for name in names if name not in values]
    if remaining:
        if resolver is None:
            resolver = StrictTokenResolver()
        resolved = resolver.resolve(remaining)
        for name in remaining:
            values[name] = resolved.get(name) or ""

    return PLACEHOLDER_PATTERN.sub(lambda m: values[m.group(1)], template)
