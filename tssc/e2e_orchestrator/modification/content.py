"""In-memory file patches applied to repository branches."""

from collections.abc import Iterable, Iterator, Mapping
from typing import NamedTuple


class Replacement(NamedTuple):
    """Literal substitution of the first occurrence of ``old_content``."""

    old_content: str
    new_content: str


ModificationMap = Mapping[str, Iterable[Replacement | tuple[str, str]]]


class ContentModifications:
    """Ordered replacements per file path.

    Paths keep insertion order, and so do the replacements of each path.
    """

    def __init__(self, modifications: ModificationMap | None = None) -> None:
        """Initialize, optionally from a ``{path: [(old, new), ...]}`` mapping."""
        self._modifications: dict[str, list[Replacement]] = {}
        if modifications:
            self.add_all(modifications)

    def add(self, path: str, old_content: str, new_content: str) -> "ContentModifications":
        """Append one replacement for ``path``."""
        self._modifications.setdefault(path, []).append(
            Replacement(old_content, new_content)
        )
        return self

    def add_all(self, modifications: ModificationMap) -> "ContentModifications":
        """Append every replacement of a ``{path: [(old, new), ...]}`` mapping."""
        for path, replacements in modifications.items():
            for old_content, new_content in replacements:
                self.add(path, old_content, new_content)
        return self

    def merge(
        self, other: "ContentModifications | ModificationMap"
    ) -> "ContentModifications":
        """Append the replacements of ``other`` after the existing ones."""
        if isinstance(other, ContentModifications):
            other = other.get_modifications()
        return self.add_all(other)

    def clear(self) -> None:
        """Drop every replacement."""
        self._modifications.clear()

    def is_empty(self) -> bool:
        """Whether no replacement is registered."""
        return not any(self._modifications.values())

    def get_modifications(self) -> dict[str, list[Replacement]]:
        """Return a copy of the ``{path: replacements}`` mapping."""
        return {path: list(items) for path, items in self._modifications.items()}

    def paths(self) -> list[str]:
        """File paths with at least one replacement."""
        return [path for path, items in self._modifications.items() if items]

    def total_count(self) -> int:
        """Number of replacements across all files."""
        return sum(len(items) for items in self._modifications.values())

    def apply_to_content(self, path: str, content: str) -> str:
        """Apply the replacements registered for ``path`` to ``content``.

        Each replacement substitutes only the first occurrence of its old
        content; a missing occurrence leaves the content unchanged.
        """
        for old_content, new_content in self._modifications.get(path, []):
            content = content.replace(old_content, new_content, 1)
        return content

    def __iter__(self) -> Iterator[tuple[str, list[Replacement]]]:
        """Iterate over ``(path, replacements)`` pairs."""
        return iter(self.get_modifications().items())

    def __repr__(self) -> str:
        """Summarize paths and counts."""
        return f"ContentModifications(files={self.paths()}, total={self.total_count()})"
