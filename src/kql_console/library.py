"""
Query library browsing.

The library is a folder tree: each subdirectory of the root is a category
of workspace queries, except two reserved folders that hold the
threat-hunting and resource-inventory queries. A category may carry a
resource-scoped variant subfolder whose queries expect resource
placeholders.
"""

import logging
import re
from pathlib import Path
from typing import Iterable

from kql_console.config import LibraryConfig
from kql_console.models import QueryTemplate
from kql_console.selection import SelectionError

logger = logging.getLogger(__name__)


class MissingResourceError(Exception):
    """Raised when a required library folder does not exist."""
    pass


class QueryLibrary:
    """
    File-system view of the query library.

    Attributes:
        config: Library layout (root, reserved folders, extensions).
    """

    def __init__(self, config: LibraryConfig):
        self.config = config

    @property
    def root(self) -> Path:
        return self.config.root

    def _require_dir(self, path: Path, what: str) -> Path:
        if not path.is_dir():
            raise MissingResourceError(f"{what} not found: {path}")
        return path

    def list_categories(self) -> list[str]:
        """
        Return workspace query categories sorted by name.

        Hidden folders and the reserved backend folders are excluded.

        Raises:
            MissingResourceError: If the library root is missing.
        """
        root = self._require_dir(self.root, "Query library")
        reserved = {name.lower() for name in self.config.reserved_dirs}
        return sorted(
            (
                entry.name
                for entry in root.iterdir()
                if entry.is_dir()
                and not entry.name.startswith(".")
                and entry.name.lower() not in reserved
            ),
            key=str.lower,
        )

    def category_path(self, category: str) -> Path:
        """Return the folder of a category, which must exist."""
        return self._require_dir(self.root / category, f"Category '{category}'")

    def threat_hunting_path(self) -> Path:
        return self._require_dir(
            self.root / self.config.threat_hunting_dir, "Threat-hunting query folder"
        )

    def resource_graph_path(self) -> Path:
        return self._require_dir(
            self.root / self.config.resource_graph_dir, "Resource inventory query folder"
        )

    def resource_variant_path(self, category: str) -> Path:
        """
        Return the resource-scoped subfolder of a category.

        Raises:
            MissingResourceError: If the category has no such subfolder.
        """
        path = self.category_path(category) / self.config.resource_variant_dir
        return self._require_dir(path, f"Resource-scoped queries for '{category}'")

    @staticmethod
    def list_files(folder: Path, extension: str) -> list[Path]:
        """Return files in ``folder`` with ``extension``, sorted by name."""
        extension = extension.lower()
        return sorted(
            (
                entry
                for entry in folder.iterdir()
                if entry.is_file() and entry.suffix.lower() == extension
            ),
            key=lambda p: p.name.lower(),
        )

    def search(
        self,
        keyword: str,
        extensions: Iterable[str] | None = None,
        exclude: Iterable[str] = (),
    ) -> list[Path]:
        """
        Find query files whose name or content contains ``keyword``.

        Matching is a case-sensitive literal substring match; the keyword is
        escaped so regex metacharacters match themselves.

        Args:
            keyword: Text to look for.
            extensions: File extensions to consider. Defaults to the
                workspace query extension.
            exclude: Top-level folder names to skip. Hidden folders are
                always skipped.

        Returns:
            Matching files sorted by path relative to the root.

        Raises:
            SelectionError: If the keyword is empty.
            MissingResourceError: If the library root is missing.
        """
        if not keyword:
            raise SelectionError("Invalid selection: empty search keyword")

        root = self._require_dir(self.root, "Query library")
        wanted = {ext.lower() for ext in (extensions or [self.config.query_extension])}
        skipped = {name.lower() for name in exclude}
        pattern = re.compile(re.escape(keyword))

        matches = []
        for path in sorted(root.rglob("*"), key=lambda p: str(p.relative_to(root)).lower()):
            if not path.is_file() or path.suffix.lower() not in wanted:
                continue
            parts = path.relative_to(root).parts
            if parts[0].lower() in skipped or any(part.startswith(".") for part in parts[:-1]):
                continue
            if pattern.search(path.name) or pattern.search(self._read_text(path)):
                matches.append(path)

        logger.debug("Search for %r matched %d file(s)", keyword, len(matches))
        return matches

    @staticmethod
    def _read_text(path: Path) -> str:
        return path.read_text(encoding="utf-8", errors="replace")

    def load_template(self, path: Path) -> QueryTemplate:
        """Read a query file into a QueryTemplate."""
        return QueryTemplate(path=path, text=self._read_text(path))

    def display_name(self, path: Path) -> str:
        """Path relative to the library root, for menus."""
        try:
            return str(path.relative_to(self.root))
        except ValueError:
            return path.name
