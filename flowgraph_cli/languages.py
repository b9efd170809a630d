"""Tree-sitter grammar loading and source-file discovery."""

from __future__ import annotations

import importlib
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Set, Tuple

from tree_sitter import Language, Parser as TSParser

from .errors import UnsupportedLanguageError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Language <-> file-extension mapping
# ---------------------------------------------------------------------------
LANGUAGE_MAP: Dict[str, str] = {
    ".py": "python",
    ".ts": "typescript",
    ".mts": "typescript",
    ".tsx": "tsx",
    ".js": "javascript",
    ".mjs": "javascript",
    ".jsx": "javascript",
}

# Language name -> (grammar module, function returning the Language capsule)
_GRAMMAR_MODULES: Dict[str, Tuple[str, str]] = {
    "python": ("tree_sitter_python", "language"),
    "typescript": ("tree_sitter_typescript", "language_typescript"),
    "tsx": ("tree_sitter_typescript", "language_tsx"),
    "javascript": ("tree_sitter_javascript", "language"),
}

SKIP_DIRS: Set[str] = {
    ".venv", "venv", "__pycache__", "node_modules", ".git",
    "site-packages", ".tox", ".pytest_cache", "build", "dist",
    ".mypy_cache", ".ruff_cache", "htmlcov", ".eggs",
    "egg-info", ".flowgraph", "coverage",
}


def language_for_path(path: Path) -> Optional[str]:
    return LANGUAGE_MAP.get(path.suffix)


def is_python(language: str) -> bool:
    return language == "python"


class GrammarRegistry:
    """Lazily builds one tree-sitter parser per requested language."""

    def __init__(self, languages: Optional[Iterable[str]] = None) -> None:
        self._requested = list(languages or _GRAMMAR_MODULES)
        self._parsers: Dict[str, TSParser] = {}
        self._failed: Set[str] = set()

    @property
    def languages(self) -> List[str]:
        return list(self._requested)

    def supports(self, language: str) -> bool:
        if language not in self._requested:
            return False
        return self._load(language) is not None

    def parser_for(self, language: str) -> TSParser:
        parser = self._load(language) if language in self._requested else None
        if parser is None:
            raise UnsupportedLanguageError(f"No tree-sitter grammar available for '{language}'")
        return parser

    def parse(self, source: bytes, language: str) -> Any:
        return self.parser_for(language).parse(source)

    def _load(self, language: str) -> Optional[TSParser]:
        if language in self._parsers:
            return self._parsers[language]
        if language in self._failed:
            return None

        entry = _GRAMMAR_MODULES.get(language)
        if entry is None:
            logger.warning("No grammar module mapped for language '%s'", language)
            self._failed.add(language)
            return None

        mod_name, factory = entry
        try:
            mod = importlib.import_module(mod_name)
            parser = TSParser(Language(getattr(mod, factory)()))
        except ImportError:
            logger.warning(
                "Grammar package '%s' not installed for language '%s'. "
                "Install with: pip install %s",
                mod_name, language, mod_name.replace("_", "-"),
            )
            self._failed.add(language)
            return None

        logger.debug("Loaded tree-sitter parser for %s", language)
        self._parsers[language] = parser
        return parser


def iter_source_files(
    root: Path,
    languages: Iterable[str],
    extra_skip_dirs: Iterable[str] = (),
) -> Iterator[Tuple[Path, str]]:
    """Yield ``(path, language)`` for every source file under *root*."""
    wanted = set(languages)
    skip = SKIP_DIRS | set(extra_skip_dirs)
    for path in sorted(root.rglob("*")):
        if not path.is_file():
            continue
        rel_parts = path.relative_to(root).parts
        if any(part in skip or part.endswith(".egg-info") for part in rel_parts[:-1]):
            continue
        language = language_for_path(path)
        if language is None or language not in wanted:
            continue
        if path.name.endswith(".d.ts"):
            continue
        yield path, language
