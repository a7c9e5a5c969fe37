"""Gitignore-style exclusion rules for uploads.

Three layers, in order: the fixed ``DEFAULTS``, the upload root's
``.uploadignore`` file, and patterns passed in by the caller (config
``extra_ignore``). The defaults are matched on their own as well, so a
``!.git/`` line in ``.uploadignore`` cannot bring repository metadata back.
"""

from pathlib import Path
from typing import Iterable, List

from pathspec import PathSpec
from pathspec.patterns import GitWildMatchPattern

from .constants import IGNORE_FILE


# Never uploaded, at any depth
DEFAULTS = [
    # Version control metadata
    ".git/",

    # Dependency cache
    "node_modules/",

    # OS metadata
    ".DS_Store",
]


def _read_patterns(path: Path) -> List[str]:
    if not path.is_file():
        return []
    lines = (line.strip() for line in path.read_text().splitlines())
    return [line for line in lines if line and not line.startswith("#")]


class IgnoreSpec:
    """Decides which root-relative POSIX paths are left out of an upload."""

    def __init__(self, root: Path, extra: Iterable[str] = ()):
        self.root = root
        patterns = DEFAULTS + _read_patterns(root / IGNORE_FILE) + list(extra)
        self._defaults = PathSpec.from_lines(GitWildMatchPattern, DEFAULTS)
        self.spec = PathSpec.from_lines(GitWildMatchPattern, patterns)

    def is_ignored(self, relpath: str) -> bool:
        """True if ``relpath`` (forward slashes, no leading slash) is excluded."""
        return self._defaults.match_file(relpath) or self.spec.match_file(relpath)

    def should_traverse(self, dirpath: str) -> bool:
        """True if the walk should descend into directory ``dirpath``.

        Directory patterns such as ``build/`` only match with a trailing
        slash, so one is added before matching.
        """
        if not dirpath.endswith("/"):
            dirpath += "/"
        return not self.is_ignored(dirpath)
