"""
git fast-import stream writer.

Each non-empty change set becomes one commit marked with its id, so
branching points and merges are plain ``from :N`` / ``merge :N`` lines.
File content is written inline.
"""
from __future__ import annotations
import sys
from typing import BinaryIO, Callable, Dict, List, Optional

from .changeset import ChangeSet
from .model import ROOT_BRANCH, Version

ContentProvider = Callable[[Version], Optional[bytes]]


def branch_ref(branch: str) -> str:
    return "refs/heads/" + ("master" if branch == ROOT_BRANCH else branch)


def quote_path(path: str) -> str:
    if not any(c in path for c in ' "\\\n'):
        return path
    escaped = path.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")
    return f'"{escaped}"'


class FastImportWriter:
    def __init__(
        self,
        out: Optional[BinaryIO] = None,
        author_map: Optional[Dict[str, str]] = None,
        content_provider: Optional[ContentProvider] = None,
        email_domain: str = "example.com",
    ):
        self.out = out if out is not None else sys.stdout.buffer
        self.author_map = author_map if author_map is not None else {}
        self.content_provider = content_provider
        self.email_domain = email_domain
        self.written = 0

    def _write(self, text: str):
        self.out.write(text.encode("utf-8"))

    def _data(self, content: bytes):
        self._write(f"data {len(content)}\n")
        self.out.write(content)
        self._write("\n")

    def author_for(self, login: str) -> str:
        if login in self.author_map:
            return self.author_map[login]
        # default mapping
        self.author_map[login] = f"{login} <{login}@{self.email_domain}>"
        return self.author_map[login]

    def write_changesets(self, changesets: List[ChangeSet]):
        total = len(changesets)
        step = max(total // 100, 1)
        for n, changeset in enumerate(changesets, 1):
            if total < 100 or n % step == 0:
                self._write(f"progress Writing change set {n} of {total}\n\n")
            self.write_changeset(changeset)

    def write_changeset(self, changeset: ChangeSet) -> bool:
        """Write one commit; returns False for an empty change set, which is skipped."""
        if changeset.is_empty:
            return False
        author = self.author_for(changeset.author_login)
        date_str = f"{int(changeset.start_time)} +0000"
        self._write(f"commit {branch_ref(changeset.branch)}\n")
        self._write(f"mark :{changeset.id}\n")
        self._write(f"author {author} {date_str}\n")
        self._write(f"committer {author} {date_str}\n")
        self._data(changeset.summary().encode("utf-8"))
        if changeset.branching_point is not None:
            self._write(f"from :{changeset.branching_point.id}\n")
        for merged in changeset.merges:
            if not merged.is_empty:
                self._write(f"merge :{merged.id}\n")

        for source, target in changeset.renamed:
            self._write(f"R {quote_path(source)} {quote_path(target)}\n")
        for source, target in changeset.copied:
            self._write(f"C {quote_path(source)} {quote_path(target)}\n")
        for path in changeset.removed:
            self._write(f"D {quote_path(path)}\n")
        for path, target in changeset.symlinks:
            self._write(f"M 120000 inline {quote_path(path)}\n")
            self._data(target.encode("utf-8"))
        for named in changeset.file_versions():
            content = self.content_provider(named.version) if self.content_provider else None
            for name in named.names:
                self._write(f"M 644 inline {quote_path(name)}\n")
                self._data(content or b"")
        self._write("\n")

        for label in changeset.labels:
            self._write(f"reset refs/tags/{label}\n")
            self._write(f"from :{changeset.id}\n\n")
        self.written += 1
        return True
