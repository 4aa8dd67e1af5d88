"""
Change sets: versions sharing author, branch and a close check-in time.
"""
from __future__ import annotations
from typing import Dict, Iterator, List, Optional, Tuple

from .model import Version

# file names listed in front of a comment before "+N more"
DISPLAY_NAMES = 3


class NamedVersion:
    def __init__(self, version: Version, name: Optional[str] = None, is_raw: bool = True):
        self.version = version
        # an element may have several names at once, e.g. while a move is
        # only half checked in
        self.names: List[str] = [name] if name else []
        self.is_raw = is_raw

    def add_name(self, name: str) -> bool:
        if name in self.names:
            return False
        self.names.append(name)
        return True

    @property
    def display_name(self) -> str:
        return min(self.names) if self.names else str(self.version)

    def __repr__(self):
        return f"<NamedVersion {self.version} names={self.names} raw={self.is_raw}>"


class ChangeSet:
    def __init__(self, author_name: str, author_login: str, branch: str, time: int):
        self.id = 0
        self.author_name = author_name
        self.author_login = author_login
        self.branch = branch
        self.start_time = time
        self.finish_time = time

        self.versions: List[NamedVersion] = []
        # superseded by a later version of the same element, but still
        # carrying labels or merges
        self.skipped_versions: List[Version] = []

        self.branching_point: Optional[ChangeSet] = None
        self.is_branching_point = False
        self.merges: List[ChangeSet] = []
        self.labels: List[str] = []

        self.renamed: List[Tuple[str, str]] = []
        self.copied: List[Tuple[str, str]] = []
        self.removed: List[str] = []
        self.symlinks: List[Tuple[str, str]] = []

    def find(self, element_oid: str) -> Optional[NamedVersion]:
        for named in self.versions:
            if named.version.element_oid == element_oid:
                return named
        return None

    def add(self, version: Version, name: Optional[str] = None, is_raw: bool = True) -> Optional[NamedVersion]:
        """
        Add a version, keeping only the most recent one of each element.
        Returns the new entry, or None if an existing entry was kept.
        """
        if is_raw:
            if version.time < self.start_time:
                self.start_time = version.time
            if version.time > self.finish_time:
                self.finish_time = version.time
        existing = self.find(version.element_oid)
        if existing is None:
            named = NamedVersion(version, name, is_raw)
            self.versions.append(named)
            return named
        if existing.version == version:
            if name:
                existing.add_name(name)
            return None
        if existing.version.number > version.number:
            self._skip(version)
            return None
        self._skip(existing.version)
        self.versions.remove(existing)
        named = NamedVersion(version, name, is_raw)
        self.versions.append(named)
        return named

    def _skip(self, version: Version):
        if (version.labels or version.merges_from or version.merges_to) and version not in self.skipped_versions:
            self.skipped_versions.append(version)

    def absorb(self, other: "ChangeSet"):
        for named in other.versions:
            self.add(named.version, is_raw=named.is_raw)
        for version in other.skipped_versions:
            self._skip(version)

    def all_versions(self) -> Iterator[Version]:
        for named in self.versions:
            yield named.version
        yield from self.skipped_versions

    def raw_versions(self) -> Iterator[Version]:
        for named in self.versions:
            if named.is_raw:
                yield named.version
        yield from self.skipped_versions

    @property
    def tree_operations(self) -> int:
        return len(self.renamed) + len(self.copied) + len(self.removed) + len(self.symlinks)

    def file_versions(self) -> List[NamedVersion]:
        return [n for n in self.versions if not n.version.is_directory and n.names]

    @property
    def is_empty(self) -> bool:
        return not (
            self.file_versions()
            or self.tree_operations
            or self.labels
            or self.branching_point is not None
            or self.is_branching_point
            or self.merges
        )

    def summary(self) -> str:
        """Commit message: distinct comments, with the files they apply to."""
        comments: Dict[str, List[str]] = {}
        for named in self.versions:
            if not named.is_raw:
                continue
            comment = named.version.comment.strip()
            if comment:
                comments.setdefault(comment, []).append(named.display_name)
        if len(comments) == 1:
            return next(iter(comments))
        if comments:
            return "\n".join(
                f"{_format_names(names)}: {comment}" for comment, names in comments.items()
            )
        return self._generic_summary()

    def _generic_summary(self) -> str:
        parts = []
        files = len(self.file_versions())
        if files:
            parts.append(_plural(files, "file modification"))
        if self.tree_operations:
            parts.append(_plural(self.tree_operations, "tree modification"))
        if parts:
            return ", ".join(parts)
        if self.branching_point is not None:
            return f"Start branch {self.branch}"
        return "No modification"

    def __repr__(self):
        return (
            f"<ChangeSet {self.id} {self.author_login}@{self.branch}: {len(self.versions)} changes "
            f"between {self.start_time} and {self.finish_time}>"
        )


def _format_names(names: List[str]) -> str:
    unique = sorted(set(names))
    shown = ", ".join(unique[:DISPLAY_NAMES])
    if len(unique) > DISPLAY_NAMES:
        shown += f" +{len(unique) - DISPLAY_NAMES} more"
    return shown


def _plural(count: int, noun: str) -> str:
    return f"{count} {noun}" + ("s" if count != 1 else "")
