"""Completion bookkeeping for labels spanning many elements."""
from __future__ import annotations
from typing import Dict, List, Set

from .model import Version


class LabelInfo:
    def __init__(self, name: str):
        self.name = name
        self.versions: List[Version] = []
        self.by_element: Dict[str, Version] = {}
        # branch name -> versions not sequenced yet
        self.missing: Dict[str, Set[Version]] = {}

    def add(self, version: Version):
        if version in self.versions:
            return
        self.versions.append(version)
        self.by_element[version.element_oid] = version

    def reset(self):
        self.missing = {}
        for version in self.versions:
            # version 0 has no content of its own: nothing to wait for
            if version.number != 0:
                self.missing.setdefault(version.branch_name, set()).add(version)

    def is_missing(self, version: Version) -> bool:
        return version in self.missing.get(version.branch_name, ())

    def mark_sequenced(self, version: Version) -> bool:
        """Remove version from the missing set; True if it was missing."""
        pending = self.missing.get(version.branch_name)
        if pending is None or version not in pending:
            return False
        pending.remove(version)
        if not pending:
            del self.missing[version.branch_name]
        return True

    @property
    def is_complete(self) -> bool:
        return not self.missing

    def missing_branches(self) -> Set[str]:
        return set(self.missing)

    def missing_versions(self) -> Set[Version]:
        result: Set[Version] = set()
        for versions in self.missing.values():
            result |= versions
        return result

    def __repr__(self):
        return f"<LabelInfo {self.name} versions={len(self.versions)} missing={len(self.missing_versions())}>"
