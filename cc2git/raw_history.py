"""
Raw change sets: coalesce per-element versions into change sets.

Versions are grouped by branch, then by author login. Each (branch, author)
list of change sets is kept sorted by start time, and a version joins the
change set whose start or finish time lies within MAX_DELAY seconds.
"""
from __future__ import annotations
from bisect import bisect_left
from typing import Dict, Iterable, List, Optional, Set

from .changeset import ChangeSet
from .diagnostics import Diagnostics
from .errors import BranchParentError
from .filters import BranchFilter, LabelFilter, filter_labels
from .labels import LabelInfo
from .model import ROOT_BRANCH, Version, VersionGraph

MAX_DELAY = 20


class AuthorChangeSets:
    """One author's change sets on one branch, sorted by start time."""

    def __init__(self):
        self.changesets: List[ChangeSet] = []
        # start times, kept in step with changesets for bisecting
        self.starts: List[int] = []

    def __iter__(self):
        return iter(self.changesets)

    def __len__(self):
        return len(self.changesets)

    def __getitem__(self, index: int) -> ChangeSet:
        return self.changesets[index]

    def _join(self, index: int, version: Version):
        self.changesets[index].add(version)
        self.starts[index] = self.changesets[index].start_time

    def _insert(self, index: int, version: Version):
        changeset = _new_changeset(version)
        self.changesets.insert(index, changeset)
        self.starts.insert(index, changeset.start_time)

    def add(self, version: Version):
        """Insert version, joining the change set within MAX_DELAY if any."""
        changesets = self.changesets
        if not changesets:
            self._insert(0, version)
            return

        index = bisect_left(self.starts, version.time)
        if index < len(changesets) and self.starts[index] == version.time:
            self._join(index, version)
            return

        if index == len(changesets):
            if version.time <= changesets[-1].finish_time + MAX_DELAY:
                self._join(index - 1, version)
            else:
                self._insert(index, version)
            return
        if index == 0:
            if version.time >= changesets[0].start_time - MAX_DELAY:
                self._join(0, version)
            else:
                self._insert(0, version)
            return

        near_lower = version.time <= changesets[index - 1].finish_time + MAX_DELAY
        near_upper = version.time >= changesets[index].start_time - MAX_DELAY
        if near_lower and not near_upper:
            self._join(index - 1, version)
        elif near_upper and not near_lower:
            self._join(index, version)
        elif not near_lower and not near_upper:
            self._insert(index, version)
        else:
            # the version links both neighbours: they become one change set
            self._join(index - 1, version)
            changesets[index - 1].absorb(changesets[index])
            del changesets[index]
            del self.starts[index]


def _new_changeset(version: Version) -> ChangeSet:
    changeset = ChangeSet(version.author, version.login, version.branch_name, version.time)
    changeset.add(version)
    return changeset


def compute_global_branches(full_names: Iterable[str]) -> Dict[str, Optional[str]]:
    """
    Parent of every branch, from the full names observed on elements.

    The same branch may have spawned from different parents on different
    elements; the deepest candidate wins.
    """
    candidates: Dict[str, Set[str]] = {}
    for full_name in full_names:
        path = full_name.split("\\")
        if len(path) <= 1:
            continue
        candidates.setdefault(path[-1], set()).add(path[-2])

    depths = {name: 0 for name in candidates}
    depths[ROOT_BRANCH] = 1
    rounds = 0
    finished = False
    while not finished:
        finished = True
        rounds += 1
        if rounds > len(candidates) + 2:
            raise BranchParentError(
                "Could not compute branch depths, cyclic parents among " + ", ".join(sorted(candidates))
            )
        for branch in sorted(candidates):
            depth = max(depths.get(p, 0) for p in candidates[branch]) + 1
            if depth > depths[branch]:
                depths[branch] = depth
                finished = False

    result: Dict[str, Optional[str]] = {ROOT_BRANCH: None}
    for branch in sorted(candidates):
        parents = candidates[branch]
        max_depth = max(depths.get(p, 0) for p in parents)
        deepest = sorted(p for p in parents if depths.get(p, 0) == max_depth)
        if len(deepest) != 1:
            raise BranchParentError(
                f"Could not compute parent of branch {branch} among {', '.join(deepest)}"
            )
        result[branch] = deepest[0]
    return result


class RawHistoryBuilder:
    def __init__(self, graph: VersionGraph, diagnostics: Optional[Diagnostics] = None):
        self.graph = graph
        self.diagnostics = diagnostics if diagnostics is not None else Diagnostics()
        self.branch_filter = BranchFilter()
        self.label_filter = LabelFilter()
        self.labels: Dict[str, LabelInfo] = {}
        # branch -> parent branch (None for the root line)
        self.global_branches: Dict[str, Optional[str]] = {}
        # branch -> author login -> change sets sorted by start time
        self.changesets: Dict[str, Dict[str, AuthorChangeSets]] = {}

    def set_branch_filters(self, patterns: Optional[Iterable[str]]):
        self.branch_filter = BranchFilter(patterns)

    def set_label_filters(self, patterns: Optional[Iterable[str]]):
        self.label_filter = LabelFilter(patterns)

    def build(self, new_versions: Optional[List[Version]] = None) -> List[ChangeSet]:
        """
        Create raw change sets for all versions of the graph, or only for
        new_versions in an incremental run. Returns them ordered by start time.
        """
        full_names = self._create_changesets(new_versions)
        self.global_branches = compute_global_branches(full_names)
        self.branch_filter.apply(self.global_branches, self.changesets, self.diagnostics)
        filter_labels(self.labels, self.global_branches, self.diagnostics)
        return self.flatten()

    def flatten(self) -> List[ChangeSet]:
        result = [
            changeset
            for by_author in self.changesets.values()
            for changesets in by_author.values()
            for changeset in changesets
        ]
        result.sort(key=lambda c: c.start_time)
        return result

    def _create_changesets(self, new_versions: Optional[List[Version]]) -> Set[str]:
        self.changesets = {}
        self.labels = {}
        full_names: Set[str] = set()
        if new_versions is not None:
            subset = set(new_versions)
            versions: Iterable[Version] = new_versions
        else:
            subset = None
            versions = self.graph.versions()
        for version in versions:
            full_names.add(self.graph.full_name(version))
            self._process_version(version, subset)
        return full_names

    def _process_version(self, version: Version, subset: Optional[Set[Version]]):
        # versions 0 of branches are the branching point itself
        labeled = version
        while labeled.number == 0:
            point = self.graph.branching_point(labeled)
            if point is None:
                break
            labeled = point
        # labels are only moved onto versions processed in this run
        if subset is None or labeled in subset:
            for label in version.labels:
                if not self.label_filter.should_keep(label):
                    continue
                info = self.labels.get(label)
                if info is None:
                    info = self.labels[label] = LabelInfo(label)
                info.add(labeled)
                if labeled is not version and label not in labeled.labels:
                    labeled.labels.append(label)
        if labeled is not version:
            version.labels.clear()

        if version.number == 0 and (version.is_directory or version.branch_name != ROOT_BRANCH):
            return
        by_author = self.changesets.setdefault(version.branch_name, {})
        by_author.setdefault(version.login, AuthorChangeSets()).add(version)
