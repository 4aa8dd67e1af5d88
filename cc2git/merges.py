"""
Merge reconstruction.

Merge edges are recorded between element versions; they are turned into
merges between change sets once both sides have been sequenced. Only merges
into the direct parent branch are kept.
"""
from __future__ import annotations
from typing import Dict, List, Optional, Set, Tuple

from . import diagnostics as diag
from .changeset import ChangeSet
from .diagnostics import Diagnostics
from .model import Version, VersionGraph, VersionKey


class MergeInfo:
    def __init__(self, from_branch: str, to_branch: str):
        self.from_branch = from_branch
        self.to_branch = to_branch
        # sequenced versions of each side, with their change set
        self.seen_from: Dict[Version, ChangeSet] = {}
        self.seen_to: Dict[Version, ChangeSet] = {}
        # sequenced versions still waiting for their counterpart, by change set
        self.missing_from: Dict[ChangeSet, Set[Version]] = {}
        self.missing_to: Dict[ChangeSet, Set[Version]] = {}
        # target change set -> source change set
        self.links: Dict[ChangeSet, ChangeSet] = {}

    def link(self, source: ChangeSet, target: ChangeSet):
        current = self.links.get(target)
        if current is None or source.id > current.id:
            self.links[target] = source

    def __repr__(self):
        return f"<MergeInfo from {self.from_branch} to {self.to_branch}: {len(self.links)} links>"


def _discard(pending: Dict[ChangeSet, Set[Version]], owner: ChangeSet, version: Version):
    versions = pending.get(owner)
    if versions is None:
        return
    versions.discard(version)
    if not versions:
        del pending[owner]


class MergeResolver:
    def __init__(
        self,
        graph: VersionGraph,
        global_branches: Dict[str, Optional[str]],
        diagnostics: Diagnostics,
    ):
        self.graph = graph
        self.global_branches = global_branches
        self.diagnostics = diagnostics
        self.merges: Dict[Tuple[str, str], MergeInfo] = {}
        # (source, target) -> whether the edge is tracked
        self._tracked: Dict[Tuple[VersionKey, VersionKey], bool] = {}

    def _info(self, from_branch: str, to_branch: str) -> MergeInfo:
        info = self.merges.get((from_branch, to_branch))
        if info is None:
            info = self.merges[(from_branch, to_branch)] = MergeInfo(from_branch, to_branch)
        return info

    def _is_tracked(self, source: Version, target: Version) -> bool:
        key = (source.key, target.key)
        tracked = self._tracked.get(key)
        if tracked is None:
            tracked = self._tracked[key] = self._check_edge(source, target)
        return tracked

    def _check_edge(self, source: Version, target: Version) -> bool:
        if source.branch_name == target.branch_name:
            return False
        if self.global_branches.get(source.branch_name) != target.branch_name:
            self.diagnostics.debug(
                diag.MERGE_IGNORED,
                f"Merge from {source} to {target} is not into the parent branch",
                source=str(source),
                target=str(target),
            )
            return False
        # identical to the branching point
        if source.number == 0:
            return False
        return not self._is_superseded(source, target)

    def _is_superseded(self, source: Version, target: Version) -> bool:
        element = self.graph.element(source.element_oid)
        branch = element.branches.get(source.branch_name) if element else None
        if branch is None:
            return False
        # only the newest source of a target, and the newest target of a source
        for other in branch.versions:
            for oid, branch_name, number in other.merges_to:
                if oid != target.element_oid or branch_name != target.branch_name:
                    continue
                if number == target.number and other.number > source.number:
                    return True
                if other.number == source.number and number > target.number:
                    return True
        return False

    def observe(self, version: Version, changeset: ChangeSet):
        """Record a sequenced version, on whichever side(s) of a merge it is."""
        for key in version.merges_to:
            target = self.graph.version(key)
            if target is None or not self._is_tracked(version, target):
                continue
            info = self._info(version.branch_name, target.branch_name)
            info.seen_from[version] = changeset
            owner = info.seen_to.get(target)
            if owner is None:
                info.missing_from.setdefault(changeset, set()).add(version)
            else:
                _discard(info.missing_to, owner, target)
                info.link(changeset, owner)
        for key in version.merges_from:
            source = self.graph.version(key)
            if source is None or not self._is_tracked(source, version):
                continue
            info = self._info(source.branch_name, version.branch_name)
            info.seen_to[version] = changeset
            owner = info.seen_from.get(source)
            if owner is None:
                info.missing_to.setdefault(changeset, set()).add(version)
            else:
                _discard(info.missing_from, owner, source)
                info.link(owner, changeset)

    def finalize(self, branching_points: Dict[str, Optional[ChangeSet]]) -> List[Tuple[ChangeSet, ChangeSet]]:
        """
        Attach the resolved merges to their target change sets.

        Sources are walked from newest to oldest; each gets the newest target
        not newer than the previously accepted one. Returns the accepted
        (source, target) pairs.
        """
        accepted: List[Tuple[ChangeSet, ChangeSet]] = []
        for pair in sorted(self.merges):
            info = self.merges[pair]
            self._report_incomplete(info)
            point = branching_points.get(info.from_branch)
            point_id = point.id if point is not None else 0

            targets_by_source: Dict[ChangeSet, List[ChangeSet]] = {}
            for target, source in info.links.items():
                targets_by_source.setdefault(source, []).append(target)

            limit = None
            for source in sorted(targets_by_source, key=lambda c: c.id, reverse=True):
                candidates = [t for t in targets_by_source[source] if limit is None or t.id <= limit]
                if not candidates:
                    self.diagnostics.info(
                        diag.MERGE_SKIPPED,
                        f"{_describe(info)}: change set {source.id} has no target left",
                        source=source.id,
                    )
                    continue
                target = max(candidates, key=lambda c: c.id)
                if target.id <= point_id:
                    self.diagnostics.warning(
                        diag.MERGE_IMPOSSIBLE,
                        f"{_describe(info)}: change set {source.id} cannot be merged into {target.id}, "
                        f"at or before the branching point {point_id}",
                        source=source.id,
                        target=target.id,
                        from_branch=info.from_branch,
                        to_branch=info.to_branch,
                    )
                    break
                if source not in target.merges:
                    target.merges.append(source)
                    target.merges.sort(key=lambda c: c.id)
                accepted.append((source, target))
                limit = target.id
        return accepted

    def _report_incomplete(self, info: MergeInfo):
        for side, pending in (("from", info.missing_from), ("to", info.missing_to)):
            versions = sorted(str(v) for versions in pending.values() for v in versions)
            if versions:
                self.diagnostics.warning(
                    diag.MERGE_INCOMPLETE,
                    f"{_describe(info)}: {side} versions never reconciled: {', '.join(versions)}",
                    from_branch=info.from_branch,
                    to_branch=info.to_branch,
                    side=side,
                    versions=versions,
                )


def _describe(info: MergeInfo) -> str:
    return f"Merge from {info.from_branch} to {info.to_branch}"
