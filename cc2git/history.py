"""
History sequencing: turn raw change sets into the final, numbered sequence.

Raw change sets are taken in start time order. Before one is applied, the
labels it touches are checked: if applying it now would leave a label with a
version the label does not expect, the change sets carrying the missing
versions are pulled in first (within LABEL_SEARCH_WINDOW), or the label is
abandoned. Applying a change set starts its branch if needed, names its
versions and does the label and merge bookkeeping.
"""
from __future__ import annotations
from collections import deque
from typing import Deque, Dict, Iterable, List, Optional, Set, Tuple

from . import diagnostics as diag
from .branch_state import BranchState
from .changeset import ChangeSet
from .diagnostics import Diagnostics
from .errors import LinearizationError, MissingLabelVersionsError
from .labels import LabelInfo
from .merges import MergeResolver
from .model import Version, VersionGraph
from .naming import ChangeSetBuilder, Orphans
from .raw_history import RawHistoryBuilder

# how far after a change set the versions completing a label are searched
LABEL_SEARCH_WINDOW = 4 * 3600


class HistorySnapshot:
    """State needed to sequence new versions after an earlier run."""

    def __init__(
        self,
        next_id: int = 1,
        tips: Optional[Dict[str, ChangeSet]] = None,
        states: Optional[Dict[str, BranchState]] = None,
        branching_points: Optional[Dict[str, Optional[ChangeSet]]] = None,
        orphans: Optional[Orphans] = None,
    ):
        self.next_id = next_id
        self.tips = tips or {}
        self.states = states or {}
        self.branching_points = branching_points or {}
        self.orphans = orphans or {}

    def __repr__(self):
        return f"<HistorySnapshot next_id={self.next_id} branches={sorted(self.tips)}>"


class HistoryBuilder:
    def __init__(
        self,
        graph: VersionGraph,
        diagnostics: Optional[Diagnostics] = None,
        snapshot: Optional[HistorySnapshot] = None,
    ):
        self.graph = graph
        self.diagnostics = diagnostics if diagnostics is not None else Diagnostics()
        self.branch_patterns: Optional[List[str]] = None
        self.label_patterns: Optional[List[str]] = None
        self.roots: Optional[Set[str]] = None

        snapshot = snapshot or HistorySnapshot()
        self.next_id = snapshot.next_id
        self.tips: Dict[str, ChangeSet] = dict(snapshot.tips)
        self.branching_points: Dict[str, Optional[ChangeSet]] = dict(snapshot.branching_points)
        # branches present here are started
        self.states: Dict[str, BranchState] = {b: s.fork() for b, s in snapshot.states.items()}
        self.orphans: Orphans = {oid: list(entries) for oid, entries in snapshot.orphans.items()}

        self.global_branches: Dict[str, Optional[str]] = {}
        self.children: Dict[str, List[str]] = {}
        self.labels: Dict[str, LabelInfo] = {}
        self.labels_by_element: Dict[str, Set[str]] = {}
        self.completed_labels: Dict[str, Tuple[LabelInfo, ChangeSet]] = {}
        self.merges: Optional[MergeResolver] = None
        self.sequence: List[ChangeSet] = []

        self._pending: List[Optional[ChangeSet]] = []
        self._worklist: Deque[int] = deque()
        self._fill = 0
        self._attempted: Set[str] = set()
        self._active_roots: Set[str] = set()

    def set_branch_filters(self, patterns: Optional[Iterable[str]]):
        self.branch_patterns = list(patterns) if patterns else None

    def set_label_filters(self, patterns: Optional[Iterable[str]]):
        self.label_patterns = list(patterns) if patterns else None

    def set_roots(self, roots: Optional[Iterable[str]]):
        self.roots = set(roots) if roots else None

    def build(self, new_versions: Optional[List[Version]] = None) -> List[ChangeSet]:
        raw = RawHistoryBuilder(self.graph, self.diagnostics)
        raw.set_branch_filters(self.branch_patterns)
        raw.set_label_filters(self.label_patterns)
        pending = raw.build(new_versions)

        self.global_branches = raw.global_branches
        self.children = {}
        for branch, parent in sorted(self.global_branches.items()):
            if parent is not None:
                self.children.setdefault(parent, []).append(branch)
        self.labels = raw.labels
        self.labels_by_element = {}
        for name, info in self.labels.items():
            for oid in info.by_element:
                self.labels_by_element.setdefault(oid, set()).add(name)
        self._active_roots = self.roots if self.roots is not None else self._detect_roots()
        self.merges = MergeResolver(self.graph, self.global_branches, self.diagnostics)
        self.sequence = []

        self._sequence(pending)
        self._report_lost_versions()
        self.merges.finalize(self.branching_points)
        self._report_incomplete_labels()
        self.sequence = self._linearize()
        return self.sequence

    def snapshot(self) -> HistorySnapshot:
        return HistorySnapshot(self.next_id, self.tips, self.states, self.branching_points, self.orphans)

    def _detect_roots(self) -> Set[str]:
        referenced = self.graph.referenced_oids()
        return {
            element.name
            for oid, element in self.graph.elements_by_oid.items()
            if oid not in referenced and element.branches
        }

    # main loop

    def _sequence(self, pending: List[ChangeSet]):
        self._pending = list(pending)
        self._worklist = deque()
        self._fill = 0
        self._attempted = set()
        while True:
            if self._worklist:
                index = self._worklist.popleft()
            else:
                while self._fill < len(self._pending) and self._pending[self._fill] is None:
                    self._fill += 1
                if self._fill == len(self._pending):
                    break
                index = self._fill
            changeset = self._pending[index]
            if changeset is None:
                continue

            broken = self._breaking_label(changeset)
            if broken is not None:
                name, wanted = broken
                if name in self._attempted:
                    self._abandon(name, f"still broken by {changeset}")
                    self._worklist.appendleft(index)
                    continue
                pulled = self._pull_for_label(index, changeset, name, wanted)
                if pulled is not None:
                    self._worklist.extendleft(reversed(pulled + [index]))
                else:
                    self._worklist.appendleft(index)
                continue

            self._pending[index] = None
            self._apply(changeset)

    def _ancestors(self, branch: str) -> List[str]:
        result = [branch]
        parent = self.global_branches.get(branch)
        while parent is not None and parent not in result:
            result.append(parent)
            parent = self.global_branches.get(parent)
        return result

    def _watched(self, branch: str) -> Set[str]:
        # the branch itself and the branches that will spawn from its current state
        watched = {branch}
        stack = [branch]
        while stack:
            for child in self.children.get(stack.pop(), []):
                if child not in self.states and child not in watched:
                    watched.add(child)
                    stack.append(child)
        return watched

    def _breaking_label(self, changeset: ChangeSet) -> Optional[Tuple[str, Set[Version]]]:
        """
        First label that applying changeset now would leave inconsistent,
        with the versions to sequence before it.
        """
        branch = changeset.branch
        started = branch in self.states
        ancestors = self._ancestors(branch)
        parents = set(ancestors[1:])
        watched = self._watched(branch)
        versions = list(changeset.all_versions())

        names: Set[str] = set()
        for version in versions:
            names.update(self.labels_by_element.get(version.element_oid, ()))
        if not started:
            names.update(n for n, info in self.labels.items() if info.missing_branches() & watched)

        for name in sorted(names):
            info = self.labels.get(name)
            if info is None:
                continue
            missing = info.missing_branches()
            if not missing & watched:
                continue
            if not started and missing & parents:
                # the branch would spawn before the label is complete on its parents
                return name, {v for v in info.missing_versions() if v.branch_name in parents}
            for version in versions:
                labeled = info.by_element.get(version.element_oid)
                if labeled is None or labeled.branch_name not in ancestors or version == labeled:
                    continue
                if (
                    info.is_missing(labeled)
                    and labeled.branch_name == version.branch_name
                    and labeled.number > version.number
                ):
                    continue
                return name, {v for v in info.missing_versions() if v.branch_name in watched}
        return None

    def _pull_for_label(
        self, index: int, changeset: ChangeSet, name: str, wanted: Set[Version]
    ) -> Optional[List[int]]:
        """
        Indices of the pending change sets to apply before changeset for the
        label to complete, or None when the label was abandoned.
        """
        self._attempted.add(name)
        wanted = wanted - set(changeset.all_versions())
        if not wanted:
            self._abandon(name, f"{changeset} conflicts with versions it carries itself")
            return None

        # index -> time of the latest wanted version it carries
        located: Dict[int, int] = {}
        remaining = set(wanted)
        for j in range(self._fill, len(self._pending)):
            candidate = self._pending[j]
            if candidate is None or j == index:
                continue
            found = remaining.intersection(candidate.all_versions())
            if found:
                located[j] = max(v.time for v in found)
                remaining -= found
                if not remaining:
                    break
        if remaining:
            raise MissingLabelVersionsError(
                f"Label {name}: versions {', '.join(sorted(str(v) for v in remaining))} "
                "not found in the remaining change sets"
            )

        limit = changeset.finish_time + LABEL_SEARCH_WINDOW
        late = [j for j, latest in located.items() if latest > limit]
        if late:
            self._abandon(name, f"missing versions are too far after {changeset}")
            return None

        needed: Set[int] = set()
        stack = sorted(located)
        while stack:
            j = stack.pop()
            if j in needed:
                continue
            if j in self._worklist:
                self._abandon(name, f"{self._pending[j]} is already scheduled after {changeset}")
                return None
            needed.add(j)
            for k in self._dependencies(j):
                if k == index:
                    self._abandon(name, f"{self._pending[j]} depends on {self._pending[k]}")
                    return None
                stack.append(k)
        return sorted(needed)

    def _dependencies(self, j: int) -> List[int]:
        """Pending change sets that must stay before the one at index j."""
        target = self._pending[j]
        versions = list(target.all_versions())
        needs_start = target.branch not in self.states
        result = []
        for k in range(self._fill, j):
            candidate = self._pending[k]
            if candidate is None:
                continue
            if needs_start and candidate.branch == target.branch:
                # the very first change set starts the branch
                result.append(k)
                needs_start = False
                continue
            if any(self.graph.is_ancestor(a, v) for a in candidate.all_versions() for v in versions):
                result.append(k)
        return result

    def _abandon(self, name: str, reason: str):
        self.labels.pop(name, None)
        self.diagnostics.warning(diag.LABEL_ABANDONED, f"Label {name} abandoned: {reason}", label=name)

    # applying change sets

    def _apply(self, changeset: ChangeSet):
        if changeset.branch not in self.states:
            self._start_branch(changeset)
        self._register(changeset)
        state = self.states[changeset.branch]

        ChangeSetBuilder(changeset, state, self.orphans, self._active_roots, self.graph, self.diagnostics).build()

        for version in changeset.raw_versions():
            for name in version.labels:
                info = self.labels.get(name)
                if info is None or not info.mark_sequenced(version) or not info.is_complete:
                    continue
                del self.labels[name]
                if self._check_label(info, state):
                    changeset.labels.append(name)
                    self.completed_labels[name] = (info, changeset)
            self.merges.observe(version, changeset)

    def _start_branch(self, changeset: ChangeSet):
        branch = changeset.branch
        parent = self.global_branches.get(branch)
        if parent is None:
            self.states[branch] = BranchState()
            self.branching_points[branch] = None
            return
        if parent not in self.states:
            placeholder = ChangeSet(changeset.author_name, changeset.author_login, parent, changeset.start_time)
            self._start_branch(placeholder)
            self._register(placeholder)
            self.diagnostics.info(
                diag.BRANCH_PLACEHOLDER,
                f"Branch {parent} started by an empty change set {placeholder.id} to spawn {branch}",
                branch=parent,
                child=branch,
                changeset=placeholder.id,
            )
        tip = self.tips[parent]
        changeset.branching_point = tip
        tip.is_branching_point = True
        self.states[branch] = self.states[parent].fork()
        self.branching_points[branch] = tip

    def _register(self, changeset: ChangeSet):
        changeset.id = self.next_id
        self.next_id += 1
        self.sequence.append(changeset)
        self.tips[changeset.branch] = changeset

    def _check_label(self, info: LabelInfo, state: BranchState) -> bool:
        ok = True
        for version in info.versions:
            current = state.versions.get(version.element_oid)
            if current is None and version.number == 0:
                continue
            if current != version:
                ok = False
                self.diagnostics.debug(
                    diag.LABEL_INCONSISTENT,
                    f"Label {info.name} should be on {version}, "
                    + ("but element has no current version" if current is None else f"not on {current}"),
                    label=info.name,
                    version=str(version),
                )
        if not ok:
            self.diagnostics.warning(
                diag.LABEL_INCONSISTENT, f"Label {info.name} was inconsistent: not applied", label=info.name
            )
        return ok

    # final passes

    def _report_lost_versions(self):
        lost: Set[Version] = set()
        for entries in self.orphans.values():
            for branch, named in entries:
                lost.add(named.version)
                self.diagnostics.warning(
                    diag.VERSION_LOST,
                    f"Version {named.version} has not been visible in any imported directory version",
                    version=str(named.version),
                    branch=branch,
                )
        for name in sorted(self.completed_labels):
            info, owner = self.completed_labels[name]
            lost_versions = sorted(str(v) for v in info.versions if v in lost)
            if lost_versions and name in owner.labels:
                owner.labels.remove(name)
                self.diagnostics.warning(
                    diag.LABEL_LOST_VERSION,
                    f"Label {name} not applied: lost version {', '.join(lost_versions)}",
                    label=name,
                    versions=lost_versions,
                )

    def _report_incomplete_labels(self):
        for name in sorted(self.labels):
            info = self.labels[name]
            if info.is_complete:
                continue
            missing = sorted(str(v) for v in info.missing_versions())
            self.diagnostics.warning(
                diag.LABEL_INCOMPLETE,
                f"Label {name} never completed, missing {', '.join(missing)}",
                label=name,
                versions=missing,
            )

    def _linearize(self) -> List[ChangeSet]:
        """
        Order change sets so that each comes after its branch predecessor,
        its branching point and the change sets merged into it, then number
        them again in that order.
        """
        if not self.sequence:
            return []
        first_id = self.sequence[0].id
        in_sequence = set(self.sequence)
        previous: Dict[ChangeSet, Optional[ChangeSet]] = {}
        last: Dict[str, ChangeSet] = {}
        for changeset in self.sequence:
            previous[changeset] = last.get(changeset.branch)
            last[changeset.branch] = changeset

        def dependencies(changeset: ChangeSet) -> List[ChangeSet]:
            result = [previous[changeset], changeset.branching_point] + changeset.merges
            return [c for c in result if c is not None and c in in_sequence]

        ordered: List[ChangeSet] = []
        done: Set[ChangeSet] = set()
        in_progress: Set[ChangeSet] = set()
        for root in self.sequence:
            if root in done:
                continue
            in_progress.add(root)
            stack = [(root, iter(dependencies(root)))]
            while stack:
                changeset, pending = stack[-1]
                for dependency in pending:
                    if dependency in done:
                        continue
                    if dependency in in_progress:
                        raise LinearizationError(
                            f"Change sets {changeset.id} and {dependency.id} depend on each other"
                        )
                    in_progress.add(dependency)
                    stack.append((dependency, iter(dependencies(dependency))))
                    break
                else:
                    stack.pop()
                    in_progress.discard(changeset)
                    done.add(changeset)
                    ordered.append(changeset)

        if len(ordered) != len(self.sequence):
            raise LinearizationError(f"Linearized {len(ordered)} change sets out of {len(self.sequence)}")
        for offset, changeset in enumerate(ordered):
            changeset.id = first_id + offset
        for changeset in ordered:
            for dependency in dependencies(changeset):
                if dependency.id >= changeset.id:
                    raise LinearizationError(
                        f"Change set {changeset.id} comes before its dependency {dependency.id}"
                    )
        return ordered
