"""
Element naming: apply the directory versions of a change set to the view of
its branch, turning content differences into renames, copies, removals and
symlinks, and giving each file version the names it is visible under.
"""
from __future__ import annotations
from typing import Dict, List, Optional, Set, Tuple

from . import diagnostics as diag
from .branch_state import BranchState
from .changeset import ChangeSet, NamedVersion
from .diagnostics import Diagnostics
from .errors import HistoryError
from .model import SymLinkElement, Version, VersionGraph

# element oid -> [(parent directory oid, name in parent)], insertion ordered
Places = Dict[str, List[Tuple[str, str]]]
# element oid -> [(branch, named version)] waiting for a name
Orphans = Dict[str, List[Tuple[str, NamedVersion]]]


def _add_place(places: Places, oid: str, place: Tuple[str, str]):
    places.setdefault(oid, []).append(place)


def _remove_place(places: Places, oid: str, place: Tuple[str, str]) -> bool:
    entries = places.get(oid)
    if not entries or place not in entries:
        return False
    entries.remove(place)
    if not entries:
        del places[oid]
    return True


def root_name(name: str) -> str:
    return name.replace("\\", "/").strip("/")


class ChangeSetBuilder:
    def __init__(
        self,
        changeset: ChangeSet,
        state: BranchState,
        orphans: Orphans,
        roots: Set[str],
        graph: VersionGraph,
        diagnostics: Diagnostics,
    ):
        self.changeset = changeset
        self.state = state
        self.orphans = orphans
        self.roots = roots
        self.graph = graph
        self.diagnostics = diagnostics
        self._old_versions: Dict[str, Optional[Version]] = {}

    def build(self):
        changeset = self.changeset
        # keep the previous versions around to handle removes and renames
        self._old_versions = {}
        for named in changeset.versions:
            oid = named.version.element_oid
            if oid not in self._old_versions:
                self._old_versions[oid] = self.state.versions.get(oid)
            self.state.versions[oid] = named.version

        self._process_directory_changes()

        for named in list(changeset.versions):
            # entries added while naming already went through _add_element
            if named.names or not named.is_raw or named.version.is_directory:
                continue
            oid = named.version.element_oid
            names = self.state.names.get(oid) or self._name_root(oid)
            if not names:
                self.diagnostics.debug(
                    diag.VERSION_ORPHANED,
                    f"Version {named.version} was not yet visible in an existing directory version",
                    version=str(named.version),
                    branch=changeset.branch,
                )
                self.orphans.setdefault(oid, []).append((changeset.branch, named))
                continue
            for name in sorted(names):
                named.add_name(name)

    def _name_root(self, oid: str) -> Optional[frozenset]:
        element = self.graph.element(oid)
        if element is None or element.name not in self.roots:
            return None
        self.state.add_name(oid, root_name(element.name))
        return self.state.names.get(oid)

    def _is_directory(self, oid: str) -> bool:
        element = self.graph.element(oid)
        return element is not None and element.is_directory

    def _process_directory_changes(self):
        changeset = self.changeset
        # roots first: changes to a directory impact everything below it
        unordered = [n.version for n in changeset.versions if n.version.is_directory]
        ordered: List[Version] = []
        while unordered:
            children = {oid for v in unordered for _, oid in v.content}
            top = [v for v in unordered if v.element_oid not in children]
            if not top:
                raise HistoryError(f"Circular references in directory versions of {changeset}")
            unordered = [v for v in unordered if v not in top]
            ordered.extend(top)

        removed: Places = {}
        added: Places = {}
        for version in ordered:
            if version.number != 0:
                self._diff_with_previous(version, removed, added)

        renamed = self._process_remove(removed, added)

        for version in ordered:
            # only the newest version of a directory gives the names
            if any(v.element_oid == version.element_oid and v.number > version.number for v in ordered):
                continue
            names = self.state.names.get(version.element_oid) or self._name_root(version.element_oid)
            if not names:
                # removed by one of the changes
                continue
            for base in sorted(names):
                self._update_child_names(version, base + "/")

        self._process_rename(renamed, added)

        for oid, places in added.items():
            for parent_oid, name in places:
                parent_names = self.state.names.get(parent_oid)
                bases = [n + "/" for n in sorted(parent_names)] if parent_names else [None]
                for base in bases:
                    self._add_element(oid, base, name)

    def _update_child_names(self, version: Version, base: str):
        for name, child in version.content:
            self.state.add_name(child, base + name)
            if self._is_directory(child):
                child_version = self.state.versions.get(child)
                if child_version is not None:
                    self._update_child_names(child_version, base + name + "/")

    def _diff_with_previous(self, version: Version, removed: Places, added: Places):
        # version 0 of a directory never is in a change set, but is still
        # the previous version of version 1
        previous = self.graph.previous_version(version)
        previous_content = previous.content if previous is not None else []
        current = set(version.content)
        before = set(previous_content)
        for name, child in previous_content:
            if (name, child) in current:
                continue
            place = (version.element_oid, name)
            if not _remove_place(added, child, place):
                _add_place(removed, child, place)
        for name, child in version.content:
            if (name, child) not in before:
                _add_place(added, child, (version.element_oid, name))

    def _process_remove(self, removed: Places, added: Places) -> List[Tuple[str, str]]:
        """
        Handle plain removes, and return the resolved old names of the
        elements that are renamed.
        """
        changeset = self.changeset
        renamed: List[Tuple[str, str]] = []
        # names of removed directories, to remove their children later
        removed_names: Dict[str, Set[str]] = {}
        for oid, places in removed.items():
            element = self.graph.element(oid)
            is_symlink = isinstance(element, SymLinkElement)
            if not is_symlink and oid not in self.state.versions:
                self.diagnostics.info(
                    diag.ELEMENT_REMOVED_EARLY,
                    f"Element {element.name if element else oid} was removed (or renamed) "
                    "before any actual version was committed",
                    element=oid,
                    branch=changeset.branch,
                )
                continue
            # a symlink moved elsewhere is simply recreated
            is_renamed = oid in added and not is_symlink
            for parent_oid, name in list(places):
                parent_names = self.state.names.get(parent_oid) or removed_names.get(parent_oid)
                if not parent_names:
                    continue
                for parent_name in sorted(parent_names):
                    element_name = parent_name + "/" + name
                    # git does not know about empty directories
                    if not self._was_empty_directory(oid):
                        if is_renamed:
                            renamed.append((oid, element_name))
                            is_renamed = False
                        elif not any(element_name.startswith(r + "/") for r in changeset.removed):
                            changeset.removed.append(element_name)
                    self._remove_element_name(oid, element_name, removed_names)
        return renamed

    def _was_empty_directory(self, oid: str) -> bool:
        if not self._is_directory(oid):
            return False
        # look at the version before this change set, if any
        if oid in self._old_versions:
            version = self._old_versions[oid]
        else:
            version = self.state.versions.get(oid)
        if version is None:
            return True
        return all(self._was_empty_directory(child) for _, child in version.content)

    def _process_rename(self, renamed: List[Tuple[str, str]], added: Places):
        changeset = self.changeset
        ordered = [r for r in renamed if self._is_directory(r[0])]
        ordered += [r for r in renamed if not self._is_directory(r[0])]
        for oid, old_name in ordered:
            # a rename without a new version keeps the old name until now
            self.state.remove_name(oid, old_name)
            for source, target in changeset.renamed:
                if old_name.startswith(source + "/"):
                    old_name = target + "/" + old_name[len(source) + 1:]

            renamed_to = None
            for parent_oid, name in added.pop(oid, []):
                parent_names = self.state.names.get(parent_oid)
                if not parent_names or self._was_empty_directory(oid):
                    # destination not visible yet: another orphan, hopefully temporary
                    continue
                for parent_name in sorted(parent_names):
                    new_name = parent_name + "/" + name
                    if renamed_to is None:
                        renamed_to = new_name
                        changeset.renamed.append((old_name, renamed_to))
                        # the rename already replaced whatever had this name
                        if renamed_to in changeset.removed:
                            changeset.removed.remove(renamed_to)
                    else:
                        changeset.copied.append((renamed_to, new_name))

    def _add_element(self, oid: str, base: Optional[str], name: str):
        element = self.graph.element(oid)
        if element is None:
            return
        full_name = None if base is None else base + name
        if isinstance(element, SymLinkElement):
            if full_name is not None:
                self.changeset.symlinks.append((full_name, element.target))
            return

        current = self.state.versions.get(oid)
        if current is None:
            # assumed to be an empty version 0
            return
        if element.is_directory:
            for child_name, child in current.content:
                self._add_element(child, None if full_name is None else full_name + "/", child_name)
            return

        added = None
        existing = self.changeset.find(oid)
        if existing is not None:
            if existing.version != current:
                raise HistoryError(
                    f"Mismatch of versions of file element {element.name} in {self.changeset}: "
                    f"{existing.version} != {current}"
                )
            if full_name is not None and existing.add_name(full_name) and len(existing.names) > 1:
                self.diagnostics.info(
                    diag.VERSION_NAMES,
                    f"Version {existing.version} has several names: {', '.join(existing.names)}",
                    version=str(existing.version),
                    names=list(existing.names),
                )
        else:
            added = self.changeset.add(current, full_name, is_raw=False)

        if full_name is None:
            if added is not None:
                self.orphans.setdefault(oid, []).append((self.changeset.branch, added))
            return

        # a name at last: maybe some orphans can be patched
        pending = self.orphans.get(oid)
        if not pending:
            return
        remaining = []
        for branch, named in pending:
            if branch == self.changeset.branch and named.version == current:
                named.add_name(full_name)
            else:
                remaining.append((branch, named))
        if remaining:
            self.orphans[oid] = remaining
        else:
            del self.orphans[oid]

    def _remove_element_name(self, oid: str, name: str, removed_names: Dict[str, Set[str]]):
        self.state.remove_name(oid, name)
        if not self._is_directory(oid):
            return
        removed_names.setdefault(oid, set()).add(name)
        if oid in self._old_versions:
            version = self._old_versions[oid]
        else:
            version = self.state.versions.get(oid)
        if version is None:
            return
        for child_name, child in version.content:
            self._remove_element_name(child, name + "/" + child_name, removed_names)
