"""
Version graph of the legacy repository.

Elements own their branches and branches own their versions; every other
relation (branching points, merge edges, directory content) is a key looked
up in the VersionGraph, so the graph holds no reference cycles.

A version key is (element oid, branch name, version number).
"""
from __future__ import annotations
from typing import Dict, Iterator, List, Optional, Tuple

ROOT_BRANCH = "main"
SYMLINK = "symlink:"

VersionKey = Tuple[str, str, int]


class Version:
    is_directory = False

    def __init__(
        self,
        element_oid: str,
        branch_name: str,
        number: int,
        author: Optional[str] = None,
        login: Optional[str] = None,
        time: int = 0,
        comment: str = "",
    ):
        self.element_oid = element_oid
        self.branch_name = branch_name
        self.number = number
        self.author = author or login or "unknown"
        self.login = login or author or "unknown"
        self.time = time
        self.comment = comment or ""
        self.labels: List[str] = []
        self.merges_from: List[VersionKey] = []
        self.merges_to: List[VersionKey] = []

    @property
    def key(self) -> VersionKey:
        return (self.element_oid, self.branch_name, self.number)

    def __eq__(self, other):
        return isinstance(other, Version) and self.key == other.key

    def __hash__(self):
        return hash(self.key)

    def __str__(self):
        return f"{self.element_oid}@@\\{self.branch_name}\\{self.number}"

    def __repr__(self):
        return f"<Version {self} author={self.login} time={self.time} labels={self.labels}>"


class DirectoryVersion(Version):
    is_directory = True

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        # (child name, child oid), in listing order
        self.content: List[Tuple[str, str]] = []


class Branch:
    def __init__(
        self,
        element_oid: str,
        name: str,
        branching_point: Optional[VersionKey],
        full_name: str,
        is_directory: bool,
    ):
        self.element_oid = element_oid
        self.name = name
        self.branching_point = branching_point
        self.full_name = full_name
        self.is_directory = is_directory
        self.versions: List[Version] = []

    def add_version(
        self,
        number: int,
        author: Optional[str] = None,
        login: Optional[str] = None,
        time: int = 0,
        comment: str = "",
        labels: Optional[List[str]] = None,
    ) -> Version:
        cls = DirectoryVersion if self.is_directory else Version
        version = cls(self.element_oid, self.name, number, author, login, time, comment)
        if labels:
            version.labels.extend(labels)
        self.versions.append(version)
        return version

    def get(self, number: int) -> Optional[Version]:
        for version in self.versions:
            if version.number == number:
                return version
        return None

    def __repr__(self):
        return f"<Branch {self.element_oid}@@\\{self.full_name} versions={len(self.versions)}>"


class Element:
    def __init__(self, oid: str, name: str, is_directory: bool = False):
        self.oid = oid
        self.name = name
        self.is_directory = is_directory
        self.branches: Dict[str, Branch] = {}

    def add_branch(self, name: str, branching_point: Optional[Version] = None) -> Branch:
        if branching_point is None:
            full_name = name
            point = None
        else:
            full_name = self.branches[branching_point.branch_name].full_name + "\\" + name
            point = branching_point.key
        branch = Branch(self.oid, name, point, full_name, self.is_directory)
        self.branches[name] = branch
        return branch

    def get_version(self, branch_name: str, number: int) -> Optional[Version]:
        branch = self.branches.get(branch_name)
        if branch is None:
            return None
        return branch.get(number)

    def __repr__(self):
        return f"<Element {self.name} oid={self.oid} branches={sorted(self.branches)}>"


class SymLinkElement(Element):
    """A symbolic link listed in a directory version; it has no versions."""

    def __init__(self, name: str, target: str):
        super().__init__(SYMLINK + name, name, False)
        self.target = target


class VersionGraph:
    def __init__(self):
        self.elements_by_oid: Dict[str, Element] = {}

    def add_element(self, oid: str, name: Optional[str] = None, is_directory: bool = False) -> Element:
        element = Element(oid, name if name is not None else oid, is_directory)
        self.add(element)
        return element

    def add_symlink(self, name: str, target: str) -> SymLinkElement:
        element = SymLinkElement(name, target)
        self.add(element)
        return element

    def add(self, element: Element):
        existing = self.elements_by_oid.get(element.oid)
        if existing is not None and existing.name != element.name:
            raise ValueError(
                f"Name mismatch for element with oid {element.oid}: {existing.name} != {element.name}"
            )
        if existing is None:
            self.elements_by_oid[element.oid] = element

    def element(self, oid: str) -> Optional[Element]:
        return self.elements_by_oid.get(oid)

    def branch(self, version: Version) -> Optional[Branch]:
        element = self.elements_by_oid.get(version.element_oid)
        if element is None:
            return None
        return element.branches.get(version.branch_name)

    def version(self, key: VersionKey) -> Optional[Version]:
        element = self.elements_by_oid.get(key[0])
        if element is None:
            return None
        return element.get_version(key[1], key[2])

    def versions(self) -> Iterator[Version]:
        for element in self.elements_by_oid.values():
            for branch in element.branches.values():
                yield from branch.versions

    def previous_version(self, version: Version) -> Optional[Version]:
        """Version preceding this one, following the branching point at the start of a branch."""
        branch = self.branch(version)
        if branch is None:
            return None
        for index, candidate in enumerate(branch.versions):
            if candidate.number == version.number:
                if index > 0:
                    return branch.versions[index - 1]
                break
        if branch.branching_point is None:
            return None
        return self.version(branch.branching_point)

    def branching_point(self, version: Version) -> Optional[Version]:
        branch = self.branch(version)
        if branch is None or branch.branching_point is None:
            return None
        return self.version(branch.branching_point)

    def full_name(self, version: Version) -> str:
        branch = self.branch(version)
        return branch.full_name if branch is not None else version.branch_name

    def is_ancestor(self, ancestor: Version, version: Version) -> bool:
        """True when ancestor precedes version in the element's branch lineage."""
        if ancestor.element_oid != version.element_oid or ancestor == version:
            return False
        element = self.elements_by_oid.get(version.element_oid)
        if element is None:
            return False
        branch_name, number = version.branch_name, version.number
        while True:
            if branch_name == ancestor.branch_name:
                return ancestor.number <= number
            branch = element.branches.get(branch_name)
            if branch is None or branch.branching_point is None:
                return False
            _, branch_name, number = branch.branching_point

    def add_merge(self, source: Version, target: Version):
        """Record that source was merged into target."""
        if target.key not in source.merges_to:
            source.merges_to.append(target.key)
        if source.key not in target.merges_from:
            target.merges_from.append(source.key)

    def referenced_oids(self) -> set:
        """Oids of all elements listed in some directory version."""
        referenced = set()
        for version in self.versions():
            if version.is_directory:
                referenced.update(oid for _, oid in version.content)
        return referenced

    def __len__(self):
        return len(self.elements_by_oid)
