"""
Per-branch view of elements: current names and current versions.

A spawned branch starts with its parent's view. Maps are shared between
the two until one side writes, and name sets are frozensets, so a fork
costs nothing and the branches still diverge independently afterwards.
"""
from __future__ import annotations
from typing import Dict, FrozenSet, Generic, Iterator, Optional, Tuple, TypeVar

from .model import Version

V = TypeVar("V")


class SharedMap(Generic[V]):
    def __init__(self, data: Optional[Dict[str, V]] = None):
        self._data: Dict[str, V] = data if data is not None else {}
        self._owned = data is None

    def fork(self) -> "SharedMap[V]":
        # both sides copy before their next write
        self._owned = False
        return SharedMap(self._data)

    def _own(self):
        if not self._owned:
            self._data = dict(self._data)
            self._owned = True

    def get(self, key: str, default: Optional[V] = None) -> Optional[V]:
        return self._data.get(key, default)

    def __getitem__(self, key: str) -> V:
        return self._data[key]

    def __contains__(self, key: str) -> bool:
        return key in self._data

    def __setitem__(self, key: str, value: V):
        self._own()
        self._data[key] = value

    def __delitem__(self, key: str):
        self._own()
        del self._data[key]

    def pop(self, key: str, default: Optional[V] = None) -> Optional[V]:
        if key not in self._data:
            return default
        self._own()
        return self._data.pop(key)

    def items(self) -> Iterator[Tuple[str, V]]:
        return iter(self._data.items())

    def __len__(self):
        return len(self._data)


class BranchState:
    def __init__(self, names: Optional[SharedMap] = None, versions: Optional[SharedMap] = None):
        # element oid -> names under which it is currently visible
        self.names: SharedMap[FrozenSet[str]] = names if names is not None else SharedMap()
        # element oid -> current version
        self.versions: SharedMap[Version] = versions if versions is not None else SharedMap()

    def fork(self) -> "BranchState":
        return BranchState(self.names.fork(), self.versions.fork())

    def add_name(self, oid: str, name: str):
        current = self.names.get(oid, frozenset())
        if name not in current:
            self.names[oid] = current | {name}

    def remove_name(self, oid: str, name: str) -> bool:
        current = self.names.get(oid)
        if not current or name not in current:
            return False
        remaining = current - {name}
        if remaining:
            self.names[oid] = remaining
        else:
            del self.names[oid]
        return True

    def __repr__(self):
        return f"<BranchState names={len(self.names)} versions={len(self.versions)}>"
