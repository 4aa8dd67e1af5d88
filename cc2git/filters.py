"""
Branch and label selection.

A branch can only be dropped once no kept branch spawns from it, and a
label touching a dropped branch is dropped as a whole.
"""
from __future__ import annotations
import re
from typing import Dict, Iterable, List, Optional, Set

from . import diagnostics as diag
from .diagnostics import Diagnostics
from .labels import LabelInfo
from .model import ROOT_BRANCH


def _compile(patterns: Optional[Iterable[str]]) -> List["re.Pattern"]:
    return [re.compile(p) for p in (patterns or []) if p and p.strip()]


class BranchFilter:
    def __init__(self, patterns: Optional[Iterable[str]] = None):
        self.patterns = _compile(patterns)

    def keeps(self, branch: str) -> bool:
        if branch == ROOT_BRANCH or not self.patterns:
            return True
        return any(p.search(branch) for p in self.patterns)

    def apply(
        self,
        global_branches: Dict[str, Optional[str]],
        changesets: Dict[str, object],
        diagnostics: Diagnostics,
    ) -> Set[str]:
        """
        Remove unselected branches from global_branches and changesets, in
        place, leaves first. Returns the removed branch names.
        """
        candidates = sorted(b for b in global_branches if not self.keeps(b))
        removed: Set[str] = set()
        finished = False
        while not finished:
            finished = True
            for branch in candidates:
                if branch in removed:
                    continue
                if branch in global_branches.values():
                    # still the parent of a kept (or not yet removed) branch
                    continue
                diagnostics.info(diag.BRANCH_FILTERED, f"Branch {branch} filtered out", branch=branch)
                del global_branches[branch]
                changesets.pop(branch, None)
                removed.add(branch)
                finished = False
        return removed


class LabelFilter:
    """Label allow-list; the single pattern NONE keeps no label at all."""

    def __init__(self, patterns: Optional[Iterable[str]] = None):
        patterns = [p for p in (patterns or []) if p and p.strip()]
        self.keep_none = any(p.upper() == "NONE" for p in patterns)
        self.patterns = _compile(p for p in patterns if p.upper() != "NONE")
        self._decisions: Dict[str, bool] = {}

    def should_keep(self, label: str) -> bool:
        decision = self._decisions.get(label)
        if decision is None:
            if self.keep_none:
                decision = False
            elif not self.patterns:
                decision = True
            else:
                decision = any(p.search(label) for p in self.patterns)
            self._decisions[label] = decision
        return decision


def filter_labels(
    labels: Dict[str, LabelInfo],
    global_branches: Dict[str, Optional[str]],
    diagnostics: Diagnostics,
):
    """Drop labels on removed branches, then reset the others for sequencing."""
    for name in sorted(labels):
        info = labels[name]
        dropped = sorted({v.branch_name for v in info.versions if v.branch_name not in global_branches})
        if dropped:
            diagnostics.info(
                diag.LABEL_FILTERED,
                f"Label {name} filtered: was on filtered out branch {', '.join(dropped)}",
                label=name,
                branches=dropped,
            )
            del labels[name]
    for info in labels.values():
        info.reset()
