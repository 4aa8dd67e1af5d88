from cc2git import diagnostics as diag
from cc2git.diagnostics import Diagnostics
from cc2git.filters import BranchFilter, LabelFilter, filter_labels
from cc2git.labels import LabelInfo
from cc2git.model import Version, VersionGraph
from cc2git.raw_history import RawHistoryBuilder


def branches():
    return {"main": None, "REL1": "main", "REL1_FIX": "REL1", "OTHER": "main"}


def test_empty_branch_filter_keeps_everything():
    parents = branches()
    removed = BranchFilter().apply(parents, {}, Diagnostics())
    assert removed == set()
    assert parents == branches()


def test_parent_of_kept_branch_is_kept():
    parents = branches()
    changesets = {"OTHER": {}, "REL1": {}, "REL1_FIX": {}}
    removed = BranchFilter(["_FIX$"]).apply(parents, changesets, Diagnostics())
    assert removed == {"OTHER"}
    assert parents == {"main": None, "REL1": "main", "REL1_FIX": "REL1"}
    assert sorted(changesets) == ["REL1", "REL1_FIX"]


def test_branches_are_removed_to_a_fixed_point():
    parents = branches()
    diagnostics = Diagnostics()
    removed = BranchFilter(["^nothing$"]).apply(parents, {}, diagnostics)
    assert removed == {"REL1", "REL1_FIX", "OTHER"}
    assert parents == {"main": None}
    assert len(diagnostics.of_kind(diag.BRANCH_FILTERED)) == 3


def test_label_filter():
    assert LabelFilter().should_keep("anything")
    assert not LabelFilter(["NONE"]).should_keep("REL_1")
    selective = LabelFilter(["^REL"])
    assert selective.should_keep("REL_1")
    assert not selective.should_keep("BUILD_42")
    # cached decision
    assert selective.should_keep("REL_1")


def test_labels_on_removed_branches_are_dropped():
    on_main = LabelInfo("ON_MAIN")
    on_main.add(Version("a", "main", 1))
    mixed = LabelInfo("MIXED")
    mixed.add(Version("a", "main", 1))
    mixed.add(Version("b", "OTHER", 2))
    labels = {"ON_MAIN": on_main, "MIXED": mixed}
    diagnostics = Diagnostics()

    filter_labels(labels, {"main": None}, diagnostics)

    assert sorted(labels) == ["ON_MAIN"]
    assert on_main.missing_branches() == {"main"}
    (event,) = diagnostics.of_kind(diag.LABEL_FILTERED)
    assert event.fields["label"] == "MIXED"
    assert event.fields["branches"] == ["OTHER"]


def test_raw_builder_applies_branch_selection():
    graph = VersionGraph()
    element = graph.add_element("a.txt")
    main = element.add_branch("main")
    v0 = main.add_version(0, login="alice", time=0)
    rel = element.add_branch("REL1", v0)
    rel.add_version(0, login="bob", time=0)
    rel.add_version(1, login="bob", time=100, labels=["ON_REL1"])
    other = element.add_branch("OTHER", v0)
    other.add_version(0, login="carol", time=0)
    other.add_version(1, login="carol", time=200)

    builder = RawHistoryBuilder(graph)
    builder.set_branch_filters(["REL"])
    changesets = builder.build()

    assert sorted({c.branch for c in changesets}) == ["REL1", "main"]
    assert "OTHER" not in builder.global_branches
    assert sorted(builder.labels) == ["ON_REL1"]
