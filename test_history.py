import pytest

from cc2git import diagnostics as diag
from cc2git.changeset import ChangeSet
from cc2git.diagnostics import Diagnostics
from cc2git.errors import MissingLabelVersionsError
from cc2git.history import LABEL_SEARCH_WINDOW, HistoryBuilder, HistorySnapshot
from cc2git.model import Version, VersionGraph


def label_graph(main_label_time):
    """
    a.txt and b.txt on main; b.txt branches to REL1 and label L is put on
    b.txt on REL1 before being put on the next version of a.txt on main.
    """
    graph = VersionGraph()
    a = graph.add_element("a.txt")
    b = graph.add_element("b.txt")
    a_main = a.add_branch("main")
    b_main = b.add_branch("main")
    a_main.add_version(0, login="alice", time=0)
    b_main.add_version(0, login="alice", time=0)
    a_main.add_version(1, login="alice", time=1000)
    b1 = b_main.add_version(1, login="alice", time=1000)
    b_rel = b.add_branch("REL1", b1)
    b_rel.add_version(0, login="bob", time=1000)
    b_rel.add_version(1, login="bob", time=5000, labels=["L"])
    a_main.add_version(2, login="alice", time=main_label_time, labels=["L"])
    return graph


def test_changesets_are_reordered_to_complete_a_label():
    diagnostics = Diagnostics()
    sequence = HistoryBuilder(label_graph(5600), diagnostics).build()

    assert [c.id for c in sequence] == [1, 2, 3, 4]
    assert [(c.branch, c.start_time) for c in sequence] == [
        ("main", 0),
        ("main", 1000),
        ("main", 5600),
        ("REL1", 5000),
    ]
    rel = sequence[3]
    assert rel.labels == ["L"]
    assert rel.branching_point is sequence[2]
    assert sequence[2].is_branching_point
    assert diagnostics.of_kind(diag.LABEL_ABANDONED) == []
    assert diagnostics.of_kind(diag.LABEL_INCONSISTENT) == []


def test_label_is_abandoned_beyond_the_search_window():
    diagnostics = Diagnostics()
    late = 5000 + LABEL_SEARCH_WINDOW + 100
    sequence = HistoryBuilder(label_graph(late), diagnostics).build()

    assert [(c.branch, c.start_time) for c in sequence] == [
        ("main", 0),
        ("main", 1000),
        ("REL1", 5000),
        ("main", late),
    ]
    assert all(c.labels == [] for c in sequence)
    (event,) = diagnostics.of_kind(diag.LABEL_ABANDONED)
    assert event.fields["label"] == "L"
    assert event.level == "warning"


def test_label_on_sibling_branches_is_inconsistent():
    graph = VersionGraph()
    a = graph.add_element("a.txt")
    b = graph.add_element("b.txt")
    a0 = a.add_branch("main").add_version(0, login="alice", time=0)
    b0 = b.add_branch("main").add_version(0, login="alice", time=0)
    a_rel = a.add_branch("REL1", a0)
    a_rel.add_version(0, login="bob", time=0)
    a_rel.add_version(1, login="bob", time=1000, labels=["L"])
    b_rel = b.add_branch("REL2", b0)
    b_rel.add_version(0, login="carol", time=0)
    b_rel.add_version(1, login="carol", time=2000, labels=["L"])

    diagnostics = Diagnostics()
    sequence = HistoryBuilder(graph, diagnostics).build()

    assert [c.branch for c in sequence] == ["main", "REL1", "REL2"]
    assert all(c.labels == [] for c in sequence)
    warnings = [e for e in diagnostics.of_kind(diag.LABEL_INCONSISTENT) if e.level == "warning"]
    assert len(warnings) == 1
    assert warnings[0].fields["label"] == "L"
    assert diagnostics.of_kind(diag.LABEL_INCOMPLETE) == []


def test_label_on_one_branch_completes_with_its_last_version():
    graph = VersionGraph()
    a = graph.add_element("a.txt").add_branch("main")
    b = graph.add_element("b.txt").add_branch("main")
    a.add_version(0, login="alice", time=0, labels=["BASE"])
    b.add_version(0, login="alice", time=0)
    b.add_version(1, login="alice", time=100, labels=["BASE"])

    sequence = HistoryBuilder(graph).build()
    assert [c.labels for c in sequence] == [[], ["BASE"]]


def test_unstarted_parent_branches_get_placeholders():
    graph = VersionGraph()
    a = graph.add_element("a.txt")
    main = a.add_branch("main")
    main.add_version(0, login="alice", time=0)
    v1 = main.add_version(1, login="alice", time=100)
    rel = a.add_branch("REL1", v1)
    rel0 = rel.add_version(0, login="bob", time=100)
    fix = a.add_branch("REL1_FIX", rel0)
    fix.add_version(0, login="carol", time=100)
    fix.add_version(1, login="carol", time=500, comment="fix")

    diagnostics = Diagnostics()
    sequence = HistoryBuilder(graph, diagnostics).build()

    assert [(c.id, c.branch) for c in sequence] == [(1, "main"), (2, "main"), (3, "REL1"), (4, "REL1_FIX")]
    placeholder, fixed = sequence[2], sequence[3]
    assert placeholder.branching_point is sequence[1]
    assert placeholder.is_branching_point
    assert not placeholder.is_empty
    assert placeholder.summary() == "Start branch REL1"
    assert fixed.branching_point is placeholder
    assert [n.names for n in fixed.file_versions()] == [["a.txt"]]
    (event,) = diagnostics.of_kind(diag.BRANCH_PLACEHOLDER)
    assert event.fields == {"branch": "REL1", "child": "REL1_FIX", "changeset": 3}

    # every branch is started before any of its change sets
    seen = set()
    for changeset in sequence:
        if changeset.branch != "main":
            assert changeset.branch in seen or changeset.branching_point.id < changeset.id
        seen.add(changeset.branch)


def merge_graph(rel_times, merged_number):
    """a.txt: main 0 at 0, REL1 versions at rel_times, main 1 at 200 merged from REL1."""
    graph = VersionGraph()
    a = graph.add_element("a.txt")
    main = a.add_branch("main")
    v0 = main.add_version(0, login="alice", time=0)
    rel = a.add_branch("REL1", v0)
    rel.add_version(0, login="bob", time=0)
    rel_versions = [rel.add_version(n, login="bob", time=t) for n, t in enumerate(rel_times, 1)]
    m1 = main.add_version(1, login="alice", time=200)
    graph.add_merge(rel_versions[merged_number - 1], m1)
    return graph


def test_merge_into_parent_branch():
    sequence = HistoryBuilder(merge_graph([100], 1)).build()

    assert [(c.branch, c.start_time) for c in sequence] == [("main", 0), ("REL1", 100), ("main", 200)]
    assert sequence[2].merges == [sequence[1]]


def test_merge_source_sequenced_later_is_pulled_before_its_target():
    sequence = HistoryBuilder(merge_graph([100, 300], 2)).build()

    assert [(c.id, c.branch, c.start_time) for c in sequence] == [
        (1, "main", 0),
        (2, "REL1", 100),
        (3, "REL1", 300),
        (4, "main", 200),
    ]
    assert sequence[3].merges == [sequence[2]]


def test_merge_at_the_branching_point_is_impossible():
    graph = VersionGraph()
    a = graph.add_element("a.txt")
    main = a.add_branch("main")
    main.add_version(0, login="alice", time=0)
    m1 = main.add_version(1, login="alice", time=100)
    rel = a.add_branch("REL1", m1)
    rel.add_version(0, login="bob", time=100)
    r1 = rel.add_version(1, login="bob", time=200)
    graph.add_merge(r1, m1)

    diagnostics = Diagnostics()
    sequence = HistoryBuilder(graph, diagnostics).build()

    assert all(c.merges == [] for c in sequence)
    (event,) = diagnostics.of_kind(diag.MERGE_IMPOSSIBLE)
    assert event.fields["from_branch"] == "REL1"
    assert event.fields["to_branch"] == "main"


def test_merge_between_sibling_branches_is_ignored():
    graph = VersionGraph()
    a = graph.add_element("a.txt")
    v0 = a.add_branch("main").add_version(0, login="alice", time=0)
    rel1 = a.add_branch("REL1", v0)
    rel1.add_version(0, login="bob", time=0)
    source = rel1.add_version(1, login="bob", time=100)
    rel2 = a.add_branch("REL2", v0)
    rel2.add_version(0, login="carol", time=0)
    target = rel2.add_version(1, login="carol", time=200)
    graph.add_merge(source, target)

    diagnostics = Diagnostics(level="debug")
    sequence = HistoryBuilder(graph, diagnostics).build()

    assert all(c.merges == [] for c in sequence)
    assert diagnostics.of_kind(diag.MERGE_IGNORED)
    assert diagnostics.of_kind(diag.MERGE_INCOMPLETE) == []


def test_missing_label_versions_are_fatal():
    builder = HistoryBuilder(VersionGraph())
    changeset = ChangeSet("Alice", "alice", "main", 0)
    changeset.add(Version("a.txt", "main", 1))
    builder._pending = [changeset]
    with pytest.raises(MissingLabelVersionsError):
        builder._pull_for_label(0, changeset, "L", {Version("b.txt", "main", 3)})


def test_incremental_run_resumes_from_snapshot():
    graph = VersionGraph()
    main = graph.add_element("a.txt").add_branch("main")
    main.add_version(0, login="alice", time=0)
    main.add_version(1, login="alice", time=100)

    first = HistoryBuilder(graph)
    assert [c.id for c in first.build()] == [1, 2]
    snapshot = first.snapshot()
    assert isinstance(snapshot, HistorySnapshot)

    v2 = main.add_version(2, login="alice", time=1000, comment="later")
    (changeset,) = HistoryBuilder(graph, snapshot=snapshot).build([v2])

    assert changeset.id == 3
    assert changeset.branching_point is None
    assert [n.names for n in changeset.file_versions()] == [["a.txt"]]


def test_label_versions_pending_before_a_pulled_changeset_are_found():
    """
    Starting REL1 pulls main@100 forward for label L; main@100 then needs
    b.txt main 1 for label M, which is still pending before it.
    """
    graph = VersionGraph()
    a = graph.add_element("a.txt").add_branch("main")
    a.add_version(0, login="alice", time=0)
    a.add_version(1, login="alice", time=10, labels=["M"])
    a.add_version(2, login="alice", time=100, labels=["L"])
    b = graph.add_element("b.txt").add_branch("main")
    b.add_version(0, login="alice", time=0)
    b.add_version(1, login="carol", time=70, labels=["M"])
    r = graph.add_element("r.txt")
    r0 = r.add_branch("main").add_version(0, login="alice", time=0)
    rel = r.add_branch("REL1", r0)
    rel.add_version(0, login="bob", time=50)
    rel.add_version(1, login="bob", time=50, labels=["L"])

    diagnostics = Diagnostics()
    sequence = HistoryBuilder(graph, diagnostics).build()

    assert [(c.branch, c.start_time) for c in sequence] == [
        ("main", 0),
        ("main", 70),
        ("main", 100),
        ("REL1", 50),
    ]
    assert [c.labels for c in sequence] == [[], ["M"], [], ["L"]]
    assert sequence[3].branching_point is sequence[2]
    assert diagnostics.of_kind(diag.LABEL_ABANDONED) == []


def test_label_is_applied_once():
    graph = VersionGraph()
    a = graph.add_element("a.txt").add_branch("main")
    b = graph.add_element("b.txt").add_branch("main")
    for branch in (a, b):
        branch.add_version(0, login="alice", time=0)
        branch.add_version(1, login="alice", time=100, labels=["L"])
        branch.add_version(2, login="alice", time=1000)

    diagnostics = Diagnostics()
    sequence = HistoryBuilder(graph, diagnostics).build()

    assert [c.labels for c in sequence] == [[], ["L"], []]
    assert diagnostics.of_kind(diag.LABEL_INCONSISTENT) == []
    assert diagnostics.of_kind(diag.LABEL_INCOMPLETE) == []


def test_label_with_a_lost_version_is_withdrawn():
    graph = VersionGraph()
    vob = graph.add_element("d1", "vob", is_directory=True).add_branch("main")
    vob.add_version(0, login="alice", time=0)
    vob.add_version(1, login="alice", time=5).content.append(("a.txt", "f1"))
    f1 = graph.add_element("f1", "a.txt").add_branch("main")
    f1.add_version(0, login="alice", time=0)
    f1.add_version(1, login="alice", time=5, labels=["L"])
    lost = graph.add_element("lost.txt").add_branch("main")
    lost.add_version(0, login="alice", time=0)
    lost.add_version(1, login="alice", time=5, labels=["L"])

    diagnostics = Diagnostics()
    builder = HistoryBuilder(graph, diagnostics)
    builder.set_roots(["vob"])
    (changeset,) = builder.build()

    assert changeset.labels == []
    (event,) = diagnostics.of_kind(diag.LABEL_LOST_VERSION)
    assert event.fields["label"] == "L"
    assert event.fields["versions"] == ["lost.txt@@\\main\\1"]
