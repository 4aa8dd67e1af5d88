import io

from cc2git.changeset import ChangeSet
from cc2git.fastimport import FastImportWriter, branch_ref, quote_path
from cc2git.model import Version


def make_changeset(id, branch="main", time=1000, login="alice"):
    changeset = ChangeSet(login, login, branch, time)
    changeset.id = id
    return changeset


def test_branch_ref():
    assert branch_ref("main") == "refs/heads/master"
    assert branch_ref("REL1") == "refs/heads/REL1"


def test_quote_path():
    assert quote_path("src/a.txt") == "src/a.txt"
    assert quote_path("my file.txt") == '"my file.txt"'
    assert quote_path('say "hi"') == '"say \\"hi\\""'


def test_write_commit_with_tag():
    changeset = make_changeset(1)
    changeset.add(Version("a", "main", 1, comment="first"), "a.txt")
    changeset.labels.append("REL1")

    out = io.BytesIO()
    writer = FastImportWriter(out)
    assert writer.write_changeset(changeset)

    assert out.getvalue().decode("utf-8") == (
        "commit refs/heads/master\n"
        "mark :1\n"
        "author alice <alice@example.com> 1000 +0000\n"
        "committer alice <alice@example.com> 1000 +0000\n"
        "data 5\nfirst\n"
        "M 644 inline a.txt\n"
        "data 0\n\n"
        "\n"
        "reset refs/tags/REL1\n"
        "from :1\n\n"
    )
    assert writer.written == 1


def test_branch_merge_and_tree_operations():
    point = make_changeset(1)
    point.add(Version("a", "main", 1), "a.txt")
    merged = make_changeset(2, "REL1")
    merged.add(Version("b", "REL1", 1), "b.txt")

    changeset = make_changeset(3, "REL1", login="bob")
    changeset.branching_point = point
    changeset.merges.append(merged)
    changeset.renamed.append(("old name.txt", "new.txt"))
    changeset.removed.append("gone.txt")
    changeset.symlinks.append(("link", "a.txt"))

    out = io.BytesIO()
    FastImportWriter(out, {"bob": "Bob Smith <bob@corp.com>"}).write_changeset(changeset)
    text = out.getvalue().decode("utf-8")

    assert "commit refs/heads/REL1\n" in text
    assert "author Bob Smith <bob@corp.com> 1000 +0000\n" in text
    assert "from :1\nmerge :2\n" in text
    assert 'R "old name.txt" new.txt\n' in text
    assert "D gone.txt\n" in text
    assert "M 120000 inline link\ndata 5\na.txt\n" in text


def test_content_provider_and_empty_changesets():
    changeset = make_changeset(1)
    changeset.add(Version("a", "main", 1), "a.txt")
    empty = make_changeset(2)
    empty.add(Version("b", "main", 1))

    out = io.BytesIO()
    writer = FastImportWriter(out, content_provider=lambda version: b"hello")
    writer.write_changesets([changeset, empty])

    text = out.getvalue().decode("utf-8")
    assert "progress Writing change set 1 of 2\n" in text
    assert "progress Writing change set 2 of 2\n" in text
    assert "M 644 inline a.txt\ndata 5\nhello\n" in text
    assert "mark :2" not in text
    assert writer.written == 1


def test_default_author_uses_email_domain():
    writer = FastImportWriter(io.BytesIO(), email_domain="corp.com")
    assert writer.author_for("carol") == "carol <carol@corp.com>"
