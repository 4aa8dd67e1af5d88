"""
Reader for the text export of a vob (``cleartool`` clearexport format).

Only files are exported: every element gets its name as oid, and there are
no directory versions, so each file is a root named after itself.
"""
from __future__ import annotations
import os
import re
from typing import Iterator, Optional, Tuple

from .errors import ExportFormatError
from .model import ROOT_BRANCH, Branch, Element, Version, VersionGraph

ELEMENT_NAME_RE = re.compile(r"^Name \d+:(.*)")
VERSION_ID_RE = re.compile(r"^VersionId \d+:\\(.*)\\(\d+)")
USER_RE = re.compile(r"^EventUser \d+:(.*)")
TIME_RE = re.compile(r"^EventTime (\d+)")
COMMENT_RE = re.compile(r"^Comment (\d+):(.*)")
LABEL_RE = re.compile(r"^Label \d+:(.*)")
SUB_BRANCH_RE = re.compile(r"^SubBranch \d+:(.*)")

LINE_RE = re.compile(r"([^\r\n]*)(\r\n|\r|\n)")


def split_lines(text: str) -> Iterator[Tuple[str, str]]:
    """Yield (line, end of line) pairs; the last line may have no end of line."""
    position = 0
    for match in LINE_RE.finditer(text):
        yield match.group(1), match.group(2)
        position = match.end()
    if position < len(text):
        yield text[position:], ""


class ExportReader:
    def __init__(self, encoding: str = "utf-8", graph: Optional[VersionGraph] = None):
        self.encoding = encoding
        self.graph = graph if graph is not None else VersionGraph()

    def read_file(self, path: str) -> VersionGraph:
        # newline="" keeps end of lines, they count in comment lengths
        with open(os.path.expanduser(path), "r", encoding=self.encoding, newline="") as f:
            return self.read_string(f.read(), path)

    def read_string(self, text: str, filename: str = "<string>") -> VersionGraph:
        element: Optional[Element] = None
        branch: Optional[Branch] = None
        version: Optional[Version] = None
        comment: Optional[str] = None
        missing_chars = 0

        for line_number, (line, eol) in enumerate(split_lines(text), 1):
            if missing_chars > 0:
                comment += line
                missing_chars -= len(line)
                if missing_chars < 0:
                    raise ExportFormatError(filename, line_number, "Unexpected comment length")
                if missing_chars > 0:
                    comment += eol
                    missing_chars -= len(eol)
                if missing_chars == 0:
                    version.comment = comment
                    comment = None
                continue

            if line == "ELEMENT_BEGIN":
                element = branch = version = None
                continue
            if element is None:
                match = ELEMENT_NAME_RE.match(line)
                if match:
                    name = match.group(1)
                    if self.graph.element(name) is not None:
                        raise ExportFormatError(filename, line_number, f"Duplicated element {name}")
                    element = self.graph.add_element(name)
                    continue
            if line == "ELEMENT_END":
                continue
            if line in ("VERSION_BEGIN", "VERSION_END"):
                version = None
                continue

            if element is not None and version is None:
                match = VERSION_ID_RE.match(line)
                if match:
                    branch_name = match.group(1).split("\\")[-1]
                    if branch is None or branch.name != branch_name:
                        branch = element.branches.get(branch_name)
                        if branch is None:
                            if branch_name != ROOT_BRANCH:
                                raise ExportFormatError(filename, line_number, f"Unexpected branch {branch_name}")
                            branch = element.add_branch(branch_name)
                    version = branch.add_version(int(match.group(2)))
                    continue

            if version is None:
                continue
            match = USER_RE.match(line)
            if match:
                version.author = version.login = match.group(1)
                continue
            match = TIME_RE.match(line)
            if match:
                version.time = int(match.group(1))
                continue
            match = LABEL_RE.match(line)
            if match:
                version.labels.append(match.group(1))
                continue
            match = COMMENT_RE.match(line)
            if match:
                comment = match.group(2)
                missing_chars = int(match.group(1)) - len(comment)
                if missing_chars > 0:
                    comment += eol
                    missing_chars -= len(eol)
                if missing_chars == 0:
                    version.comment = comment
                    comment = None
                continue
            match = SUB_BRANCH_RE.match(line)
            if match:
                branch_name = match.group(1)
                if branch_name in element.branches:
                    raise ExportFormatError(filename, line_number, f"Duplicated branch {branch_name}")
                element.add_branch(branch_name, version)
                continue

        return self.graph
