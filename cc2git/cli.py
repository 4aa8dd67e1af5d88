#!/usr/bin/env python3
"""
cc2git

Convert a ClearCase vob, exported with ``clearexport_ccase``, to a git
fast-import stream.

Usage:
    cc2git [options] exports...

Example:
    git init destrepo
    cd destrepo
    cc2git /path/to/vob.export --authors-file authors.txt | git fast-import
    git reset --hard
"""
from __future__ import annotations
import argparse
import os
import sys
from typing import Dict, List, Optional

from .diagnostics import Diagnostics
from .errors import ExportFormatError, HistoryError
from .export_reader import ExportReader
from .fastimport import FastImportWriter
from .history import HistoryBuilder


def load_authors_file(fn: str) -> Dict[str, str]:
    mapping: Dict[str, str] = {}
    try:
        with open(os.path.expanduser(fn), "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line or line.startswith("#"):
                    continue
                if "=" in line:
                    login, author = line.split("=", 1)
                    login = login.strip()
                    author = author.strip()
                    if login in mapping:
                        sys.stderr.write(f"Warning: login {login} redefined to {author}\n")
                    mapping[login] = author
    except FileNotFoundError:
        sys.stderr.write(f"Warning: authors file {fn} not found\n")
    return mapping


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Convert ClearCase export files into a git fast-import stream."
    )
    parser.add_argument("exports", nargs="+", help="export files (clearexport format)")
    parser.add_argument(
        "--branches",
        action="append",
        default=[],
        help="import only branches matching this regular expression (can be repeated)",
    )
    parser.add_argument(
        "--labels",
        action="append",
        default=[],
        help="import only labels matching this regular expression (can be repeated, NONE for no label)",
    )
    parser.add_argument(
        "--roots",
        action="append",
        default=[],
        help="root directory element (can be repeated, default: elements in no directory)",
    )
    parser.add_argument(
        "--authors-file", "-A", help="file with `login = Full Name <email>` mappings"
    )
    parser.add_argument(
        "--email-domain",
        default="example.com",
        help="email domain for logins missing from the authors file (default example.com)",
    )
    parser.add_argument(
        "--encoding", default="utf-8", help="encoding of the export files (default utf-8)"
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="report every recovered anomaly"
    )
    return parser


def main(argv: Optional[List[str]] = None):
    args = build_parser().parse_args(argv)

    author_map: Dict[str, str] = {}
    if args.authors_file:
        author_map = load_authors_file(args.authors_file)

    reader = ExportReader(args.encoding)
    for path in args.exports:
        try:
            reader.read_file(path)
        except ExportFormatError as e:
            sys.stderr.write(f"Error: {e}\n")
            sys.exit(1)
        except (OSError, UnicodeDecodeError) as e:
            sys.stderr.write(f"Failed to read {path}: {e}\n")
            continue
    graph = reader.graph
    if not len(graph):
        sys.stderr.write("No elements found.\n")
        sys.exit(1)
    sys.stderr.write(f"Found {len(graph)} elements to import\n")

    diagnostics = Diagnostics(sys.stderr, "info" if args.verbose else "warning")
    builder = HistoryBuilder(graph, diagnostics)
    builder.set_branch_filters(args.branches)
    builder.set_label_filters(args.labels)
    builder.set_roots(args.roots)
    try:
        changesets = builder.build()
    except HistoryError as e:
        sys.stderr.write(f"Error: {e}\n")
        sys.exit(1)
    sys.stderr.write(f"Built {len(changesets)} change sets\n")

    writer = FastImportWriter(sys.stdout.buffer, author_map, email_domain=args.email_domain)
    writer.write_changesets(changesets)
    sys.stdout.buffer.flush()
    sys.stderr.write(f"Wrote {writer.written} commits\n")

    counts = diagnostics.counts("info")
    for kind in sorted(counts):
        sys.stderr.write(f"  {kind}: {counts[kind]}\n")


if __name__ == "__main__":
    main()
