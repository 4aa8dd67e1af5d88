"""Rebuild git history from a ClearCase vob export."""
from .changeset import ChangeSet
from .diagnostics import Diagnostics
from .errors import ExportFormatError, HistoryError
from .export_reader import ExportReader
from .fastimport import FastImportWriter
from .history import HistoryBuilder, HistorySnapshot
from .model import VersionGraph

__version__ = "0.1.0"
