"""Fatal conditions of a conversion run."""


class HistoryError(Exception):
    pass


class BranchParentError(HistoryError):
    """The parent of a branch cannot be decided from the observed paths."""


class MissingLabelVersionsError(HistoryError):
    """A label needs versions that are nowhere in the remaining changesets."""


class LinearizationError(HistoryError):
    pass


class ExportFormatError(Exception):
    def __init__(self, filename: str, line_number: int, message: str):
        super().__init__(f"{filename}, line {line_number}: {message}")
        self.filename = filename
        self.line_number = line_number
