"""
Errors raised while serving notebook sessions.

Each error carries the HTTP status it is answered with.
"""

from typing import Optional


class BindServerError(Exception):
    """Base class for request failures."""

    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message or self.default_message()

    def default_message(self) -> str:
        return "Internal server error"


class NotebookNotFound(BindServerError):
    """No session is registered under the requested hash."""

    status_code = 404

    def __init__(self, notebook_hash: str):
        self.notebook_hash = notebook_hash
        super().__init__("Not found!")


class DecodeError(BindServerError):
    """A request payload could not be decoded."""

    status_code = 500

    def default_message(self) -> str:
        return "Failed to deserialize bond values"


class EvaluationError(BindServerError):
    """A cell failed while the engine was recomputing."""

    status_code = 500

    def __init__(self, message: str = "", cell_id: Optional[str] = None):
        self.cell_id = cell_id
        super().__init__(message)

    def default_message(self) -> str:
        return "Failed to set bond values"


class UnknownSymbolError(BindServerError):
    """A requested output variable is not defined by the notebook."""

    status_code = 400

    def __init__(self, names):
        self.names = sorted(names)
        super().__init__(f"Unknown variable(s): {', '.join(self.names)}")
