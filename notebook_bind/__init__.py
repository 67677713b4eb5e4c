"""
notebook-bind: serve pre-executed interactive notebooks over HTTP.

This package keeps a set of notebooks running, one isolated kernel each:
- Notebooks are addressed by the hash of their source bytes
- Clients change bound values (sliders, fields) and receive patches
  covering only the cells that re-ran
- Callers can pin root input variables and read back computed outputs
"""

from notebook_bind.kernel import NotebookKernel, ExecutionResult
from notebook_bind.notebook import Notebook, Cell, CellType
from notebook_bind.engine import LiveNotebook, TopologicalOrder
from notebook_bind.session import BoundSession, SessionRegistry, content_hash
from notebook_bind.widgets import bind

__version__ = "0.1.0"
__all__ = [
    "NotebookKernel",
    "ExecutionResult",
    "Notebook",
    "Cell",
    "CellType",
    "LiveNotebook",
    "TopologicalOrder",
    "BoundSession",
    "SessionRegistry",
    "content_hash",
    "bind",
]
