"""
Notebook: the .nblr file format, a JSON document of cells.
"""

import json
import logging
import uuid
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Union

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

NOTEBOOK_SUFFIX = ".nblr"


class CellType(str, Enum):
    CODE = "code"
    MARKDOWN = "markdown"


class Cell(BaseModel):
    """A single notebook cell; ``id`` is stable across saves."""
    id: str = Field(default_factory=lambda: f"cell_{uuid.uuid4().hex[:12]}")
    type: CellType = CellType.CODE
    source: str = ""
    outputs: list[dict[str, Any]] = Field(default_factory=list)
    execution_count: Optional[int] = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    def to_dict(self) -> dict:
        return self.model_dump(mode="json")

    @classmethod
    def from_dict(cls, data: dict) -> "Cell":
        return cls.model_validate(data)


class Notebook(BaseModel):
    """
    Cells in display order plus free-form metadata.

    Recognised metadata keys:
    - name: short name shown to clients (defaults to the file stem)
    - path: where the notebook was read from
    - notebook_id: identifier reported in the served state
    """

    version: str = "1.0"
    cells: list[Cell] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def name(self) -> str:
        return self.metadata.get("name", "Untitled")

    @property
    def path(self) -> Optional[str]:
        return self.metadata.get("path")

    def add_cell(self, cell: Optional[Cell] = None, **kwargs) -> Cell:
        """Append ``cell``, or a new Cell built from ``kwargs``."""
        if cell is None:
            cell = Cell(**kwargs)
        self.cells.append(cell)
        return cell

    def get_cell_by_id(self, cell_id: str) -> Optional[Cell]:
        for cell in self.cells:
            if cell.id == cell_id:
                return cell
        return None

    def code_cells(self) -> list[Cell]:
        """Code cells in notebook order."""
        return [c for c in self.cells if c.type == CellType.CODE]

    def to_dict(self) -> dict:
        return self.model_dump(mode="json")

    @classmethod
    def from_dict(cls, data: dict) -> "Notebook":
        return cls.model_validate(data)

    @classmethod
    def from_bytes(cls, data: bytes, path: Optional[Union[str, Path]] = None) -> "Notebook":
        """
        Parse a notebook from the raw bytes of a .nblr file.

        Args:
            data: File contents
            path: Where the bytes came from, recorded in metadata

        Returns:
            Parsed notebook
        """
        notebook = cls.from_dict(json.loads(data.decode("utf-8")))
        if path is not None:
            notebook.metadata["path"] = str(path)
            notebook.metadata.setdefault("name", Path(path).stem)
        return notebook

    def save(self, path: Union[str, Path]):
        """Write the notebook as indented JSON, creating parent directories."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(self.to_dict(), indent=2), encoding="utf-8")

    @classmethod
    def load(cls, path: Union[str, Path]) -> "Notebook":
        path = Path(path)
        return cls.from_bytes(path.read_bytes(), path)

    @classmethod
    def new(cls, name: str = "Untitled") -> "Notebook":
        return cls(metadata={"name": name})


def is_notebook_file(path: Path) -> bool:
    """Check whether a file looks like a .nblr notebook."""
    path = Path(path)
    if path.suffix != NOTEBOOK_SUFFIX or not path.is_file():
        return False
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError):
        return False
    return isinstance(data, dict) and isinstance(data.get("cells"), list)


def find_notebooks(start_dir: Union[str, Path] = ".") -> list[Path]:
    """
    Recursively find notebook files below a directory.

    Hidden directories (``.git``, ``.venv``, ...) are skipped.

    Args:
        start_dir: Directory to search

    Returns:
        Sorted list of notebook paths
    """
    start_dir = Path(start_dir)
    found = []
    for path in sorted(start_dir.rglob(f"*{NOTEBOOK_SUFFIX}")):
        relative = path.relative_to(start_dir)
        if any(part.startswith(".") for part in relative.parts[:-1]):
            continue
        if is_notebook_file(path):
            found.append(path)
    logger.info("Found %d notebook(s) in %s", len(found), start_dir)
    return found
