"""
SessionRegistry: the notebooks served by this process, addressed by the
hash of their source bytes.
"""

import base64
import hashlib
import logging
import tempfile
import threading
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Iterable, Iterator, Optional, Union

from notebook_bind.config import ServerOptions
from notebook_bind.engine import LiveNotebook
from notebook_bind.notebook import Notebook
from notebook_bind.utils import pack

logger = logging.getLogger(__name__)


def content_hash(data: bytes) -> str:
    """URL-safe base64 of the SHA-256 of ``data``."""
    return base64.urlsafe_b64encode(hashlib.sha256(data).digest()).decode("ascii")


@dataclass(frozen=True)
class BoundSession:
    """
    One loaded notebook and everything needed to answer requests about it.

    ``original_state`` is captured right after the first run and never
    changes; ``token`` serializes every mutation of ``notebook``.
    """

    hash: str
    path: str
    notebook: LiveNotebook
    original_state: Any
    bond_connections: dict[str, list[str]]
    token: threading.Lock = field(default_factory=threading.Lock, compare=False, repr=False)


def read_sources(paths: Iterable[Union[str, Path]]) -> list[tuple[Path, bytes]]:
    """Read the raw bytes of each notebook file."""
    return [(Path(path), Path(path).read_bytes()) for path in paths]


def open_session(path: Union[str, Path], data: bytes, options: Optional[ServerOptions] = None) -> BoundSession:
    """
    Run a notebook once and wrap it as a BoundSession.

    Args:
        path: Where the notebook came from
        data: Source bytes, hashed as-is
        options: Server options (temp copies, statefiles)

    Raises:
        EvaluationError: if a cell fails during the first run
    """
    options = options or ServerOptions()
    path = Path(path)
    notebook_hash = content_hash(data)

    run_path = path
    if options.copy_to_temp_before_running:
        run_path = Path(tempfile.mkdtemp(prefix="notebook_bind_")) / path.name
        run_path.write_bytes(data)

    live = LiveNotebook(Notebook.from_bytes(data, run_path))
    live.run_all()
    state = live.to_state()

    if options.create_statefiles:
        statefile = Path(f"{run_path}state")
        statefile.write_bytes(pack(state))
        logger.info("Wrote state file %s", statefile)

    return BoundSession(
        hash=notebook_hash,
        path=str(path),
        notebook=live,
        original_state=state,
        bond_connections=live.topology.bond_connections(),
    )


class SessionRegistry:
    """
    Immutable mapping from content hash to BoundSession.

    Built once at start-up; lookups need no locking.
    """

    def __init__(self, sessions: Iterable[BoundSession] = ()):
        found: dict[str, BoundSession] = {}
        for session in sessions:
            previous = found.get(session.hash)
            if previous is not None:
                logger.warning(
                    "%s and %s have the same hash %s; serving %s",
                    previous.path, session.path, session.hash, session.path,
                )
            found[session.hash] = session
        self._sessions = MappingProxyType(found)

    @classmethod
    def load(cls, sources: Iterable[tuple[Union[str, Path], bytes]], options: Optional[ServerOptions] = None) -> "SessionRegistry":
        """
        Open every notebook, running each one to completion.

        Args:
            sources: (path, source bytes) pairs
            options: Server options

        Returns:
            Registry with one session per source
        """
        sources = list(sources)
        sessions = []
        for i, (path, data) in enumerate(sources, start=1):
            logger.info("Opening %s", path)
            session = open_session(path, data, options)
            logger.info(
                "[%d/%d] Ready %s hash=%s connections=%s",
                i, len(sources), path, session.hash, session.bond_connections,
            )
            sessions.append(session)
        return cls(sessions)

    @classmethod
    def from_paths(cls, paths: Iterable[Union[str, Path]], options: Optional[ServerOptions] = None) -> "SessionRegistry":
        return cls.load(read_sources(paths), options)

    def lookup(self, notebook_hash: str) -> Optional[BoundSession]:
        """The session for ``notebook_hash``, or None if there is none."""
        return self._sessions.get(notebook_hash)

    @property
    def hashes(self) -> list[str]:
        return list(self._sessions)

    def __contains__(self, notebook_hash: str) -> bool:
        return notebook_hash in self._sessions

    def __iter__(self) -> Iterator[BoundSession]:
        return iter(self._sessions.values())

    def __len__(self) -> int:
        return len(self._sessions)
