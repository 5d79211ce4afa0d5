"""Checkpoint storage for in-progress buffer writes"""

import json
import logging
from pathlib import Path
from typing import Optional

from ..api.exceptions import LedgerWriteError
from ..models.deployment import BufferSession
from ..utils.file_utils import atomic_write_json, read_json, safe_remove

logger = logging.getLogger(__name__)


class SessionStore:
    """Keeps one BufferSession checkpoint per (program, network)

    A checkpoint survives an aborted operation so the next attempt resumes
    instead of re-uploading; it is deleted once the operation completes.
    """

    def __init__(self, sessions_dir: Path):
        self.sessions_dir = Path(sessions_dir)

    def path(self, program: str, network: str) -> Path:
        return self.sessions_dir / network / f"{program}.json"

    def load(self, program: str, network: str) -> Optional[BufferSession]:
        """Load a checkpoint; an unreadable one is treated as absent"""
        path = self.path(program, network)
        if not path.exists():
            return None
        try:
            return BufferSession.from_dict(read_json(path))
        except (OSError, json.JSONDecodeError, TypeError, KeyError) as e:
            logger.warning(f"Ignoring unreadable buffer session {path}: {e}")
            return None

    def save(self, session: BufferSession) -> None:
        """Persist a checkpoint atomically

        Raises:
            LedgerWriteError: If the checkpoint could not be written
        """
        path = self.path(session.program, session.network)
        try:
            atomic_write_json(path, session.to_dict())
        except OSError as e:
            raise LedgerWriteError(str(path), e.strerror or str(e))

    def delete(self, program: str, network: str) -> bool:
        """Remove a checkpoint"""
        removed = safe_remove(self.path(program, network))
        if removed:
            logger.debug(f"Removed buffer session for {program} on {network}")
        return removed
