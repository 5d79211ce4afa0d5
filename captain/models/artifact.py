"""Program artifact models"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional


class Classification(Enum):
    """What an operation has to do for a (program, network) pair"""
    NO_OP_NEEDED = "no_op_needed"
    FIRST_DEPLOY = "first_deploy"
    UPGRADE = "upgrade"


@dataclass(frozen=True)
class ProgramArtifact:
    """A built program binary. Immutable once produced."""
    program: str
    payload: bytes = field(repr=False)
    content_hash: str
    built_at: datetime
    source_path: Optional[Path] = None
    version: Optional[str] = None

    @property
    def size(self) -> int:
        """Binary size in bytes"""
        return len(self.payload)

    @property
    def short_hash(self) -> str:
        return self.content_hash[:16]

    @property
    def label(self) -> str:
        """Archive label: version if known, otherwise short hash"""
        return self.version or self.short_hash
