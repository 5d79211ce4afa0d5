"""Deployment record and buffer session models"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Any

from ..constants import LEDGER_RECORD_VERSION


def utc_now() -> str:
    """Current UTC time in ISO-8601"""
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


class DeployState(Enum):
    """States of a deploy/upgrade operation"""
    CLASSIFIED = "classified"
    BUFFER_STAGING = "buffer_staging"
    BUFFER_VERIFIED = "buffer_verified"
    FINALIZING = "finalizing"
    AUTHORITY_HANDOFF = "authority_handoff"
    COMPLETE = "complete"
    ABORTED = "aborted"

    @property
    def is_terminal(self) -> bool:
        return self in (DeployState.COMPLETE, DeployState.ABORTED)


# Legal forward transitions; ABORTED is reachable from every non-terminal state
ALLOWED_TRANSITIONS = {
    DeployState.CLASSIFIED: {
        DeployState.BUFFER_STAGING,
        DeployState.AUTHORITY_HANDOFF,
        DeployState.COMPLETE,
    },
    DeployState.BUFFER_STAGING: {DeployState.BUFFER_VERIFIED},
    DeployState.BUFFER_VERIFIED: {DeployState.FINALIZING},
    DeployState.FINALIZING: {DeployState.AUTHORITY_HANDOFF},
    DeployState.AUTHORITY_HANDOFF: {DeployState.COMPLETE},
    DeployState.COMPLETE: set(),
    DeployState.ABORTED: set(),
}


@dataclass
class HistoryEntry:
    """A previously deployed version of a program"""
    content_hash: str
    deployed_at: str
    version: Optional[str] = None
    authority: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        return {
            "content_hash": self.content_hash,
            "deployed_at": self.deployed_at,
            "version": self.version,
            "authority": self.authority,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'HistoryEntry':
        """Create from dictionary"""
        return cls(
            content_hash=data["content_hash"],
            deployed_at=data["deployed_at"],
            version=data.get("version"),
            authority=data.get("authority"),
        )


@dataclass(frozen=True)
class DeploymentRecord:
    """What is currently deployed for one (program, network) pair

    Instances are immutable; `upgraded` returns the successor record.
    """
    program: str
    network: str
    program_address: str
    content_hash: str
    size: int
    deployer: str
    authority: str
    deployed_at: str
    updated_at: str
    version: Optional[str] = None
    history: List[HistoryEntry] = field(default_factory=list)
    record_version: str = LEDGER_RECORD_VERSION

    @property
    def key(self) -> str:
        return f"{self.network}:{self.program}"

    def upgraded(self, content_hash: str, size: int, deployer: str,
                 authority: str, version: Optional[str] = None) -> 'DeploymentRecord':
        """Successor record after an upgrade; the address never changes"""
        previous = HistoryEntry(
            content_hash=self.content_hash,
            deployed_at=self.updated_at,
            version=self.version,
            authority=self.authority,
        )
        return replace(
            self,
            content_hash=content_hash,
            size=size,
            deployer=deployer,
            authority=authority,
            version=version,
            updated_at=utc_now(),
            history=list(self.history) + [previous],
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        return {
            "record_version": self.record_version,
            "program": self.program,
            "network": self.network,
            "program_address": self.program_address,
            "content_hash": self.content_hash,
            "size": self.size,
            "version": self.version,
            "deployer": self.deployer,
            "authority": self.authority,
            "deployed_at": self.deployed_at,
            "updated_at": self.updated_at,
            "history": [entry.to_dict() for entry in self.history],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DeploymentRecord':
        """Create from dictionary"""
        return cls(
            program=data["program"],
            network=data["network"],
            program_address=data["program_address"],
            content_hash=data["content_hash"],
            size=int(data["size"]),
            deployer=data["deployer"],
            authority=data["authority"],
            deployed_at=data["deployed_at"],
            updated_at=data.get("updated_at", data["deployed_at"]),
            version=data.get("version"),
            history=[HistoryEntry.from_dict(h) for h in data.get("history", [])],
            record_version=data.get("record_version", LEDGER_RECORD_VERSION),
        )


@dataclass
class BufferSession:
    """Checkpoint of an in-progress buffer write

    `bytes_written` only ever advances after a chunk is confirmed, so every
    byte below it is durable on chain.
    """
    program: str
    network: str
    buffer_address: str
    content_hash: str
    total_size: int
    chunk_size: int
    bytes_written: int = 0
    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)

    @property
    def is_complete(self) -> bool:
        return self.bytes_written >= self.total_size

    def chunk_offsets(self) -> List[int]:
        """Offsets still to be written, in increasing order"""
        return list(range(self.bytes_written, self.total_size, self.chunk_size))

    def advance(self, new_offset: int) -> None:
        """Move the checkpoint forward; it never moves backwards"""
        if new_offset < self.bytes_written:
            raise ValueError(
                f"Checkpoint cannot move backwards ({new_offset} < {self.bytes_written})"
            )
        self.bytes_written = min(new_offset, self.total_size)
        self.updated_at = utc_now()

    def reset(self) -> None:
        """Discard progress so the whole buffer is rewritten"""
        self.bytes_written = 0
        self.updated_at = utc_now()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        return {
            "program": self.program,
            "network": self.network,
            "buffer_address": self.buffer_address,
            "content_hash": self.content_hash,
            "total_size": self.total_size,
            "chunk_size": self.chunk_size,
            "bytes_written": self.bytes_written,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'BufferSession':
        """Create from dictionary"""
        return cls(**data)
