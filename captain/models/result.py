"""Operation result models"""

import shlex
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Any

from .artifact import Classification
from .deployment import DeployState, DeploymentRecord


class OperationStatus(Enum):
    """Operation status"""
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"
    IN_PROGRESS = "in_progress"


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Transition:
    """One state change of an operation"""
    state: DeployState
    at: datetime = field(default_factory=_now)
    detail: str = ""

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        return {
            "state": self.state.value,
            "at": self.at.isoformat(),
            "detail": self.detail,
        }


@dataclass
class DeployResult:
    """Result of a deploy or upgrade operation"""

    program: str
    network: str
    operation: str
    status: OperationStatus = OperationStatus.IN_PROGRESS
    classification: Optional[Classification] = None
    state: DeployState = DeployState.CLASSIFIED
    program_address: Optional[str] = None
    content_hash: Optional[str] = None
    authority: Optional[str] = None
    buffer_address: Optional[str] = None
    bytes_written: Optional[int] = None
    total_size: Optional[int] = None
    record: Optional[DeploymentRecord] = None
    recovered: bool = False
    options: Dict[str, str] = field(default_factory=dict)
    transitions: List[Transition] = field(default_factory=list)
    transactions: List[str] = field(default_factory=list)
    error: Optional[Exception] = None
    start_time: datetime = field(default_factory=_now)
    end_time: Optional[datetime] = None

    @property
    def is_success(self) -> bool:
        return self.status in (OperationStatus.SUCCESS, OperationStatus.SKIPPED)

    @property
    def is_noop(self) -> bool:
        return self.classification == Classification.NO_OP_NEEDED

    @property
    def duration(self) -> Optional[float]:
        """Operation duration in seconds"""
        if self.end_time:
            return (self.end_time - self.start_time).total_seconds()
        return None

    @property
    def resume_command(self) -> str:
        """Command that resumes this operation with the options it was started with"""
        parts = ["captain", self.operation, "--program", self.program, "--network", self.network]
        for name, value in self.options.items():
            parts += [f"--{name}", shlex.quote(value)]
        return " ".join(parts)

    def states(self) -> List[DeployState]:
        """States visited, in order"""
        return [t.state for t in self.transitions]

    def complete(self, status: OperationStatus) -> None:
        """Mark operation as finished"""
        self.status = status
        self.end_time = _now()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        return {
            "program": self.program,
            "network": self.network,
            "operation": self.operation,
            "status": self.status.value,
            "classification": self.classification.value if self.classification else None,
            "state": self.state.value,
            "program_address": self.program_address,
            "content_hash": self.content_hash,
            "authority": self.authority,
            "buffer_address": self.buffer_address,
            "bytes_written": self.bytes_written,
            "total_size": self.total_size,
            "recovered": self.recovered,
            "options": dict(self.options),
            "transactions": self.transactions,
            "transitions": [t.to_dict() for t in self.transitions],
            "error": str(self.error) if self.error else None,
            "duration": self.duration,
        }
