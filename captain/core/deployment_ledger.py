"""Persisted deployment records, one JSON file per (program, network)"""

import asyncio
import json
import logging
import os
import weakref
from pathlib import Path
from typing import List, Optional, Tuple

from ..api.exceptions import LedgerReadError, LedgerWriteError, OperationInProgressError
from ..constants import LEDGER_FILE_PATTERN
from ..models.deployment import DeploymentRecord, utc_now
from ..utils.file_utils import atomic_write_json, read_json

logger = logging.getLogger(__name__)


class PairLock:
    """Serializes operations on one (program, network) pair

    Operations in the same process wait for each other. Another process
    holding the lock file makes acquisition fail immediately.
    """

    _locks: "weakref.WeakValueDictionary[Tuple[str, str, str], asyncio.Lock]" = (
        weakref.WeakValueDictionary()
    )

    def __init__(self, locks_dir: Path, program: str, network: str):
        self.program = program
        self.network = network
        self.lock_path = locks_dir / f"{network}--{program}.lock"
        self._lock: Optional[asyncio.Lock] = None
        self._owns_file = False

    def _get_lock(self) -> asyncio.Lock:
        key = (str(self.lock_path.parent), self.network, self.program)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    async def acquire(self) -> None:
        self._lock = self._get_lock()
        await self._lock.acquire()
        try:
            self.lock_path.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(self.lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            self._lock.release()
            raise OperationInProgressError(self.program, self.network, str(self.lock_path))
        except OSError as e:
            self._lock.release()
            raise LedgerWriteError(str(self.lock_path), str(e))

        with os.fdopen(fd, "w") as f:
            json.dump({"pid": os.getpid(), "acquired_at": utc_now()}, f)
        self._owns_file = True

    def release(self) -> None:
        if self._owns_file:
            try:
                self.lock_path.unlink()
            except FileNotFoundError:
                pass
            self._owns_file = False
        if self._lock is not None and self._lock.locked():
            self._lock.release()
        self._lock = None

    async def __aenter__(self) -> 'PairLock':
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self.release()


class DeploymentLedger:
    """Single source of truth for what is deployed where

    Records are pretty-printed, key-sorted JSON so they diff cleanly in
    version control. Records are never deleted.
    """

    def __init__(self, deployments_dir: Path, locks_dir: Optional[Path] = None):
        """Initialize ledger

        Args:
            deployments_dir: Directory holding `<network>/<program>.json`
            locks_dir: Directory for per-pair lock files
        """
        self.deployments_dir = Path(deployments_dir)
        self.locks_dir = Path(locks_dir) if locks_dir else self.deployments_dir / ".locks"

    def record_path(self, program: str, network: str) -> Path:
        """Get path of the record file for a pair"""
        return self.deployments_dir / LEDGER_FILE_PATTERN.format(
            network=network, program=program
        )

    def lock(self, program: str, network: str) -> PairLock:
        """Lock serializing operations on a pair"""
        return PairLock(self.locks_dir, program, network)

    async def load(self, program: str, network: str) -> Optional[DeploymentRecord]:
        """Load the record for a pair

        Args:
            program: Program name
            network: Network name

        Returns:
            Record or None if the pair was never deployed

        Raises:
            LedgerReadError: If the file exists but cannot be read or parsed
        """
        path = self.record_path(program, network)
        if not path.exists():
            return None
        return self._read(path, program, network)

    def _read(self, path: Path, program: Optional[str] = None,
              network: Optional[str] = None) -> DeploymentRecord:
        try:
            data = read_json(path)
        except OSError as e:
            raise LedgerReadError(str(path), e.strerror or str(e))
        except json.JSONDecodeError as e:
            raise LedgerReadError(str(path), f"invalid JSON: {e}")

        try:
            record = DeploymentRecord.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            raise LedgerReadError(str(path), f"missing or invalid field: {e}")

        if (program and record.program != program) or (network and record.network != network):
            raise LedgerReadError(
                str(path), f"record is for {record.program} on {record.network}"
            )
        return record

    async def save(self, record: DeploymentRecord) -> Path:
        """Write a record atomically

        Args:
            record: Record to persist

        Returns:
            Path of the record file

        Raises:
            LedgerWriteError: If the record could not be written
        """
        path = self.record_path(record.program, record.network)
        try:
            atomic_write_json(path, record.to_dict())
        except OSError as e:
            raise LedgerWriteError(str(path), e.strerror or str(e))

        logger.debug(f"Saved deployment record {path}")
        return path

    async def list_records(self, network: Optional[str] = None) -> List[DeploymentRecord]:
        """List records, optionally for one network

        Raises:
            LedgerReadError: If any record file is unreadable
        """
        if not self.deployments_dir.is_dir():
            return []

        if network:
            network_dirs = [self.deployments_dir / network]
        else:
            network_dirs = sorted(
                d for d in self.deployments_dir.iterdir()
                if d.is_dir() and not d.name.startswith(".")
            )

        records = []
        for network_dir in network_dirs:
            if not network_dir.is_dir():
                continue
            for record_file in sorted(network_dir.glob("*.json")):
                records.append(self._read(record_file, record_file.stem, network_dir.name))
        return records
