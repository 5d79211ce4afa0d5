"""Keypair loading with role-tagged access"""

import json
import logging
import os
from pathlib import Path
from typing import Optional, Union

from solders.keypair import Keypair

from ..api.exceptions import (
    ConfigError,
    MissingKeyError,
    UnreadableKeyError,
    InvalidKeyFormatError,
)
from ..chain.keys import RoleKey, DeployerKey, AuthorityKey, ProgramKey
from ..constants import ENV_UPGRADE_AUTHORITY_KEYPAIR
from ..models.config import KeyReference, ResolvedTarget
from ..utils.file_utils import atomic_write

logger = logging.getLogger(__name__)

KEYPAIR_LENGTH = 64


def load_keypair(path: Union[str, Path]) -> Keypair:
    """
    Load a Solana CLI keypair file (JSON array of 64 integers)

    Args:
        path: Keypair file

    Returns:
        Keypair

    Raises:
        UnreadableKeyError: If the file cannot be read
        InvalidKeyFormatError: If the content is not a valid keypair
    """
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise UnreadableKeyError(str(path), e.strerror or str(e))

    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        raise InvalidKeyFormatError(str(path), "expected a JSON array of 64 integers")

    if not isinstance(data, list) or len(data) != KEYPAIR_LENGTH:
        length = len(data) if isinstance(data, list) else type(data).__name__
        raise InvalidKeyFormatError(str(path), f"expected 64 bytes, got {length}")

    if not all(isinstance(b, int) and not isinstance(b, bool) and 0 <= b <= 255 for b in data):
        raise InvalidKeyFormatError(str(path), "values must be integers in 0..255")

    raw = bytes(data)
    keypair = Keypair.from_seed(raw[:32])
    if bytes(keypair.pubkey()) != raw[32:]:
        raise InvalidKeyFormatError(str(path), "public key does not match secret key")
    return keypair


def write_keypair(path: Path, keypair: Keypair) -> None:
    """Write a keypair in Solana CLI format, readable by the owner only"""
    atomic_write(path, json.dumps(list(bytes(keypair))))
    os.chmod(path, 0o600)


class KeyVault:
    """Loads the keys of one resolved target and hands them out by role

    `deployer()` and `authority()` always return handles of distinct types,
    even when both roles are configured with the same keypair file.
    """

    def __init__(self, target: ResolvedTarget,
                 authority_override: Optional[Union[str, Path]] = None):
        """
        Args:
            target: Resolved (program, network) configuration
            authority_override: Keypair that signs upgrades instead of the
                configured authority (falls back to UPGRADE_AUTHORITY_KEYPAIR)
        """
        self.target = target
        if authority_override is None and os.environ.get(ENV_UPGRADE_AUTHORITY_KEYPAIR):
            authority_override = os.environ[ENV_UPGRADE_AUTHORITY_KEYPAIR]
        self.authority_override = (
            Path(authority_override).expanduser() if authority_override else None
        )
        self._deployer: Optional[DeployerKey] = None
        self._authority: Optional[AuthorityKey] = None
        self._upgrade_signer: Optional[AuthorityKey] = None
        self._warned_shared = False

    def _load(self, reference: KeyReference, key_class):
        if reference.is_pubkey_only:
            return key_class.pubkey_only(reference.pubkey, source=reference.describe())
        keypair = load_keypair(reference.path)
        return key_class.from_keypair(keypair, source=str(reference.path))

    def deployer(self) -> DeployerKey:
        """Key that pays for and performs transactions"""
        if self._deployer is None:
            self._deployer = self._load(self.target.deployer, DeployerKey)
            logger.debug(f"Deployer for {self.target.network_name}: {self._deployer.pubkey}")
        return self._deployer

    def authority(self) -> AuthorityKey:
        """Configured upgrade authority (may be public-key only)"""
        if self._authority is None:
            self._authority = self._load(self.target.authority, AuthorityKey)
            logger.debug(f"Upgrade authority for {self.target.network_name}: "
                         f"{self._authority.pubkey}")
            self._warn_if_shared()
        return self._authority

    def upgrade_signer(self) -> AuthorityKey:
        """Authority used to sign an upgrade

        This is the override keypair when one is given, which allows rotating
        to a new configured authority while the recorded one still signs.
        """
        if self._upgrade_signer is None:
            if self.authority_override is not None:
                if not self.authority_override.exists():
                    raise MissingKeyError("Upgrade authority", str(self.authority_override),
                                          self.target.network_name)
                keypair = load_keypair(self.authority_override)
                self._upgrade_signer = AuthorityKey.from_keypair(
                    keypair, source=str(self.authority_override)
                )
            else:
                self._upgrade_signer = self.authority()
        return self._upgrade_signer

    def shares_key_material(self) -> bool:
        """Check whether deployer and authority are the same identity"""
        return self.deployer().same_identity(self.authority())

    def _warn_if_shared(self) -> None:
        if self._warned_shared or self._deployer is None:
            return
        self._warned_shared = True
        if self._deployer.same_identity(self._authority):
            logger.warning(
                f"Deployer and upgrade authority on '{self.target.network_name}' are the "
                f"same key ({self._deployer.pubkey}); they are still used as separate roles"
            )

    def program_key(self, create: bool = False) -> ProgramKey:
        """
        Keypair of the program address

        Args:
            create: Generate and store a keypair for an unbound program if
                none exists yet (first deploy only)

        Returns:
            Program key handle

        Raises:
            MissingKeyError: No keypair exists and none may be created
            ConfigError: The keypair does not match the pinned address
        """
        binding = self.target.binding
        path = self.target.program_keypair_path

        if path.exists():
            key = ProgramKey.from_keypair(load_keypair(path), source=str(path))
            pinned = self.target.pinned_address
            if pinned and key.pubkey != pinned:
                raise ConfigError(
                    f"Program keypair {path} is for {key.pubkey}, but '{binding.name}' "
                    f"is pinned to {pinned} on '{self.target.network_name}'"
                )
            return key

        if binding.is_pinned or not create:
            raise MissingKeyError("Program", str(path), self.target.network_name)

        keypair = Keypair()
        write_keypair(path, keypair)
        logger.info(f"Generated program address {keypair.pubkey()} for "
                    f"'{binding.name}' on '{self.target.network_name}' ({path})")
        return ProgramKey.from_keypair(keypair, source=str(path))

    def program_address(self) -> Optional[str]:
        """Program address known without generating anything"""
        if self.target.pinned_address:
            return self.target.pinned_address
        path = self.target.program_keypair_path
        if path.exists():
            return str(load_keypair(path).pubkey())
        return None

    def describe(self, key: RoleKey) -> str:
        """Public identity and source of a key, never its secret"""
        return f"{key.role} {key.pubkey} ({key.source or 'ephemeral'})"
