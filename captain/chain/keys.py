# captain/chain/keys.py
"""Role-tagged key handles

A handle binds key material to the role it plays in a deployment. Two
handles built from the same keypair file are still different objects of
different types, so code paths that expect an upgrade authority cannot be
given the deployer by accident.
"""

from typing import Optional, Tuple, Type

from solders.keypair import Keypair
from solders.pubkey import Pubkey

from ..api.exceptions import SignerUnavailableError


class RoleKey:
    """Base class for role-tagged key handles"""

    role = "key"

    __slots__ = ("_pubkey", "_keypair", "source")

    def __init__(self, pubkey: Pubkey, keypair: Optional[Keypair] = None,
                 source: Optional[str] = None):
        if keypair is not None and keypair.pubkey() != pubkey:
            raise ValueError("Keypair does not match public key")
        self._pubkey = pubkey
        self._keypair = keypair
        self.source = source

    @classmethod
    def from_keypair(cls, keypair: Keypair, source: Optional[str] = None) -> 'RoleKey':
        """Create a signing handle"""
        return cls(keypair.pubkey(), keypair, source)

    @classmethod
    def pubkey_only(cls, pubkey: str, source: Optional[str] = None) -> 'RoleKey':
        """Create a handle that names an identity but cannot sign"""
        return cls(Pubkey.from_string(pubkey), None, source)

    @property
    def pubkey(self) -> str:
        """Base58 public key"""
        return str(self._pubkey)

    @property
    def can_sign(self) -> bool:
        return self._keypair is not None

    def signer(self) -> Keypair:
        """Keypair used to sign transactions

        Raises:
            SignerUnavailableError: If the handle is public-key only
        """
        if self._keypair is None:
            raise SignerUnavailableError(self.role, self.pubkey)
        return self._keypair

    def same_identity(self, other: 'RoleKey') -> bool:
        """Check whether two handles refer to the same public key"""
        return self._pubkey == other._pubkey

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.pubkey}>"

    __str__ = __repr__


class DeployerKey(RoleKey):
    """Pays for and performs transactions"""
    role = "deployer"
    __slots__ = ()


class AuthorityKey(RoleKey):
    """Holds upgrade rights over a program"""
    role = "upgrade authority"
    __slots__ = ()


class ProgramKey(RoleKey):
    """Keypair whose public key is the program address"""
    role = "program"
    __slots__ = ()


class BufferKey(RoleKey):
    """Ephemeral keypair of a buffer account"""
    role = "buffer"
    __slots__ = ()


def require_role(name: str, key: object, roles: Tuple[Type[RoleKey], ...]) -> None:
    """Reject a handle of the wrong role

    Raises:
        TypeError: If `key` is not an instance of one of `roles`
    """
    if not isinstance(key, roles):
        expected = " or ".join(r.__name__ for r in roles)
        raise TypeError(f"{name} must be a {expected}, got {type(key).__name__}")
