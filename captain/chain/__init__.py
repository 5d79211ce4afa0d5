# captain/chain/__init__.py
"""Cluster clients and loader instructions"""

from .keys import RoleKey, DeployerKey, AuthorityKey, ProgramKey, BufferKey, require_role
from .instructions import (
    ChainInstruction,
    ChainTransaction,
    CreateAccount,
    InitializeBuffer,
    WriteBuffer,
    DeployWithMaxDataLen,
    UpgradeProgram,
    SetBufferAuthority,
    SetProgramAuthority,
    CloseBuffer,
    BufferState,
    ProgramDataState,
    find_programdata_address,
    parse_buffer_account,
    parse_program_account,
    parse_programdata_account,
)
from .base import ChainClient, AccountInfo
from .rpc import RpcChainClient
from .memory import MemoryChainClient, MemoryCluster, instruction_matches
from .factory import ChainClientFactory, create_client

__all__ = [
    # Keys
    'RoleKey',
    'DeployerKey',
    'AuthorityKey',
    'ProgramKey',
    'BufferKey',
    'require_role',

    # Instructions
    'ChainInstruction',
    'ChainTransaction',
    'CreateAccount',
    'InitializeBuffer',
    'WriteBuffer',
    'DeployWithMaxDataLen',
    'UpgradeProgram',
    'SetBufferAuthority',
    'SetProgramAuthority',
    'CloseBuffer',
    'BufferState',
    'ProgramDataState',
    'find_programdata_address',
    'parse_buffer_account',
    'parse_program_account',
    'parse_programdata_account',

    # Clients
    'ChainClient',
    'AccountInfo',
    'RpcChainClient',
    'MemoryChainClient',
    'MemoryCluster',
    'instruction_matches',
    'ChainClientFactory',
    'create_client',
]
