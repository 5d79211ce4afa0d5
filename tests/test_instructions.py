"""Loader instruction encoding and role checks"""

import struct

import pytest
from solders.keypair import Keypair

from captain.chain.instructions import (
    ChainTransaction,
    DeployWithMaxDataLen,
    SetProgramAuthority,
    UpgradeProgram,
    WriteBuffer,
    encode_buffer_account,
    encode_programdata_account,
    find_programdata_address,
    parse_buffer_account,
    parse_programdata_account,
)
from captain.chain.keys import AuthorityKey, BufferKey, DeployerKey, ProgramKey
from captain.constants import BPF_LOADER_UPGRADEABLE_ID


@pytest.fixture
def keypair():
    return Keypair()


def test_deployer_cannot_sign_an_upgrade(keypair):
    deployer = DeployerKey.from_keypair(keypair)

    with pytest.raises(TypeError, match="AuthorityKey"):
        UpgradeProgram(program=str(Keypair().pubkey()), buffer=str(Keypair().pubkey()),
                       spill=deployer.pubkey, authority=deployer)


def test_authority_cannot_pay_for_a_transaction(keypair):
    authority = AuthorityKey.from_keypair(keypair)
    write = WriteBuffer(buffer=str(Keypair().pubkey()),
                        authority=DeployerKey.from_keypair(Keypair()),
                        offset=0, payload=b"x")

    with pytest.raises(TypeError):
        ChainTransaction([write], fee_payer=authority)


def test_program_authority_may_be_held_by_deployer_after_first_deploy(keypair):
    ix = SetProgramAuthority(program=str(Keypair().pubkey()),
                             current=DeployerKey.from_keypair(keypair),
                             new_authority=str(Keypair().pubkey()))

    assert ix.signers()[0].pubkey == str(keypair.pubkey())

    with pytest.raises(TypeError):
        SetProgramAuthority(program=str(Keypair().pubkey()),
                            current=BufferKey.from_keypair(keypair),
                            new_authority=str(Keypair().pubkey()))


def test_write_encoding():
    ix = WriteBuffer(buffer=str(Keypair().pubkey()),
                     authority=DeployerKey.from_keypair(Keypair()),
                     offset=256, payload=b"\x01\x02\x03")

    assert ix.data() == struct.pack("<IIQ", 1, 256, 3) + b"\x01\x02\x03"
    encoded = ix.to_solders()
    assert str(encoded.program_id) == BPF_LOADER_UPGRADEABLE_ID
    assert encoded.accounts[1].is_signer


def test_deploy_encoding_and_programdata_address():
    program = ProgramKey.from_keypair(Keypair())
    deployer = DeployerKey.from_keypair(Keypair())
    ix = DeployWithMaxDataLen(payer=deployer, program=program,
                              buffer=str(Keypair().pubkey()),
                              authority=deployer, max_data_len=2048)

    assert ix.data() == struct.pack("<IQ", 2, 2048)
    assert ix.programdata == find_programdata_address(program.pubkey)
    assert ix.accounts()[1][0] == ix.programdata


def test_transaction_signers_are_unique(keypair):
    deployer = DeployerKey.from_keypair(keypair)
    program = ProgramKey.from_keypair(Keypair())
    deploy = DeployWithMaxDataLen(payer=deployer, program=program,
                                  buffer=str(Keypair().pubkey()),
                                  authority=deployer, max_data_len=10)

    signers = ChainTransaction([deploy], fee_payer=deployer).signers()

    assert [s.pubkey for s in signers] == [deployer.pubkey]


def test_empty_transaction_is_rejected(keypair):
    with pytest.raises(ValueError):
        ChainTransaction([], fee_payer=DeployerKey.from_keypair(keypair))


def test_account_layouts():
    authority = str(Keypair().pubkey())

    buffer = parse_buffer_account(encode_buffer_account(authority, b"code"))
    programdata = parse_programdata_account(encode_programdata_account(7, None, b"abc"))

    assert buffer.authority == authority
    assert buffer.payload == b"code"
    assert programdata.slot == 7
    assert programdata.authority is None
    assert programdata.capacity == 3


def test_wrong_layout_is_rejected():
    with pytest.raises(ValueError):
        parse_programdata_account(encode_buffer_account(None, b"code"))
    with pytest.raises(ValueError):
        parse_buffer_account(b"\x01")
