"""Shared fixtures: a project on an in-memory cluster with real keypairs"""

import uuid
from pathlib import Path

import pytest
import yaml
from solders.keypair import Keypair

from captain.chain.memory import MemoryChainClient
from captain.constants import LAMPORTS_PER_SOL
from captain.core.config_resolver import ConfigResolver
from captain.core.key_vault import write_keypair

PROGRAM = "counter"
NETWORK = "memnet"
CHUNK_SIZE = 128


def make_payload(size: int, seed: int = 1) -> bytes:
    """Deterministic, non-repeating program bytes"""
    return bytes((i * 31 + seed * 7 + (i >> 8)) % 256 for i in range(size))


class Project:
    """Test project rooted in a temporary directory"""

    def __init__(self, root: Path, cluster_name: str):
        self.root = root.resolve()
        self.cluster_name = cluster_name
        self.manifest_path = self.root / ".captain.yaml"
        self.deployer_path = self.root / ".captain" / "deployers" / NETWORK / "deployer.json"
        self.authority_path = self.root / "keys" / "authority.json"
        self.deployer = self.write_key(self.deployer_path)
        self.authority = self.write_key(self.authority_path)
        self.data = {
            "version": "1.0",
            "project": {"name": "demo"},
            "networks": {
                NETWORK: {
                    "url": f"memory://{cluster_name}?airdrop=100",
                    "deployer": str(self.deployer_path.relative_to(self.root)),
                    "upgrade_authority": str(self.authority_path.relative_to(self.root)),
                    "programs": {},
                },
            },
            "deploy": {
                "chunk_size": CHUNK_SIZE,
                "retry": {"max_attempts": 3, "retry_delay": 0, "max_retry_delay": 0},
                "timeouts": {"transaction": 5, "confirmation": 5},
            },
        }
        self.save()

    @staticmethod
    def write_key(path: Path) -> Keypair:
        keypair = Keypair()
        path.parent.mkdir(parents=True, exist_ok=True)
        write_keypair(path, keypair)
        return keypair

    @property
    def network(self) -> dict:
        return self.data["networks"][NETWORK]

    @property
    def cluster(self):
        return MemoryChainClient.get_cluster(self.cluster_name, 100 * LAMPORTS_PER_SOL)

    def save(self) -> None:
        self.manifest_path.write_text(yaml.dump(self.data, sort_keys=False))

    def write_binary(self, payload: bytes, program: str = PROGRAM) -> Path:
        path = self.root / "target" / "deploy" / f"{program}.so"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(payload)
        return path

    def resolver(self) -> ConfigResolver:
        return ConfigResolver.load(self.manifest_path)

    def deployer_api(self):
        from captain.api.deployer import Deployer
        return Deployer(self.resolver())

    def record_path(self, program: str = PROGRAM, network: str = NETWORK) -> Path:
        return self.root / "deployments" / network / f"{program}.json"

    def session_path(self, program: str = PROGRAM, network: str = NETWORK) -> Path:
        return self.root / ".captain" / "state" / "sessions" / network / f"{program}.json"


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    MemoryChainClient.reset_clusters()
    monkeypatch.delenv("CAPTAIN_MANIFEST", raising=False)
    monkeypatch.delenv("UPGRADE_AUTHORITY_KEYPAIR", raising=False)
    monkeypatch.delenv("CAPTAIN_LOG_LEVEL", raising=False)
    yield
    MemoryChainClient.reset_clusters()


@pytest.fixture
def project(tmp_path):
    root = tmp_path / "project"
    root.mkdir()
    return Project(root, f"test-{uuid.uuid4().hex[:8]}")


@pytest.fixture
def payload():
    return make_payload(1000)
