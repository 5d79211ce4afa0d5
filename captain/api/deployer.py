"""Deployer API for deploy and upgrade operations"""

import asyncio
import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple, Union

from ..chain.factory import create_client
from ..core.artifact_versioner import ArtifactVersioner
from ..core.buffer_writer import ProgressCallback
from ..core.config_resolver import ConfigResolver
from ..core.deployment_ledger import DeploymentLedger
from ..core.key_vault import KeyVault
from ..core.orchestrator import (
    DeploymentOrchestrator,
    OPERATION_DEPLOY,
    OPERATION_UPGRADE,
    verify_onchain,
)
from ..core.session_store import SessionStore
from ..models import DeploymentRecord, DeployResult
from ..utils.async_utils import run_async

logger = logging.getLogger(__name__)


class Deployer:
    """Deploys and upgrades the programs of one project

    Each call handles one (program, network) pair with its own keys, client
    and state; `deploy_many_async` runs several pairs concurrently.
    """

    def __init__(self,
                 resolver: Optional[ConfigResolver] = None,
                 manifest_path: Optional[Union[str, Path]] = None,
                 start_path: Optional[Union[str, Path]] = None):
        """
        Initialize deployer

        Args:
            resolver: Loaded project configuration
            manifest_path: Manifest to load when no resolver is given
            start_path: Directory to search for the manifest from
        """
        self.resolver = resolver or ConfigResolver.load(manifest_path, start_path)
        self.path_resolver = self.resolver.path_resolver
        self.ledger = DeploymentLedger(
            self.path_resolver.get_deployments_dir(),
            locks_dir=self.path_resolver.get_locks_dir(),
        )
        self.sessions = SessionStore(self.path_resolver.get_sessions_dir())
        self.versioner = ArtifactVersioner(self.resolver.project_root)
        self.last_result: Optional[DeployResult] = None

    def deploy(self,
               program: str,
               network: str,
               version: Optional[str] = None,
               artifact_path: Optional[Union[str, Path]] = None,
               progress: Optional[ProgressCallback] = None) -> DeployResult:
        """
        Deploy a program for the first time

        Re-running with an unchanged binary completes as a no-op.

        Args:
            program: Program name
            network: Network name
            version: Version label (otherwise read from Cargo.toml)
            artifact_path: Binary to deploy instead of the build output
            progress: Called with (bytes_written, total_size)

        Returns:
            DeployResult: Operation result

        Raises:
            CaptainError: If the operation aborts; `last_result` holds the
                partial result
        """
        return run_async(self.deploy_async(program, network, version, artifact_path, progress))

    def upgrade(self,
                program: str,
                network: str,
                version: Optional[str] = None,
                artifact_path: Optional[Union[str, Path]] = None,
                authority_keypair: Optional[Union[str, Path]] = None,
                progress: Optional[ProgressCallback] = None) -> DeployResult:
        """
        Upgrade a deployed program in place

        Args:
            program: Program name
            network: Network name
            version: Version label (otherwise read from Cargo.toml)
            artifact_path: Binary to deploy instead of the build output
            authority_keypair: Keypair that signs the upgrade instead of the
                configured authority
            progress: Called with (bytes_written, total_size)

        Returns:
            DeployResult: Operation result
        """
        return run_async(self.upgrade_async(program, network, version, artifact_path,
                                            authority_keypair, progress))

    async def deploy_async(self,
                           program: str,
                           network: str,
                           version: Optional[str] = None,
                           artifact_path: Optional[Union[str, Path]] = None,
                           progress: Optional[ProgressCallback] = None) -> DeployResult:
        return await self._run(OPERATION_DEPLOY, program, network, version,
                               artifact_path, None, progress)

    async def upgrade_async(self,
                            program: str,
                            network: str,
                            version: Optional[str] = None,
                            artifact_path: Optional[Union[str, Path]] = None,
                            authority_keypair: Optional[Union[str, Path]] = None,
                            progress: Optional[ProgressCallback] = None) -> DeployResult:
        return await self._run(OPERATION_UPGRADE, program, network, version,
                               artifact_path, authority_keypair, progress)

    async def deploy_many_async(self,
                                pairs: Iterable[Tuple[str, str]],
                                operation: str = OPERATION_DEPLOY
                                ) -> List[Union[DeployResult, Exception]]:
        """
        Run one operation for several (program, network) pairs concurrently

        A failing pair does not cancel the others.

        Returns:
            One result or exception per pair, in input order
        """
        tasks = [
            self._run(operation, program, network, None, None, None, None)
            for program, network in pairs
        ]
        return await asyncio.gather(*tasks, return_exceptions=True)

    async def _run(self,
                   operation: str,
                   program: str,
                   network: str,
                   version: Optional[str],
                   artifact_path: Optional[Union[str, Path]],
                   authority_keypair: Optional[Union[str, Path]],
                   progress: Optional[ProgressCallback]) -> DeployResult:
        target = self.resolver.resolve(program, network, artifact_path)
        vault = KeyVault(target, authority_override=authority_keypair)
        artifact = await self.versioner.load_artifact(target.artifact_path, program, version)

        logger.info(f"{operation.capitalize()} {program} to {network} "
                    f"({artifact.size} bytes, {artifact.short_hash})")

        async with create_client(target.network, target.settings) as client:
            orchestrator = DeploymentOrchestrator(
                target, vault, client, self.ledger, self.sessions, progress
            )
            try:
                return await orchestrator.run(artifact, operation, _resume_options(
                    version, artifact_path, authority_keypair))
            finally:
                if orchestrator.result is not None:
                    self.last_result = orchestrator.result

    def status(self, network: Optional[str] = None) -> List[DeploymentRecord]:
        """
        List deployment records

        Args:
            network: Only this network

        Returns:
            Records ordered by network and program
        """
        if network is not None:
            self.resolver.resolve_network(network)
        return run_async(self.ledger.list_records(network))

    def verify(self, network: Optional[str] = None) -> Dict[str, bool]:
        """
        Compare recorded content hashes against the deployed code

        Returns:
            Mapping of "<network>:<program>" to whether the chain matches
        """
        return run_async(self.verify_async(network))

    async def verify_async(self, network: Optional[str] = None) -> Dict[str, bool]:
        if network is not None:
            self.resolver.resolve_network(network)
        records = await self.ledger.list_records(network)

        results = {}
        by_network: Dict[str, List[DeploymentRecord]] = {}
        for record in records:
            by_network.setdefault(record.network, []).append(record)

        for network_name, network_records in by_network.items():
            network_config = self.resolver.resolve_network(network_name)
            async with create_client(network_config, self.resolver.manifest.deploy) as client:
                for record in network_records:
                    matches = await verify_onchain(client, record)
                    if not matches:
                        logger.warning(f"{record.program} on {network_name} does not match "
                                       f"its deployment record")
                    results[record.key] = matches
        return results


def _resume_options(version: Optional[str],
                    artifact_path: Optional[Union[str, Path]],
                    authority_keypair: Optional[Union[str, Path]]) -> Dict[str, str]:
    options = {
        "version": version,
        "artifact": str(artifact_path) if artifact_path else None,
        "authority-keypair": str(authority_keypair) if authority_keypair else None,
    }
    return {name: value for name, value in options.items() if value}
