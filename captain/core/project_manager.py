# captain/core/project_manager.py
"""Project initialization"""

import logging
from pathlib import Path
from typing import List, Optional

import yaml
from rich.console import Console

from .path_resolver import PathResolver
from ..api.exceptions import ConfigError
from ..constants import PROJECT_CONFIG_FILE
from ..models.config import ProjectManifest

logger = logging.getLogger(__name__)

GITIGNORE_ENTRIES = [
    "# captain",
    ".captain/deployers/",
    ".captain/programs/",
    ".captain/state/",
]


class ProjectManager:
    """Creates new captain projects

    Keys are never generated here; the summary prints the commands that
    create the missing ones.
    """

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()

    def init_project(self,
                     project_path: Path,
                     project_name: Optional[str] = None,
                     force: bool = False) -> Path:
        """Initialize a new project

        Args:
            project_path: Project root directory (created if missing)
            project_name: Project name, defaults to the directory name
            force: Overwrite an existing manifest

        Returns:
            Path to the written manifest

        Raises:
            ConfigError: If the project is already initialized
        """
        project_path = Path(project_path).resolve()
        project_path.mkdir(parents=True, exist_ok=True)

        config_file = project_path / PROJECT_CONFIG_FILE
        if config_file.exists() and not force:
            raise ConfigError(
                f"Project already initialized: {config_file} (use --force to overwrite)"
            )

        manifest = ProjectManifest.empty(project_name or project_path.name)
        self._save_manifest(config_file, manifest)
        self._create_gitignore(project_path)

        resolver = PathResolver(project_path, manifest.paths)
        self._show_init_summary(project_path, manifest, self.missing_deployers(resolver, manifest))
        logger.debug(f"Wrote manifest {config_file}")
        return config_file

    def _save_manifest(self, config_file: Path, manifest: ProjectManifest) -> None:
        with open(config_file, 'w') as f:
            yaml.dump(manifest.to_dict(), f, default_flow_style=False, sort_keys=False)

    def _create_gitignore(self, project_path: Path) -> None:
        """Add key and state directories to .gitignore

        Deployment records and archived artifacts stay under version control.
        """
        gitignore = project_path / ".gitignore"
        existing = gitignore.read_text().splitlines() if gitignore.exists() else []
        missing = [line for line in GITIGNORE_ENTRIES if line not in existing]
        if not missing:
            return

        lines = existing + ([""] if existing and existing[-1] else []) + missing
        gitignore.write_text("\n".join(lines) + "\n")

    @staticmethod
    def missing_deployers(resolver: PathResolver, manifest: ProjectManifest) -> List[Path]:
        """Deployer keypair files the manifest references but that do not exist"""
        missing = []
        for network in manifest.networks.values():
            path = resolver.expand_path(network.deployer)
            if not path.exists() and path not in missing:
                missing.append(path)
        return missing

    def _show_init_summary(self, project_path: Path, manifest: ProjectManifest,
                           missing: List[Path]) -> None:
        self.console.print("\n[green]✓ Project initialized successfully![/green]")
        self.console.print(f"\nProject: [cyan]{manifest.project_name}[/cyan]")
        self.console.print(f"Location: {project_path}")
        self.console.print(f"Networks: {', '.join(manifest.network_names())}")

        if missing:
            self.console.print("\n[bold]Create the deployer keys:[/bold]")
            for path in missing:
                self.console.print(f"  mkdir -p {path.parent} && solana-keygen new -o {path}")

        self.console.print("\n[bold]Next steps:[/bold]")
        self.console.print("1. Fund each deployer on its network")
        self.console.print("2. Run 'captain build' to build your programs")
        self.console.print("3. Run 'captain deploy --program <name> --network devnet'")
