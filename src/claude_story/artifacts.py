"""
Per-project artifact directory.

Every project with Claude Code history gets a `.claude-story/` directory
holding its conversation store, the Markdown exports, and a short README.
The directory is added to the project's .gitignore the first time it is
created.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from claude_story.config import settings
from claude_story.exceptions import ArtifactDirectoryError

logger = logging.getLogger(__name__)

README_FILENAME = ".what-is-this.md"

README_TEMPLATE = """# Claude Story Artifacts Directory

This directory is automatically created and maintained by Claude Story to preserve your AI chat history.

## What's Here?

- `{dir_name}/{database}`: SQLite database storing all conversations
- `{dir_name}/{history}/`: Markdown exports of conversations
- Each conversation has a unique ID and is auto-saved

## Usage

Claude Story runs automatically in the background. Your conversations are saved here automatically.

## Integration

Any MCP server can index the markdown files in {history}/ for cross-project search.
"""


@dataclass(frozen=True)
class ProjectArtifacts:
    """Locations of one project's artifacts."""

    project_dir: Path
    root: Path
    database_path: Path
    history_dir: Path


def artifact_paths(
    project_dir: Path, dir_name: Optional[str] = None
) -> ProjectArtifacts:
    """
    Compute artifact locations for a project without touching the disk.

    Args:
        project_dir: The project's working directory
        dir_name: Artifact directory name (defaults to settings)
    """
    root = Path(project_dir) / (dir_name or settings.artifact_dir_name)
    return ProjectArtifacts(
        project_dir=Path(project_dir),
        root=root,
        database_path=root / settings.database_filename,
        history_dir=root / settings.export_dir_name,
    )


def ensure_artifact_dir(
    project_dir: Path, dir_name: Optional[str] = None
) -> ProjectArtifacts:
    """
    Create the artifact directory for a project if needed.

    Scaffolding (the .gitignore entry, then the README) runs whenever the
    README is missing. The README is written last, so a run interrupted
    before it is completed by the next call. Once the README exists, calls
    only make sure the export directory exists.

    Args:
        project_dir: The project's working directory
        dir_name: Artifact directory name (defaults to settings)

    Returns:
        ProjectArtifacts for the project

    Raises:
        ArtifactDirectoryError: If the directories or README cannot be created
    """
    artifacts = artifact_paths(project_dir, dir_name)
    readme_path = artifacts.root / README_FILENAME

    try:
        artifacts.history_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise ArtifactDirectoryError(artifacts.root, str(e)) from e

    if not readme_path.exists():
        add_to_gitignore(artifacts.project_dir, artifacts.root.name)
        readme = README_TEMPLATE.format(
            dir_name=artifacts.root.name,
            database=artifacts.database_path.name,
            history=artifacts.history_dir.name,
        )
        try:
            readme_path.write_text(readme, encoding="utf-8")
        except OSError as e:
            raise ArtifactDirectoryError(artifacts.root, str(e)) from e
        logger.info(f"Created {artifacts.root}")

    return artifacts


def add_to_gitignore(project_dir: Path, dir_name: str) -> bool:
    """
    Append `<dir_name>/` to the project's .gitignore unless already listed.

    Args:
        project_dir: Project root containing (or to contain) .gitignore
        dir_name: Directory name to ignore

    Returns:
        True if the entry was added, False if it was already present or the
        file could not be updated
    """
    gitignore_path = Path(project_dir) / ".gitignore"
    accepted = {dir_name, f"{dir_name}/", f"/{dir_name}", f"/{dir_name}/"}

    try:
        content = ""
        if gitignore_path.exists():
            content = gitignore_path.read_text(encoding="utf-8")

        if any(line.strip() in accepted for line in content.splitlines()):
            return False

        prefix = "" if content == "" or content.endswith("\n") else "\n"
        with open(gitignore_path, "a", encoding="utf-8") as f:
            f.write(f"{prefix}{dir_name}/\n")

    except OSError as e:
        logger.warning(f"Could not update .gitignore in {project_dir}: {e}")
        return False

    logger.info(f"Added {dir_name}/ to .gitignore in {project_dir}")
    return True
