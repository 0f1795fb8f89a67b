"""Git-backed source workspace for a deployment run."""
import logging
import os
from pathlib import Path
from typing import List, Optional

from git import InvalidGitRepositoryError, NoSuchPathError, Repo

# CI variables consulted when HEAD is detached, in order.
BRANCH_ENV_VARS = ("GITHUB_REF_NAME", "CI_COMMIT_BRANCH", "BRANCH_NAME")


class WorkspaceError(RuntimeError):
    """Raised when the source tree cannot be opened or cloned."""


class SourceWorkspace:
    """
    Source checkout the pipeline builds from.

    Either wraps an existing local checkout (the usual CI case, where the
    runner already fetched the repository) or clones a remote repository
    into a run-scoped directory.

    Usage:
        workspace = SourceWorkspace.open(Path("."))
        sha = workspace.head_sha()
        pom = workspace.get_full_path("pom.xml")
    """

    def __init__(self, repo: Repo):
        self.repo = repo
        self.logger = logging.getLogger(__name__)

    @classmethod
    def open(cls, path: Path) -> "SourceWorkspace":
        try:
            repo = Repo(str(path), search_parent_directories=True)
        except (InvalidGitRepositoryError, NoSuchPathError) as exc:
            raise WorkspaceError(f"{path} is not inside a git repository") from exc
        if repo.bare:
            raise WorkspaceError(f"{path} is a bare repository; a working tree is required")
        return cls(repo)

    @classmethod
    def clone(cls, repo_url: str, destination: Path, branch: Optional[str] = None) -> "SourceWorkspace":
        logger = logging.getLogger(__name__)
        destination.mkdir(parents=True, exist_ok=True)
        logger.info("Cloning %s (branch=%s) to %s", repo_url, branch or "default", destination)
        kwargs = {"depth": 1}
        if branch:
            kwargs["branch"] = branch
        try:
            repo = Repo.clone_from(repo_url, str(destination), **kwargs)
        except Exception as exc:
            raise WorkspaceError(f"Failed to clone {repo_url}: {exc}") from exc
        return cls(repo)

    @property
    def root(self) -> Path:
        return Path(self.repo.working_tree_dir).resolve()

    def head_sha(self) -> str:
        """Full commit identifier of HEAD."""
        try:
            return self.repo.head.commit.hexsha
        except ValueError as exc:
            raise WorkspaceError("Repository has no commits") from exc

    def current_branch(self) -> Optional[str]:
        """Checked-out branch name; detached HEAD falls back to CI variables."""
        if not self.repo.head.is_detached:
            return self.repo.active_branch.name

        for env_name in BRANCH_ENV_VARS:
            value = os.environ.get(env_name)
            if value:
                self.logger.debug("Detached HEAD, branch taken from %s=%s", env_name, value)
                return value
        return None

    def is_dirty(self) -> bool:
        return self.repo.is_dirty(untracked_files=False)

    def get_full_path(self, relative_path: str) -> Path:
        return self.root / relative_path

    def glob(self, pattern: str) -> List[Path]:
        return sorted(path for path in self.root.glob(pattern) if path.is_file())
