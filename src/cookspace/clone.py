"""Repository specs and the clone tasks built from them."""
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence

from cookspace.tasks import Task, TaskOutcome, TaskResult

GITHUB_URL = "https://github.com/{owner}/{name}.git"
CLEANUP_OUTCOMES = (TaskOutcome.ABORTED, TaskOutcome.SKIPPED)


@dataclass(frozen=True)
class RepoSpec:
    """A repository to check out: owner/name, optional branch, target dir."""
    spec: str
    owner: str
    name: str
    branch: Optional[str] = None
    dir: str = ""

    @property
    def slug(self) -> str:
        return f"{self.owner}/{self.name}"

    @property
    def url(self) -> str:
        return GITHUB_URL.format(owner=self.owner, name=self.name)


def parse_repo_spec(spec: str) -> RepoSpec:
    """Parse 'owner/repo' or 'owner/repo:branch'.

    Raises:
        ValueError: if the spec has no owner or name
    """
    repo_path, sep, branch = spec.partition(":")
    owner, slash, name = repo_path.partition("/")
    if not slash or not owner or not name or "/" in name:
        raise ValueError(f"Invalid repo format: {spec} (expected owner/repo or owner/repo:branch)")
    if sep and not branch:
        raise ValueError(f"Invalid repo format: {spec} (empty branch)")

    return RepoSpec(spec=spec, owner=owner, name=name, branch=branch or None, dir=name)


def clone_command(repo: RepoSpec, target_dir: Path) -> List[str]:
    """Shallow single-branch clone with progress output."""
    command = ["git", "clone", "--depth", "1", "--single-branch"]
    if repo.branch:
        command += ["--branch", repo.branch]
    command += ["--progress", repo.url, str(target_dir)]
    return command


def repos_to_tasks(repos: Sequence[RepoSpec], session_path: Path) -> List[Task]:
    """One clone task per repo, in the same order as `repos`."""
    session_path = Path(session_path)
    return [
        Task(
            label=f"Cloning {repo.slug}",
            command=clone_command(repo, session_path / repo.dir),
            working_directory=str(session_path),
        )
        for repo in repos
    ]


def cleanup_partial_clones(
    repos: Sequence[RepoSpec],
    results: Sequence[TaskResult],
    session_path: Path,
) -> List[Path]:
    """
    Remove checkouts left behind by aborted or skipped clones.

    Results are matched to repos by position (run_batch keeps them 1:1).

    Returns:
        The directories that were removed
    """
    removed = []
    for repo, result in zip(repos, results):
        if result.outcome not in CLEANUP_OUTCOMES:
            continue
        target = Path(session_path) / repo.dir
        if target.exists():
            shutil.rmtree(target, ignore_errors=True)
            removed.append(target)
    return removed


def successful_repos(repos: Sequence[RepoSpec], results: Sequence[TaskResult]) -> List[RepoSpec]:
    """Repos whose clone finished successfully."""
    return [
        repo for repo, result in zip(repos, results)
        if result.outcome is TaskOutcome.COMPLETED
    ]
