"""Facts read from the repository's git history.

Every helper here degrades to an empty result when git is missing, the path
is not a repository, or the history is empty. History is context for the
report; it never stops a review.
"""

from __future__ import annotations

import logging
import subprocess
from datetime import datetime, timezone
from pathlib import Path

from repolens_core.models import Contributor

logger = logging.getLogger(__name__)

_GIT_TIMEOUT = 30
_FIELD_SEP = "\x1f"


def _run_git(repo_path: Path | str, *args: str) -> str:
    result = subprocess.run(
        ["git", *args],
        capture_output=True,
        text=True,
        timeout=_GIT_TIMEOUT,
        cwd=str(repo_path),
    )
    if result.returncode != 0:
        raise subprocess.SubprocessError(result.stderr.strip())
    return result.stdout


def get_contributors(repo_path: Path | str) -> list[Contributor]:
    """Return one entry per commit author reachable from HEAD, most active first."""
    try:
        output = _run_git(repo_path, "log", "--format=%an%x1f%at", "HEAD")
    except (subprocess.SubprocessError, OSError) as e:
        logger.warning("Could not read contributors from %s: %s", repo_path, e)
        return []

    stats: dict[str, tuple[int, int]] = {}
    for line in output.splitlines():
        if _FIELD_SEP not in line:
            continue
        name, _, ts = line.partition(_FIELD_SEP)
        try:
            timestamp = int(ts)
        except ValueError:
            continue
        latest, count = stats.get(name, (0, 0))
        stats[name] = (max(latest, timestamp), count + 1)

    total = sum(count for _, count in stats.values())
    if not total:
        return []

    contributors = [
        Contributor(
            name=name,
            last_contribution=datetime.fromtimestamp(latest, tz=timezone.utc),
            num_commits=count,
            percentage=int(count / total * 100 + 0.5),
        )
        for name, (latest, count) in stats.items()
    ]
    contributors.sort(key=lambda c: (-c.num_commits, c.name))
    return contributors


def get_total_commits(repo_path: Path | str) -> int:
    try:
        return int(_run_git(repo_path, "rev-list", "--count", "HEAD").strip() or 0)
    except (subprocess.SubprocessError, OSError, ValueError) as e:
        logger.debug("Could not count commits in %s: %s", repo_path, e)
        return 0


def get_file_change_frequency(repo_path: Path | str, relative_path: str, total_commits: int) -> tuple[int, float]:
    """Return ``(commits touching the file, percentage of all commits)``."""
    if total_commits <= 0:
        return 0, 0.0
    try:
        output = _run_git(repo_path, "log", "--format=%H", "HEAD", "--", relative_path)
    except (subprocess.SubprocessError, OSError) as e:
        logger.debug("Could not read history for %s: %s", relative_path, e)
        return 0, 0.0
    file_commits = sum(1 for line in output.splitlines() if line.strip())
    return file_commits, file_commits / total_commits * 100.0
