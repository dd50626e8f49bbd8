"""
Read the project list out of a Visual Studio solution (.sln) file.
"""
from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Dict

from pydantic import BaseModel, Field

from feed_manager.domain.errors import ConfigurationError
from feed_manager.domain.models import PathLike

logger = logging.getLogger(__name__)

# Project("{type-guid}") = "Name", "relative\path.csproj", "{project-guid}"
_PROJECT_PATH = re.compile(r',\s*"([^"]+)"')


class SolutionScan(BaseModel):
    solution_path: str = Field(description="Absolute path of the scanned solution file")
    projects: Dict[str, str] = Field(
        default_factory=dict,
        description="Display name -> project path relative to the solution directory",
    )

    @property
    def solution_dir(self) -> Path:
        return Path(self.solution_path).parent


def scan_solution(path: PathLike) -> Dict[str, str]:
    """
    Map display names to the relative paths of the solution's C# projects.

    The display name is the project file name without extension. Repeated
    names get `` (2)``, `` (3)``, ... appended in file order.
    """
    solution = Path(path)
    try:
        lines = solution.read_text(encoding="utf-8-sig", errors="replace").splitlines()
    except OSError as e:
        raise ConfigurationError(f"Cannot read solution file {solution}: {e}", config_file=str(solution)) from e

    projects: Dict[str, str] = {}
    for line in lines:
        line = line.strip()
        if not line.startswith("Project(") or ', "' not in line:
            continue
        match = _PROJECT_PATH.search(line)
        if not match:
            continue
        rel_path = match.group(1)
        if not rel_path.lower().endswith(".csproj"):
            continue

        stem = Path(rel_path.replace("\\", "/")).stem
        name = stem
        n = 2
        while name in projects:
            name = f"{stem} ({n})"
            n += 1
        projects[name] = rel_path

    logger.info(f"Found {len(projects)} project(s) in {solution}")
    return projects


def load_solution(path: PathLike) -> SolutionScan:
    solution = Path(path).resolve()
    return SolutionScan(solution_path=str(solution), projects=scan_solution(solution))


def resolve_project_path(solution_dir: PathLike, rel_path: str) -> Path:
    """Absolute path of a project listed in a solution."""
    return (Path(solution_dir) / rel_path.replace("\\", "/")).resolve()
