"""
Project Metadata

Reads and writes the project file (sfdx-project.json) that maps human
package aliases to package and package version ids:

    "packageAliases": {
        "my-pkg": "0Ho...",
        "my-pkg@1.2.0-1": "04t..."
    }

Alias resolution lets every operation accept either an id or an alias.
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

logger = logging.getLogger("project_metadata")

PROJECT_FILE_NAME = "sfdx-project.json"


class ProjectMetadata:
    """
    The persisted project file.

    Loaded eagerly; write() persists the in-memory contents atomically.
    """

    def __init__(self, path: Union[str, Path], contents: Optional[Dict[str, Any]] = None):
        self.path = Path(path)
        self.contents: Dict[str, Any] = contents if contents is not None else {}
        self.contents.setdefault("packageAliases", {})

    @classmethod
    def load(cls, path: Union[str, Path]) -> "ProjectMetadata":
        """Load a project file, or a project directory containing one."""
        path = Path(path)
        if path.is_dir():
            path = path / PROJECT_FILE_NAME
        if not path.exists():
            raise FileNotFoundError(f"Project file not found: {path}")
        with open(path, "r") as f:
            contents = json.load(f)
        logger.debug(f"Loaded project file {path}")
        return cls(path, contents)

    @property
    def package_aliases(self) -> Dict[str, str]:
        return self.contents["packageAliases"]

    def get_package_id_from_alias(self, alias: str) -> Optional[str]:
        return self.package_aliases.get(alias)

    def get_package_aliases_from_id(self, package_id: str) -> List[str]:
        return [alias for alias, value in self.package_aliases.items() if value == package_id]

    def set_package_alias(self, alias: str, package_id: str):
        self.package_aliases[alias] = package_id

    def write(self):
        """Write the project file via a temp file and rename."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=".project-", suffix=".json")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(self.contents, f, indent=2)
                f.write("\n")
            os.replace(tmp_name, self.path)
        except Exception:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
        logger.info(f"Written project file: {self.path}")


def resolve_id_or_alias(id_or_alias: str, project: Optional[ProjectMetadata]) -> str:
    """Return the id an alias points to, or the input unchanged."""
    if project is None:
        return id_or_alias
    return project.get_package_id_from_alias(id_or_alias) or id_or_alias


def version_alias_key(
    package_alias: str,
    major: Optional[int],
    minor: Optional[int],
    patch: Optional[int],
    build: Optional[int] = None,
    branch: Optional[str] = None
) -> str:
    """'<package>@<major>.<minor>.<patch>[-<build>][-<branch>]'"""
    key = f"{package_alias}@{major or 0}.{minor or 0}.{patch or 0}"
    if build:
        key += f"-{build}"
    if branch:
        key += f"-{branch}"
    return key
