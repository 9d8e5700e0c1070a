"""
Artifact store: one directory per pipeline stage under <workspace>/sdlc-artifacts.

Each (stage, name) pair maps to at most one current file. A stage's
generation phase starts by resetting its namespace so nothing from a previous
run survives; its publish phase reuses whatever generation left behind.

read() returns None for an absent artifact; require() raises MissingArtifact.
Callers pick whichever semantics they need.
"""

import json
import logging
import shutil
from functools import lru_cache
from pathlib import Path

import jsonschema

from sdlcflow.lib.constants import STAGE_ORDER
from sdlcflow.runner.stages import MissingArtifact, StageError

logger = logging.getLogger(__name__)

SCHEMAS_DIR = Path(__file__).parent.parent / "schemas"


class SchemaError(Exception):
    """A payload does not match its JSON schema."""

    def __init__(self, schema: str, message: str, where: str = "(root)"):
        self.schema = schema
        self.where = where
        super().__init__(f"[{schema}] {message} at {where}")


@lru_cache(maxsize=None)
def _schema(name: str) -> dict:
    path = SCHEMAS_DIR / f"{name}.schema.json"
    if not path.is_file():
        raise SchemaError(name, f"no schema file {path}")
    return json.loads(path.read_text())


def check_schema(data: dict, schema: str) -> None:
    """Raise SchemaError unless data matches schemas/<schema>.schema.json.

    Agent payloads are checked before the pipeline acts on them, and the
    pipeline's own records before they are written.
    """
    try:
        jsonschema.validate(instance=data, schema=_schema(schema))
    except jsonschema.ValidationError as e:
        where = ".".join(str(p) for p in e.absolute_path) or "(root)"
        raise SchemaError(schema, e.message, where) from None


class ArtifactStore:
    """Filesystem-backed stage -> name -> document mapping."""

    def __init__(self, root: Path):
        self.root = Path(root)

    def _check_stage(self, stage: str) -> None:
        if stage not in STAGE_ORDER:
            raise ValueError(f"Unknown stage namespace: {stage}")

    def stage_dir(self, stage: str, *sub: str) -> Path:
        """Directory for a stage (optionally a subdirectory). Not created."""
        self._check_stage(stage)
        return self.root.joinpath(stage, *sub)

    def ensure_dir(self, stage: str, *sub: str) -> Path:
        path = self.stage_dir(stage, *sub)
        path.mkdir(parents=True, exist_ok=True)
        return path

    def path(self, stage: str, name: str) -> Path:
        return self.stage_dir(stage) / name

    def exists(self, stage: str, name: str) -> bool:
        return self.path(stage, name).is_file()

    def reset_namespace(self, stage: str) -> Path:
        """Delete every artifact of a stage and recreate its empty directory."""
        path = self.stage_dir(stage)
        if path.exists():
            logger.info(f"Clearing previous {stage} artifacts in {path}")
            shutil.rmtree(path)
        path.mkdir(parents=True)
        return path

    def write(self, stage: str, name: str, content: str) -> Path:
        path = self.path(stage, name)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
        return path

    def write_json(self, stage: str, name: str, data: dict, schema: str | None = None) -> Path:
        """Write JSON, validating against a schema first when one is given."""
        if schema:
            check_schema(data, schema)
        return self.write(stage, name, json.dumps(data, indent=2) + "\n")

    def read(self, stage: str, name: str) -> str | None:
        """Return artifact content, or None if it does not exist."""
        path = self.path(stage, name)
        if not path.is_file():
            return None
        return path.read_text()

    def require(self, stage: str, name: str, owner: str | None = None) -> str:
        """Return artifact content; raise MissingArtifact if absent.

        Args:
            owner: Stage to attribute the failure to (defaults to `stage`)
        """
        content = self.read(stage, name)
        if content is None:
            raise MissingArtifact(owner or stage, name, self.path(stage, name))
        return content

    def require_all(self, stage: str, names: list[str], owner: str | None = None) -> list[Path]:
        """Check a stage's output contract; raise MissingArtifact naming every absent file."""
        missing = [name for name in names if not self.exists(stage, name)]
        if missing:
            raise MissingArtifact(
                owner or stage,
                ", ".join(missing),
                self.stage_dir(stage),
                message=f"Agent did not produce {', '.join(missing)} in {self.stage_dir(stage)}",
            )
        return [self.path(stage, name) for name in names]

    def read_json(self, stage: str, name: str, schema: str | None = None,
                  owner: str | None = None) -> dict:
        """Read a required JSON artifact and validate it structurally."""
        content = self.require(stage, name, owner)
        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            raise StageError(owner or stage, f"{name} is not valid JSON: {e}",
                             details={"path": str(self.path(stage, name))}) from None
        if schema:
            try:
                check_schema(data, schema)
            except SchemaError as e:
                raise StageError(owner or stage, f"{name} failed validation: {e}",
                                 details={"path": str(self.path(stage, name))}) from None
        return data

    def list(self, stage: str) -> list[str]:
        """Names of all artifacts currently in a stage namespace (recursive)."""
        path = self.stage_dir(stage)
        if not path.exists():
            return []
        return sorted(str(p.relative_to(path)) for p in path.rglob("*") if p.is_file())
