"""
Capability catalog.

The catalog is the durable registry of synthesized capabilities: one SQLite
row per capability plus a directory of source files. It owns the lifecycle
state machine:

    building ──register──> active ──disable──> disabled ──enable──> active
        │                    │
        └──fail──> failed    └──register──> active (version + 1)

Only active capabilities are exposed as tools or may be executed. Nothing
is deleted implicitly; delete() exists for explicit administrative use.
"""

import json
import shutil
import sqlite3
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

import structlog

from toolsmith.errors import (
    CapabilityExistsError,
    CapabilityNotFoundError,
    InvalidCapabilityNameError,
    InvalidTransitionError,
)
from toolsmith.schema import (
    ALLOWED_TRANSITIONS,
    CAPABILITY_NAME_PATTERN,
    Capability,
    CapabilityFiles,
    CapabilityManifest,
    CapabilityStatus,
    RequiredSecret,
    ToolSpec,
)
from toolsmith.store.db import ToolsmithDB, dumps, generate_id, now_iso

logger = structlog.get_logger(__name__)

CAPABILITY_DESCRIPTION_PREFIX = "[Capability] "

MAIN_FILE = "main.py"
REQUIREMENTS_FILE = "requirements.txt"
MANIFEST_FILE = "manifest.json"
RUN_FILE = "RUN.md"


@dataclass(frozen=True)
class CatalogSnapshot:
    """Immutable view of the active capabilities at one point in time."""

    capabilities: tuple[Capability, ...] = ()

    def names(self) -> list[str]:
        """Names of the capabilities in the snapshot."""
        return [cap.name for cap in self.capabilities]


class CapabilityCatalog:
    """
    CRUD and lifecycle operations over the capabilities table.

    Usage:
        catalog = CapabilityCatalog(db, config.capabilities_dir)
        cap = catalog.create("weather_lookup", "Current weather for a city")
        catalog.register("weather_lookup", description, main_py=code)
        catalog.snapshot()  # -> CatalogSnapshot of active capabilities
    """

    def __init__(self, db: ToolsmithDB, capabilities_dir: str | Path) -> None:
        self.db = db
        self.capabilities_dir = Path(capabilities_dir)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get(self, capability_id: str) -> Capability | None:
        """Get a capability by id."""
        row = self.db.query_one(
            "SELECT * FROM capabilities WHERE id = ?", (capability_id,), operation="get_capability"
        )
        return _row_to_capability(row) if row else None

    def get_by_name(self, name: str) -> Capability | None:
        """Get a capability by its unique name."""
        row = self.db.query_one(
            "SELECT * FROM capabilities WHERE name = ?", (name,), operation="get_capability_by_name"
        )
        return _row_to_capability(row) if row else None

    def require(self, capability_id: str) -> Capability:
        """Get a capability by id or raise CapabilityNotFoundError."""
        cap = self.get(capability_id)
        if cap is None:
            raise CapabilityNotFoundError(capability=capability_id)
        return cap

    def list_capabilities(self, status: CapabilityStatus | None = None) -> list[Capability]:
        """
        List capabilities.

        Args:
            status: Only return capabilities in this state (sorted by name).
                    Without a filter, newest first.
        """
        if status is not None:
            rows = self.db.query(
                "SELECT * FROM capabilities WHERE status = ? ORDER BY name",
                (CapabilityStatus(status).value,),
                operation="list_capabilities",
            )
        else:
            rows = self.db.query(
                "SELECT * FROM capabilities ORDER BY created_at DESC, name",
                operation="list_capabilities",
            )
        return [_row_to_capability(row) for row in rows]

    def search(self, query: str, limit: int = 10) -> list[Capability]:
        """Case-insensitive substring search over active names and descriptions."""
        pattern = f"%{_escape_like(query)}%"
        rows = self.db.query(
            """
            SELECT * FROM capabilities
            WHERE status = 'active'
              AND (name LIKE ? ESCAPE '\\' OR description LIKE ? ESCAPE '\\')
            ORDER BY name
            LIMIT ?
            """,
            (pattern, pattern, limit),
            operation="search_capabilities",
        )
        return [_row_to_capability(row) for row in rows]

    def snapshot(self) -> CatalogSnapshot:
        """Take an immutable snapshot of the active capabilities."""
        return CatalogSnapshot(tuple(self.list_capabilities(CapabilityStatus.ACTIVE)))

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def create(
        self,
        name: str,
        description: str,
        input_schema: dict[str, Any] | None = None,
        output_schema: dict[str, Any] | None = None,
        tags: list[str] | None = None,
    ) -> Capability:
        """
        Create a new catalog entry in the building state.

        Raises:
            InvalidCapabilityNameError: If name is not snake_case
            CapabilityExistsError: If the name is already taken
        """
        if not CAPABILITY_NAME_PATTERN.match(name):
            raise InvalidCapabilityNameError(capability=name)

        capability_id = generate_id()
        path = self.capabilities_dir / capability_id
        now = now_iso()
        with self.db.transaction():
            if self.get_by_name(name) is not None:
                raise CapabilityExistsError(capability=name)
            self.db.execute(
                """
                INSERT INTO capabilities (
                    id, name, description, version, status, input_schema,
                    output_schema, tags, path, created_at, updated_at
                ) VALUES (?, ?, ?, 1, 'building', ?, ?, ?, ?, ?, ?)
                """,
                (
                    capability_id,
                    name,
                    description,
                    dumps(input_schema or {}),
                    dumps(output_schema or {}),
                    dumps(tags or []),
                    str(path),
                    now,
                    now,
                ),
                operation="create_capability",
            )
        path.mkdir(parents=True, exist_ok=True)
        logger.info("catalog.created", capability_id=capability_id, name=name)
        return self.require(capability_id)

    def set_status(self, capability_id: str, status: CapabilityStatus) -> Capability:
        """
        Move a capability to a new lifecycle state.

        Raises:
            CapabilityNotFoundError: Unknown id
            InvalidTransitionError: Transition not allowed from the current state
        """
        status = CapabilityStatus(status)
        with self.db.transaction():
            cap = self.require(capability_id)
            if status not in ALLOWED_TRANSITIONS[cap.status]:
                raise InvalidTransitionError(
                    capability=cap.name,
                    from_status=cap.status.value,
                    to_status=status.value,
                )
            self.db.execute(
                "UPDATE capabilities SET status = ?, updated_at = ? WHERE id = ?",
                (status.value, now_iso(), capability_id),
                operation="set_capability_status",
            )
        logger.info(
            "catalog.status_changed",
            capability_id=capability_id,
            name=cap.name,
            from_status=cap.status.value,
            to_status=status.value,
        )
        return self.require(capability_id)

    def update(
        self,
        capability_id: str,
        description: str | None = None,
        input_schema: dict[str, Any] | None = None,
        output_schema: dict[str, Any] | None = None,
        tags: list[str] | None = None,
    ) -> Capability:
        """Overwrite metadata and bump the version. Omitted fields are kept."""
        with self.db.transaction():
            cap = self.require(capability_id)
            self.db.execute(
                """
                UPDATE capabilities
                SET description = ?, input_schema = ?, output_schema = ?, tags = ?,
                    version = version + 1, updated_at = ?
                WHERE id = ?
                """,
                (
                    cap.description if description is None else description,
                    dumps(cap.input_schema if input_schema is None else input_schema),
                    dumps(cap.output_schema if output_schema is None else output_schema),
                    dumps(cap.tags if tags is None else tags),
                    now_iso(),
                    capability_id,
                ),
                operation="update_capability",
            )
        return self.require(capability_id)

    def register(
        self,
        name: str,
        description: str,
        main_py: str,
        requirements_txt: str = "",
        input_schema: dict[str, Any] | None = None,
        tags: list[str] | None = None,
        required_secrets: list[RequiredSecret] | None = None,
    ) -> Capability:
        """
        Finalize a capability: store its code and make it active.

        Registration is idempotent per name. Registering again overwrites the
        description, schema, tags and code, and increments the version.

        Files are written to a staging directory and moved into place only
        after the catalog row commits; a failed registration leaves the
        previous files untouched.

        Raises:
            CapabilityNotFoundError: If no catalog entry has this name
            InvalidTransitionError: If the capability cannot become active
        """
        staging: Path | None = None
        try:
            with self.db.transaction():
                cap, updated, staging = self._register_row(
                    name, description, main_py, requirements_txt, input_schema, tags,
                    required_secrets,
                )
        except BaseException:
            if staging is not None:
                shutil.rmtree(staging, ignore_errors=True)
            raise
        self._swap_in(staging, Path(cap.path))
        logger.info(
            "catalog.registered", capability_id=cap.id, name=name, version=updated.version
        )
        return self.require(cap.id)

    def _register_row(
        self,
        name: str,
        description: str,
        main_py: str,
        requirements_txt: str,
        input_schema: dict[str, Any] | None,
        tags: list[str] | None,
        required_secrets: list[RequiredSecret] | None,
    ) -> tuple[Capability, Capability, Path]:
        """Activate the row and stage its files. Runs inside register's transaction."""
        cap = self.get_by_name(name)
        if cap is None:
            raise CapabilityNotFoundError(
                capability=name,
                message=(
                    f'Capability "{name}" not found in catalog. '
                    "Was request_capability called first?"
                ),
            )
        if CapabilityStatus.ACTIVE not in ALLOWED_TRANSITIONS[cap.status]:
            raise InvalidTransitionError(
                capability=name,
                from_status=cap.status.value,
                to_status=CapabilityStatus.ACTIVE.value,
            )
        schema = input_schema if input_schema is not None else cap.input_schema
        updated = self.update(
            cap.id,
            description=description,
            input_schema=schema,
            tags=tags if tags is not None else cap.tags,
        )
        self.db.execute(
            "UPDATE capabilities SET status = 'active', updated_at = ? WHERE id = ?",
            (now_iso(), cap.id),
            operation="activate_capability",
        )
        manifest = CapabilityManifest(
            name=name,
            description=description,
            version=updated.version,
            input_schema=schema,
            required_secrets=required_secrets or [],
            created_at=updated.created_at,
            updated_at=updated.updated_at,
        )
        staging = self._stage_files(
            Path(cap.path),
            CapabilityFiles(
                main_py=main_py,
                requirements_txt=requirements_txt,
                manifest_json=manifest.model_dump_json(indent=2),
                run_md=render_run_md(name, description, schema, required_secrets or []),
            ),
        )
        return cap, updated, staging

    def disable(self, capability_id: str) -> Capability:
        """Take a capability out of service."""
        return self.set_status(capability_id, CapabilityStatus.DISABLED)

    def enable(self, capability_id: str) -> Capability:
        """Return a disabled capability to service."""
        return self.set_status(capability_id, CapabilityStatus.ACTIVE)

    def mark_failed(self, capability_id: str) -> Capability:
        """Mark a capability whose build did not complete."""
        return self.set_status(capability_id, CapabilityStatus.FAILED)

    def delete(self, capability_id: str) -> bool:
        """
        Delete a capability, its files, secrets and storage.

        Returns True if the capability existed.
        """
        cap = self.get(capability_id)
        if cap is None:
            return False
        self.db.execute(
            "DELETE FROM capabilities WHERE id = ?", (capability_id,), operation="delete_capability"
        )
        shutil.rmtree(cap.path, ignore_errors=True)
        logger.info("catalog.deleted", capability_id=capability_id, name=cap.name)
        return True

    # -------------------------------------------------------------------------
    # Files
    # -------------------------------------------------------------------------

    def save_files(self, capability_id: str, files: CapabilityFiles) -> None:
        """Write the capability's source files to its directory."""
        _write_files(Path(self.require(capability_id).path), files)

    def _stage_files(self, path: Path, files: CapabilityFiles) -> Path:
        """Write files into a fresh directory beside path; return it."""
        staging = path.with_name(f".{path.name}.staging-{generate_id()}")
        try:
            _write_files(staging, files)
        except OSError:
            shutil.rmtree(staging, ignore_errors=True)
            raise
        return staging

    def _swap_in(self, staging: Path, path: Path) -> None:
        """Replace path with the staged directory."""
        retired = path.with_name(f".{path.name}.retired-{generate_id()}")
        if path.exists():
            path.rename(retired)
        staging.rename(path)
        shutil.rmtree(retired, ignore_errors=True)

    def load_files(self, capability_id: str) -> CapabilityFiles:
        """
        Read the capability's source files.

        Raises:
            CapabilityNotFoundError: Unknown id
            FileNotFoundError: If main.py was never written
        """
        path = Path(self.require(capability_id).path)
        requirements = path / REQUIREMENTS_FILE
        manifest = path / MANIFEST_FILE
        run_md = path / RUN_FILE
        return CapabilityFiles(
            main_py=(path / MAIN_FILE).read_text(encoding="utf-8"),
            requirements_txt=requirements.read_text(encoding="utf-8") if requirements.exists() else "",
            manifest_json=manifest.read_text(encoding="utf-8") if manifest.exists() else None,
            run_md=run_md.read_text(encoding="utf-8") if run_md.exists() else None,
        )

    def load_manifest(self, capability_id: str) -> CapabilityManifest | None:
        """Parse manifest.json, if the capability has been registered."""
        manifest = self.load_files(capability_id).manifest_json
        return CapabilityManifest.model_validate_json(manifest) if manifest else None


def to_tool_spec(cap: Capability) -> ToolSpec:
    """Expose a capability to the model as a cap_-prefixed tool."""
    return ToolSpec(
        name=cap.tool_name,
        description=f"{CAPABILITY_DESCRIPTION_PREFIX}{cap.description}",
        input_schema={
            "type": "object",
            "properties": cap.input_schema.get("properties") or {},
            "required": cap.input_schema.get("required") or [],
        },
    )


def render_run_md(
    name: str,
    description: str,
    input_schema: dict[str, Any],
    required_secrets: list[RequiredSecret],
) -> str:
    """Human-readable documentation stored beside the capability code."""
    lines = [
        f"# {name}",
        "",
        description,
        "",
        "## Usage",
        "",
        "This capability is called automatically by the assistant when relevant.",
        "Its entry point is `run(args, context)` in main.py.",
        "",
        "## Input",
        "",
        "```json",
        json.dumps(input_schema, indent=2),
        "```",
    ]
    if required_secrets:
        lines += ["", "## Secrets", ""]
        lines += [f"- `{s.name}`: {s.description}" for s in required_secrets]
    return "\n".join(lines) + "\n"


def _write_files(path: Path, files: CapabilityFiles) -> None:
    path.mkdir(parents=True, exist_ok=True)
    (path / MAIN_FILE).write_text(files.main_py, encoding="utf-8")
    (path / REQUIREMENTS_FILE).write_text(files.requirements_txt, encoding="utf-8")
    if files.manifest_json is not None:
        (path / MANIFEST_FILE).write_text(files.manifest_json, encoding="utf-8")
    if files.run_md is not None:
        (path / RUN_FILE).write_text(files.run_md, encoding="utf-8")


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _row_to_capability(row: sqlite3.Row) -> Capability:
    return Capability(
        id=row["id"],
        name=row["name"],
        description=row["description"],
        version=row["version"],
        status=CapabilityStatus(row["status"]),
        input_schema=json.loads(row["input_schema"]),
        output_schema=json.loads(row["output_schema"]),
        tags=json.loads(row["tags"]),
        path=row["path"],
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
    )
