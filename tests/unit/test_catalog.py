"""
Unit tests for the capability catalog.

Tests cover:
- Creation and name validation
- Lifecycle transitions
- Registration (files, manifest, version bump, failed re-registration)
- Search, listing and snapshots
- Tool spec conversion
"""

import json
from pathlib import Path

import pytest

from toolsmith.capabilities import catalog as catalog_module
from toolsmith.capabilities.catalog import (
    CapabilityCatalog,
    render_run_md,
    to_tool_spec,
)
from toolsmith.errors import (
    CapabilityExistsError,
    CapabilityNotFoundError,
    InvalidCapabilityNameError,
    InvalidTransitionError,
    StorageWriteError,
)
from toolsmith.schema import CapabilityStatus, RequiredSecret

WEATHER_SCHEMA = {
    "type": "object",
    "properties": {"city": {"type": "string"}},
    "required": ["city"],
}

WEATHER_CODE = "def run(args, context):\n    return {'city': args['city'], 'temp_c': 21}\n"


class TestCreate:
    """Tests for CapabilityCatalog.create."""

    def test_create_building(self, catalog: CapabilityCatalog) -> None:
        cap = catalog.create("weather_lookup", "Current weather for a city")
        assert cap.status == CapabilityStatus.BUILDING
        assert cap.version == 1
        assert cap.name == "weather_lookup"
        assert Path(cap.path).is_dir()
        assert Path(cap.path).name == cap.id

    def test_ids_are_unique(self, catalog: CapabilityCatalog) -> None:
        a = catalog.create("alpha", "a")
        b = catalog.create("beta", "b")
        assert a.id != b.id

    def test_duplicate_name(self, catalog: CapabilityCatalog) -> None:
        catalog.create("weather_lookup", "first")
        with pytest.raises(CapabilityExistsError):
            catalog.create("weather_lookup", "second")

    @pytest.mark.parametrize("name", ["Weather", "weather-lookup", "1st", ""])
    def test_invalid_name(self, catalog: CapabilityCatalog, name: str) -> None:
        with pytest.raises(InvalidCapabilityNameError):
            catalog.create(name, "bad")

    def test_get_and_require(self, catalog: CapabilityCatalog) -> None:
        cap = catalog.create("weather_lookup", "w")
        assert catalog.get(cap.id) == cap
        assert catalog.get_by_name("weather_lookup") == cap
        assert catalog.get("missing") is None
        with pytest.raises(CapabilityNotFoundError):
            catalog.require("missing")


class TestLifecycle:
    """Tests for status transitions."""

    def test_building_to_failed_to_building(self, catalog: CapabilityCatalog) -> None:
        cap = catalog.create("weather_lookup", "w")
        assert catalog.mark_failed(cap.id).status == CapabilityStatus.FAILED
        assert catalog.set_status(cap.id, CapabilityStatus.BUILDING).status == CapabilityStatus.BUILDING

    def test_disable_and_enable(self, catalog: CapabilityCatalog) -> None:
        catalog.create("weather_lookup", "w")
        cap = catalog.register("weather_lookup", "w", WEATHER_CODE)
        assert catalog.disable(cap.id).status == CapabilityStatus.DISABLED
        assert catalog.enable(cap.id).status == CapabilityStatus.ACTIVE

    def test_active_cannot_fail(self, catalog: CapabilityCatalog) -> None:
        catalog.create("weather_lookup", "w")
        cap = catalog.register("weather_lookup", "w", WEATHER_CODE)
        with pytest.raises(InvalidTransitionError) as exc_info:
            catalog.mark_failed(cap.id)
        assert exc_info.value.from_status == "active"
        assert catalog.require(cap.id).status == CapabilityStatus.ACTIVE

    def test_disabled_cannot_be_rebuilt(self, catalog: CapabilityCatalog) -> None:
        catalog.create("weather_lookup", "w")
        cap = catalog.register("weather_lookup", "w", WEATHER_CODE)
        catalog.disable(cap.id)
        with pytest.raises(InvalidTransitionError):
            catalog.set_status(cap.id, CapabilityStatus.BUILDING)

    def test_unknown_id(self, catalog: CapabilityCatalog) -> None:
        with pytest.raises(CapabilityNotFoundError):
            catalog.disable("missing")


class TestRegister:
    """Tests for CapabilityCatalog.register."""

    def test_register_activates_and_bumps_version(self, catalog: CapabilityCatalog) -> None:
        created = catalog.create("weather_lookup", "placeholder")
        cap = catalog.register(
            "weather_lookup",
            "Current weather for a city",
            WEATHER_CODE,
            requirements_txt="httpx\n",
            input_schema=WEATHER_SCHEMA,
            tags=["weather"],
        )
        assert cap.id == created.id
        assert cap.status == CapabilityStatus.ACTIVE
        assert cap.version == 2
        assert cap.description == "Current weather for a city"
        assert cap.input_schema == WEATHER_SCHEMA
        assert cap.tags == ["weather"]

    def test_register_writes_files(self, catalog: CapabilityCatalog) -> None:
        created = catalog.create("weather_lookup", "w")
        catalog.register(
            "weather_lookup",
            "Current weather",
            WEATHER_CODE,
            requirements_txt="httpx\n",
            input_schema=WEATHER_SCHEMA,
            required_secrets=[RequiredSecret(name="WEATHER_API_KEY", description="API key")],
        )
        path = Path(created.path)
        assert (path / "main.py").read_text() == WEATHER_CODE
        assert (path / "requirements.txt").read_text() == "httpx\n"
        manifest = json.loads((path / "manifest.json").read_text())
        assert manifest["name"] == "weather_lookup"
        assert manifest["version"] == 2
        assert manifest["required_secrets"] == [
            {"name": "WEATHER_API_KEY", "description": "API key"}
        ]
        run_md = (path / "RUN.md").read_text()
        assert run_md.startswith("# weather_lookup")
        assert "WEATHER_API_KEY" in run_md

    def test_reregister_overwrites(self, catalog: CapabilityCatalog) -> None:
        catalog.create("weather_lookup", "w")
        catalog.register("weather_lookup", "v1", WEATHER_CODE)
        cap = catalog.register("weather_lookup", "v2", "def run(args, context):\n    return 2\n")
        assert cap.version == 3
        assert cap.description == "v2"
        assert "return 2" in catalog.load_files(cap.id).main_py

    def test_register_keeps_schema_when_omitted(self, catalog: CapabilityCatalog) -> None:
        catalog.create("weather_lookup", "w", input_schema=WEATHER_SCHEMA)
        cap = catalog.register("weather_lookup", "w", WEATHER_CODE)
        assert cap.input_schema == WEATHER_SCHEMA

    def test_register_requires_catalog_entry(self, catalog: CapabilityCatalog) -> None:
        with pytest.raises(CapabilityNotFoundError) as exc_info:
            catalog.register("ghost", "g", WEATHER_CODE)
        assert "request_capability" in exc_info.value.message

    def test_register_after_failure(self, catalog: CapabilityCatalog) -> None:
        created = catalog.create("weather_lookup", "w")
        catalog.mark_failed(created.id)
        cap = catalog.register("weather_lookup", "w", WEATHER_CODE)
        assert cap.status == CapabilityStatus.ACTIVE

    def test_failed_reregister_keeps_previous_files(
        self, catalog: CapabilityCatalog, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        created = catalog.create("weather_lookup", "w")
        catalog.register("weather_lookup", "v1", WEATHER_CODE)
        real_execute = catalog.db.execute

        def execute(sql, params=(), operation="execute"):
            if operation == "activate_capability":
                raise StorageWriteError(operation=operation, underlying_error="disk I/O error")
            return real_execute(sql, params, operation)

        monkeypatch.setattr(catalog.db, "execute", execute)
        with pytest.raises(StorageWriteError):
            catalog.register("weather_lookup", "v2", "def run(args, context):\n    return 2\n")

        cap = catalog.require(created.id)
        assert cap.version == 2
        assert cap.description == "v1"
        assert catalog.load_files(cap.id).main_py == WEATHER_CODE
        assert catalog.load_manifest(cap.id).version == 2

    def test_interrupted_file_write_leaves_nothing_behind(
        self, catalog: CapabilityCatalog, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        created = catalog.create("weather_lookup", "w")
        catalog.register("weather_lookup", "v1", WEATHER_CODE)

        def write_files(path, files):
            path.mkdir(parents=True)
            (path / "main.py").write_text(files.main_py)
            raise OSError("No space left on device")

        monkeypatch.setattr(catalog_module, "_write_files", write_files)
        with pytest.raises(OSError):
            catalog.register("weather_lookup", "v2", "def run(args, context):\n    return 2\n")

        assert catalog.require(created.id).version == 2
        assert catalog.load_files(created.id).main_py == WEATHER_CODE
        assert [p.name for p in Path(created.path).parent.iterdir()] == [created.id]

    def test_load_manifest(self, catalog: CapabilityCatalog) -> None:
        created = catalog.create("weather_lookup", "w")
        catalog.register("weather_lookup", "w", WEATHER_CODE, input_schema=WEATHER_SCHEMA)
        manifest = catalog.load_manifest(created.id)
        assert manifest.version == 2
        assert manifest.input_schema == WEATHER_SCHEMA

    def test_load_files_before_register(self, catalog: CapabilityCatalog) -> None:
        created = catalog.create("weather_lookup", "w")
        with pytest.raises(FileNotFoundError):
            catalog.load_files(created.id)


class TestQueries:
    """Tests for listing, search and snapshots."""

    def _active(self, catalog: CapabilityCatalog, name: str, description: str) -> None:
        catalog.create(name, description)
        catalog.register(name, description, WEATHER_CODE)

    def test_list_by_status_sorted_by_name(self, catalog: CapabilityCatalog) -> None:
        self._active(catalog, "zeta", "z")
        self._active(catalog, "alpha", "a")
        catalog.create("building_one", "b")
        names = [c.name for c in catalog.list_capabilities(CapabilityStatus.ACTIVE)]
        assert names == ["alpha", "zeta"]
        assert len(catalog.list_capabilities()) == 3

    def test_search_active_only(self, catalog: CapabilityCatalog) -> None:
        self._active(catalog, "weather_lookup", "Current weather for a city")
        catalog.create("weather_forecast", "Forecast")
        assert [c.name for c in catalog.search("weather")] == ["weather_lookup"]
        assert [c.name for c in catalog.search("CITY")] == ["weather_lookup"]
        assert catalog.search("stocks") == []

    def test_search_escapes_wildcards(self, catalog: CapabilityCatalog) -> None:
        self._active(catalog, "weather_lookup", "Current weather")
        self._active(catalog, "stockquote", "Stock prices")
        assert [c.name for c in catalog.search("r_l")] == ["weather_lookup"]
        assert catalog.search("%") == []

    def test_snapshot(self, catalog: CapabilityCatalog) -> None:
        self._active(catalog, "weather_lookup", "w")
        snapshot = catalog.snapshot()
        self._active(catalog, "stock_quote", "s")
        assert snapshot.names() == ["weather_lookup"]
        assert catalog.snapshot().names() == ["stock_quote", "weather_lookup"]

    def test_delete(self, catalog: CapabilityCatalog) -> None:
        cap = catalog.create("weather_lookup", "w")
        assert catalog.delete(cap.id) is True
        assert catalog.get(cap.id) is None
        assert not Path(cap.path).exists()
        assert catalog.delete(cap.id) is False


class TestToolSpec:
    """Tests for capability-to-tool conversion."""

    def test_to_tool_spec(self, catalog: CapabilityCatalog) -> None:
        catalog.create("weather_lookup", "w")
        cap = catalog.register(
            "weather_lookup", "Current weather", WEATHER_CODE, input_schema=WEATHER_SCHEMA
        )
        spec = to_tool_spec(cap)
        assert spec.name == "cap_weather_lookup"
        assert spec.description == "[Capability] Current weather"
        assert spec.input_schema == WEATHER_SCHEMA

    def test_empty_schema_normalized(self, catalog: CapabilityCatalog) -> None:
        catalog.create("ping", "p")
        spec = to_tool_spec(catalog.register("ping", "Ping", WEATHER_CODE))
        assert spec.input_schema == {"type": "object", "properties": {}, "required": []}

    def test_render_run_md_without_secrets(self) -> None:
        text = render_run_md("ping", "Ping", {}, [])
        assert "## Secrets" not in text
        assert "run(args, context)" in text
