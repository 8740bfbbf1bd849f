import json

import pytest

from migration_fabric.cli import build_dictionary_pool, build_orchestrator, main
from migration_fabric.config import parse_config
from migration_fabric.dictionary import FixtureConnection
from migration_fabric.services.checkpoint import CheckpointManager


@pytest.fixture
def project_file(tmp_path):
    """Project reading the company-code table from the bundled dictionary fixtures."""
    path = tmp_path / "project.json"
    path.write_text(json.dumps({
        "name": "fixture-run",
        "systems": {"source": {"baseUrl": "https://src.test"}},
        "dictionary": {},
        "objects": ["FI_CONFIG"],
        "reconcile": True,
        "checkpointDir": str(tmp_path / "checkpoints"),
    }))
    return path


@pytest.mark.unit
class TestCli:
    """Test the command-line entry point."""

    def test_no_command_prints_help(self, capsys) -> None:
        assert main([]) == 1
        assert "usage" in capsys.readouterr().out

    def test_dry_run_against_fixtures(self, project_file, tmp_path, capsys) -> None:
        code = main(["run", "--config", str(project_file), "--dry-run", "--run-id", "cli-run"])

        out = capsys.readouterr().out
        assert code == 0
        assert "Run ID: cli-run" in out
        assert "FI_CONFIG: completed" in out
        assert "Reconciliation: PASSED" in out
        assert CheckpointManager(str(tmp_path / "checkpoints")).load("cli-run") is None

    def test_unknown_object_is_a_configuration_error(self, project_file) -> None:
        assert main(["run", "--config", str(project_file), "--objects", "NOPE"]) == 2

    def test_missing_config_file(self, tmp_path) -> None:
        assert main(["run", "--config", str(tmp_path / "missing.json")]) == 2

    def test_resume_without_checkpoint(self, project_file) -> None:
        assert main(["resume", "unknown-run", "--config", str(project_file)]) == 2

    def test_checkpoints_list(self, tmp_path, capsys) -> None:
        directory = tmp_path / "checkpoints"
        CheckpointManager(str(directory)).save("run-1", {})

        assert main(["checkpoints", "list", "--dir", str(directory)]) == 0
        assert capsys.readouterr().out.startswith("run-1")

    def test_checkpoints_list_empty(self, tmp_path, capsys) -> None:
        assert main(["checkpoints", "list", "--dir", str(tmp_path)]) == 0
        assert "No checkpoints" in capsys.readouterr().out

    def test_checkpoints_cleanup(self, tmp_path, capsys) -> None:
        assert main(["checkpoints", "cleanup", "--dir", str(tmp_path), "--max-age-days", "1"]) == 0
        assert "Removed 0 checkpoints" in capsys.readouterr().out

    def test_graph(self, capsys) -> None:
        assert main(["graph", "KNA1"]) == 0

        graph = json.loads(capsys.readouterr().out)
        assert set(graph) == {"KNA1", "T005", "T077D", "T000", "T077Y"}

    def test_configured_record_cap_reaches_the_connector(self) -> None:
        orchestrator = build_orchestrator(parse_config({"maxRecords": 150000}))

        assert orchestrator.connector.max_records == 150000
        assert orchestrator.config.max_records == 150000

    def test_no_record_cap_by_default(self) -> None:
        assert build_orchestrator(parse_config({})).connector.max_records is None


@pytest.mark.unit
class TestDictionaryPool:
    """Test dictionary pool selection."""

    def test_no_dictionary_section(self) -> None:
        assert build_dictionary_pool(parse_config({})) is None

    def test_fixture_pool_without_gateway(self) -> None:
        pool = build_dictionary_pool(parse_config({"dictionary": {"poolSize": 2}}))

        with pool.connection() as conn:
            assert isinstance(conn, FixtureConnection)
        pool.drain()
