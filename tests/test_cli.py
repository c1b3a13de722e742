"""Tests for the vericred command line interface."""

import json

import httpx
import pytest
from click.testing import CliRunner
from unittest.mock import patch

import vericred.settings
from vericred.cli import main


@pytest.fixture(autouse=True)
def cli_config(settings):
    """Point every command at the per-test data directory."""
    vericred.settings._config = settings
    yield settings
    vericred.settings._config = None


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def dataset(tmp_path):
    path = tmp_path / "rows.csv"
    path.write_text(
        "name,institute,percentage\n"
        "\"Doe, Jane\",ABC College,72\n"
        "John Smith,Greenfield Institute of Technology,85\n",
        encoding="utf-8",
    )
    return path


class TestImport:
    def test_import_csv(self, runner, dataset):
        result = runner.invoke(main, ["import-csv", str(dataset)])
        assert result.exit_code == 0, result.output
        assert "Imported 2 record(s)" in result.output

    def test_import_csv_bad_header(self, runner, tmp_path):
        path = tmp_path / "bad.csv"
        path.write_text("foo,bar\n1,2\n", encoding="utf-8")
        result = runner.invoke(main, ["import-csv", str(path)])
        assert result.exit_code == 1
        assert "Error" in result.output

    def test_import_docs(self, runner, tmp_path):
        doc = tmp_path / "original.txt"
        doc.write_bytes(b"Jane Doe\nABC College\n72%")
        result = runner.invoke(main, ["import-docs", str(doc)])
        assert result.exit_code == 0, result.output
        assert "Import complete" in result.output


class TestVerify:
    def test_verify_fields_json(self, runner, dataset):
        runner.invoke(main, ["import-csv", str(dataset)])
        result = runner.invoke(main, [
            "verify", "--name", "Jane Doe", "--institute", "ABC College",
            "--percentage", "72", "--wallet", "0xjanewallet", "--json",
        ])
        assert result.exit_code == 0, result.output
        outcome = json.loads(result.stdout)
        assert outcome["verified"] is True
        assert outcome["mode"] == "exact"
        assert outcome["token"]["owner_identity"] == "0xjanewallet"

    def test_miss_exits_2(self, runner, dataset):
        runner.invoke(main, ["import-csv", str(dataset)])
        result = runner.invoke(main, [
            "verify", "--name", "Nobody Known", "--institute", "Unknown Academy",
            "--percentage", "10", "--wallet", "0xw",
        ])
        assert result.exit_code == 2
        assert "No matching record" in result.output

    def test_missing_identity_is_an_error(self, runner):
        result = runner.invoke(main, ["verify", "--name", "Jane Doe"])
        assert result.exit_code == 1
        assert "InvalidInput" in result.output

    def test_verify_fingerprint(self, runner, tmp_path):
        doc = tmp_path / "original.txt"
        doc.write_bytes(b"Jane Doe\nABC College\n72%")
        runner.invoke(main, ["import-docs", str(doc)])

        from vericred.fingerprint import digest_bytes
        result = runner.invoke(main, [
            "verify", "--fingerprint", digest_bytes(doc.read_bytes()), "--email", "jane@example.edu", "--json",
        ])
        assert result.exit_code == 0, result.output
        assert json.loads(result.stdout)["verified"] is True


class TestInspection:
    def test_fingerprint(self, runner, tmp_path):
        doc = tmp_path / "marks.txt"
        doc.write_bytes(b"Student Name: Jane Doe\nPercentage: 72%\n")
        result = runner.invoke(main, ["fingerprint", str(doc)])
        assert result.exit_code == 0, result.output
        assert "Jane Doe" in result.output

    def test_status(self, runner, dataset):
        runner.invoke(main, ["import-csv", str(dataset)])
        result = runner.invoke(main, ["status"])
        assert result.exit_code == 0, result.output
        assert "local" in result.output
        assert "Corpus records" in result.output

    def test_audit_reads_local_database(self, runner, dataset, settings):
        runner.invoke(main, ["import-csv", str(dataset)])
        result = runner.invoke(main, ["audit"])
        assert result.exit_code == 0, result.output
        assert "1 unread of 1" in result.output
        assert "corpus_imported" in result.output
        assert settings.audit_db_path.exists()

    def test_audit_kind_filter(self, runner, dataset):
        runner.invoke(main, ["import-csv", str(dataset)])
        result = runner.invoke(main, ["audit", "--kind", "verified"])
        assert result.exit_code == 0, result.output
        assert "0 unread of 0" in result.output

    def test_audit_reports_unreachable_api(self, runner):
        with patch("vericred.cli.httpx.get", side_effect=httpx.ConnectError("refused")), \
             patch("vericred.utils.time.sleep"):
            result = runner.invoke(main, ["audit", "--api-url", "http://127.0.0.1:9"])
        assert result.exit_code == 1
        assert "Could not fetch audit events" in result.output

    def test_serve_runs_uvicorn(self, runner):
        with patch("uvicorn.run") as run:
            result = runner.invoke(main, ["serve", "--port", "8123"])
        assert result.exit_code == 0, result.output
        assert run.call_args.args == ("vericred.api.main:app",)
        assert run.call_args.kwargs["port"] == 8123
