"""Tests for the command line interface."""

import json

import pytest

from crmshift import cli
from crmshift.api.dependencies import Services

from .conftest import USER


@pytest.fixture
def run(services, monkeypatch):
    monkeypatch.setattr(Services, "from_config", classmethod(lambda cls, config: services))
    return cli.main


class TestCli:
    def test_no_command_prints_help(self, run):
        assert run([]) == 1

    def test_mappings_prints_rows(self, run, capsys):
        assert run(["mappings", "--user", USER, "--object-type", "deals"]) == 0

        rows = json.loads(capsys.readouterr().out)
        assert [r["sourceIdentity"] for r in rows] == ["amount", "dealname"]

    def test_migrate_properties(self, run, mappings, crm, capsys):
        mappings.add_mapping(USER, "contacts", "Favorite Color")

        assert run(["migrate-properties", "--user", USER, "--object-type", "contacts"]) == 0
        assert "Created: 1" in capsys.readouterr().out
        assert "favorite_color" in crm.properties["b"]["contacts"]

    def test_engine_errors_exit_with_code_2(self, run, capsys):
        code = run(["edit-mapping", "--user", USER, "--object-type", "contacts",
                    "--source", "Email", "--target", "Mail"])

        assert code == 2
        assert json.loads(capsys.readouterr().out)["error"] == "IMMUTABLE_MAPPING"
