"""Tests for the inspection CLI."""

import json

from mission_engine.cli import build_parser, main


class TestCli:
    def test_generate_json(self, capsys):
        assert main(["generate", "harbor-credit-union", "--archetype", "repair", "--json", "--seed", "1"]) == 0
        mission = json.loads(capsys.readouterr().out)
        assert mission["client_id"] == "harbor-credit-union"
        assert mission["archetype"] == "repair"
        assert mission["objectives"][-1]["type"] == "verification"

    def test_generate_is_seeded(self, capsys):
        main(["generate", "oakridge-library", "--json", "--seed", "7"])
        first = json.loads(capsys.readouterr().out)
        main(["generate", "oakridge-library", "--json", "--seed", "7"])
        second = json.loads(capsys.readouterr().out)
        assert first["objectives"] == second["objectives"]

    def test_generate_unknown_client(self):
        assert main(["generate", "nobody"]) == 1

    def test_generate_panel(self):
        assert main(["generate", "swift-courier", "--timed", "--seed", "2"]) == 0

    def test_pool(self):
        assert main(["pool", "--reputation", "3", "--seed", "4"]) == 0

    def test_clients(self):
        assert main(["clients", "-r", "2"]) == 0

    def test_config_write_and_read(self, tmp_path, capsys):
        path = tmp_path / "engine.yaml"
        assert main(["config", "--write", str(path)]) == 0
        assert path.exists()
        capsys.readouterr()

        assert main(["--config", str(path), "config"]) == 0
        shown = json.loads(capsys.readouterr().out)
        assert shown["pool"]["max"] == 6

    def test_subcommand_required(self):
        parser = build_parser()
        args = parser.parse_args(["pool"])
        assert args.reputation == 1
