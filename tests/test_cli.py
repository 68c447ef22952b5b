"""Unit tests for fileopts.cli — command parsing and execution."""

from unittest.mock import MagicMock, patch

import pytest
import yaml

import fileopts.cli as cli_mod


@pytest.fixture
def run(project_root, capsys):
    """Run the CLI against project_root and return (exit_code, stdout)."""
    config = str(project_root / "fileopts.yaml")

    def _run(*argv):
        code = cli_mod.main(["--config", config, *argv])
        return code, capsys.readouterr().out

    return _run


def _stored(project_root):
    path = project_root / "upload_options.yaml"
    return (yaml.safe_load(path.read_text()) or {}) if path.exists() else {}


class TestCLIParsing:

    def test_no_command_prints_help(self, capsys):
        assert cli_mod.main([]) == 0
        assert "usage: fileopts" in capsys.readouterr().out

    def test_custom_without_subcommand(self, capsys):
        assert cli_mod.main(["custom"]) == 0

    def test_unknown_command_exits(self):
        with pytest.raises(SystemExit):
            cli_mod.main(["frobnicate"])

    def test_bad_config(self, tmp_path, capsys):
        config = tmp_path / "fileopts.yaml"
        config.write_text("platform: [unclosed\n")
        assert cli_mod.main(["--config", str(config), "fields"]) == 1
        assert "Failed to load config" in capsys.readouterr().out


class TestFieldCommands:

    def test_fields(self, run):
        code, out = run("fields")
        assert code == 0
        assert "Content" in out
        assert "node.article.field_attachment" in out
        assert "user.user.user_picture" in out
        assert "rename" in out

    def test_set_and_get(self, run, project_root):
        code, out = run("set", "node.article.field_attachment", "replace")
        assert code == 0
        assert "[OK] node.article.field_attachment -> replace" in out
        assert _stored(project_root) == {"upload_option.node.article.field_attachment": 1}

        code, out = run("get", "node.article.field_attachment")
        assert out.strip() == "node.article.field_attachment: replace (effective: replace)"

    def test_set_numeric(self, run):
        run("set", "user.user.user_picture", "2")
        _, out = run("get", "user.user.user_picture")
        assert "reject" in out

    def test_set_inherit_shows_default(self, run):
        run("set", "node.article.field_attachment", "-1")
        _, out = run("get", "node.article.field_attachment")
        assert "inherit (effective: rename)" in out

    def test_set_invalid_mode(self, run, project_root):
        code, out = run("set", "node.article.field_attachment", "overwrite")
        assert code == 1
        assert out.startswith("[ERROR]")
        assert _stored(project_root) == {}

    def test_set_unknown_schema_field(self, run):
        code, out = run("set", "node.article.field_missing", "reject")
        assert code == 1
        assert "not an upload-capable field" in out


class TestCustomCommands:

    def test_add_list_remove(self, run):
        assert run("custom", "add", "teaser_image")[0] == 0
        _, out = run("custom", "add", "teaser_image")
        assert "[INFO]" in out

        _, out = run("custom", "list")
        assert "teaser_image" in out and "rename" in out

        _, out = run("custom", "remove", "teaser_image")
        assert "[OK] Removed" in out
        _, out = run("custom", "remove", "teaser_image")
        assert "not found" in out

    def test_set_sentinel_removes(self, run, project_root):
        run("custom", "add", "teaser_image")
        code, out = run("custom", "set", "teaser_image", "99")
        assert code == 0
        assert "[OK] Removed custom field 'teaser_image'" in out
        assert _stored(project_root) == {}

    def test_set_mode(self, run):
        run("custom", "add", "banner")
        _, out = run("custom", "set", "banner", "reject")
        assert "[OK] banner -> reject" in out

    def test_invalid_name(self, run):
        code, out = run("custom", "add", "Teaser Image")
        assert code == 1

    def test_fields_lists_custom(self, run):
        run("custom", "add", "banner")
        _, out = run("fields")
        assert "Custom fields" in out
        assert "banner" in out


class TestServe:

    def test_serve_runs_uvicorn(self, project_root):
        fake_uvicorn = MagicMock()
        with patch.dict("sys.modules", {"uvicorn": fake_uvicorn}):
            code = cli_mod.main(["--config", str(project_root / "fileopts.yaml"), "serve", "--port", "9001"])
        assert code == 0
        _, kwargs = fake_uvicorn.run.call_args
        assert kwargs == {"host": "127.0.0.1", "port": 9001}
