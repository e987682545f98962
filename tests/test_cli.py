"""Tests for the command line interface."""

from click.testing import CliRunner

from tickstream.cli import cli


def test_symbols_lists_files(tmp_path):
    (tmp_path / "msft.us.txt").write_text("Date,Open,High,Low,Close,Volume,OpenInt\n")
    (tmp_path / "aapl.us.txt").write_text("Date,Open,High,Low,Close,Volume,OpenInt\n")

    result = CliRunner().invoke(cli, ["symbols", "--data-dir", str(tmp_path)])

    assert result.exit_code == 0
    lines = result.output.splitlines()
    assert lines[0].startswith("AAPL")
    assert lines[1].startswith("MSFT")
    assert "2 file(s)" in lines[2]


def test_symbols_missing_directory(tmp_path):
    result = CliRunner().invoke(cli, ["symbols", "--data-dir", str(tmp_path / "nope")])
    assert result.exit_code == 1


def test_invalid_config_exits_with_error(tmp_path):
    config_file = tmp_path / "config.yaml"
    config_file.write_text("replay:\n  speed: -2\n")

    result = CliRunner().invoke(cli, ["run", "--config", str(config_file)])

    assert result.exit_code == 1
    assert "Invalid configuration" in result.output
