import json
import sys
from pathlib import Path

import pytest
from click.testing import CliRunner

from switchyard.cli.main import cli


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def fake_cli_config(tmp_path: Path, write_config):
    def _configure(script_body: str, **extra) -> Path:
        script = tmp_path / "answer.py"
        script.write_text(script_body, encoding="utf-8")
        return write_config(
            {
                "providers": {
                    "py": {
                        "type": "cli",
                        "cliProvider": "claude",
                        "model": "py-model",
                        "command": sys.executable,
                        "args": [str(script)],
                    },
                    **extra,
                },
                "defaultProvider": "py",
            }
        )

    return _configure


def test_providers_json(runner: CliRunner, fake_cli_config) -> None:
    fake_cli_config("print('hi')\n")

    result = runner.invoke(cli, ["providers", "--json"])

    assert result.exit_code == 0, result.output
    rows = json.loads(result.stdout)
    assert rows == [{"id": "py", "name": "CLI (claude)", "type": "cli", "model": "py-model"}]


def test_missing_config_file(runner: CliRunner, tmp_path: Path) -> None:
    result = runner.invoke(cli, ["--config", str(tmp_path / "nope.json"), "providers"])
    assert result.exit_code == 1
    assert "provider configuration not found" in result.output


def test_ask_prints_answer(runner: CliRunner, fake_cli_config) -> None:
    fake_cli_config("print('<think>hmm</think>Forty-two.')\n")

    result = runner.invoke(cli, ["ask", "what is the answer?"])

    assert result.exit_code == 0, result.output
    assert result.stdout.strip() == "Forty-two."


def test_ask_json_payload(runner: CliRunner, fake_cli_config) -> None:
    fake_cli_config("print('Forty-two.')\n")

    result = runner.invoke(cli, ["ask", "--system", "be brief", "--json", "question"])

    assert result.exit_code == 0, result.output
    payload = json.loads(result.stdout)
    assert payload == {
        "ok": True,
        "provider_id": "py",
        "model": "py-model",
        "content": "Forty-two.",
        "finish_reason": "stop",
        "tool_calls": [],
        "usage": None,
    }


def test_ask_parse_tools(runner: CliRunner, fake_cli_config) -> None:
    fake_cli_config(
        "print('Reading.<tool_call>read_file<arg_key>path</arg_key>"
        "<arg_value>/tmp/a</arg_value></tool_call>')\n"
    )

    result = runner.invoke(cli, ["ask", "--parse-tools", "--json", "open it"])

    assert result.exit_code == 0, result.output
    payload = json.loads(result.stdout)
    assert payload["content"] == "Reading."
    assert payload["finish_reason"] == "tool_calls"
    assert payload["tool_calls"] == [
        {"id": "parsed-xml-1", "name": "read_file", "arguments": {"path": "/tmp/a"}}
    ]


def test_ask_parse_tools_reports_truncation(runner: CliRunner, fake_cli_config) -> None:
    fake_cli_config("print('<tool_call>read_file<arg_key>pa')\n")

    result = runner.invoke(cli, ["ask", "--parse-tools", "--json", "open it"])

    payload = json.loads(result.stdout)
    assert payload["tool_calls"] == []
    assert payload["tool_call_parse"] == {
        "error": "tool_call_parse_failed",
        "had_markup": True,
        "truncated": True,
    }


def test_ask_auth_failure_is_not_retried(runner: CliRunner, fake_cli_config, tmp_path: Path) -> None:
    counter = tmp_path / "calls.txt"
    fake_cli_config(
        "import sys\n"
        f"with open({str(counter)!r}, 'a') as fh:\n"
        "    fh.write('x')\n"
        "sys.stderr.write('invalid api key: unauthorized')\n"
        "sys.exit(2)\n"
    )

    result = runner.invoke(cli, ["ask", "--json", "hello"])

    assert result.exit_code == 1
    payload = json.loads(result.stdout)
    assert payload["ok"] is False
    assert payload["reason"] == "auth"
    assert payload["provider_id"] == "py"
    assert "exited with code 2" in payload["error"]
    assert counter.read_text() == "x"


def test_ask_failure_shows_hint(runner: CliRunner, fake_cli_config) -> None:
    fake_cli_config("import sys\nsys.stderr.write('payment required')\nsys.exit(1)\n")

    result = runner.invoke(cli, ["ask", "hello"])

    assert result.exit_code == 1
    assert "[billing]" in result.output
    assert "hint:" in result.output


def test_ask_without_providers(runner: CliRunner, write_config) -> None:
    write_config({"providers": {}, "defaultProvider": "missing"})

    result = runner.invoke(cli, ["ask", "hello"])

    assert result.exit_code == 1
    assert "No provider available for action: chat" in result.output


def test_ask_without_providers_json(runner: CliRunner, write_config) -> None:
    write_config({"providers": {}, "defaultProvider": "missing"})

    result = runner.invoke(cli, ["ask", "--json", "hello"])

    assert result.exit_code == 1
    payload = json.loads(result.stdout)
    assert payload["ok"] is False
    assert payload["reason"] == "no_provider"
    assert payload["provider_id"] is None
    assert payload["status"] is None
    assert "No provider available for action: chat" in payload["error"]


def test_health_json(runner: CliRunner, fake_cli_config) -> None:
    fake_cli_config(
        "print('hi')\n",
        ghost={"type": "cli", "model": "m", "command": "/nonexistent/switchyard-ghost"},
    )

    result = runner.invoke(cli, ["health", "--json"])

    assert result.exit_code == 0, result.output
    assert json.loads(result.stdout) == {"py": True, "ghost": False}


def test_health_fails_when_everything_is_down(runner: CliRunner, write_config) -> None:
    write_config(
        {
            "providers": {"ghost": {"type": "cli", "model": "m", "command": "/nonexistent/ghost"}},
            "defaultProvider": "ghost",
        }
    )

    result = runner.invoke(cli, ["health"])

    assert result.exit_code == 1
    assert "ghost\tdown" in result.output
