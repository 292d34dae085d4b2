"""Tests for output formatting."""

import json

import pytest

from services_auth.oauth.tokens import ServiceToken
from services_auth.output import OutputHandler, json_failure, json_success, service_token_summary


class TestFormatters:
    """Tests for the JSON formatters."""

    def test_json_success_envelope(self) -> None:
        """Test the success envelope."""
        assert json.loads(json_success({"a": 1})) == {"success": True, "data": {"a": 1}}

    def test_json_failure(self) -> None:
        """Test the error envelope."""
        data = json.loads(json_failure(ValueError("bad"), help_text="try again"))
        assert data == {
            "success": False,
            "error": {"type": "ValueError", "message": "bad", "help": "try again"},
        }

    def test_service_token_summary_hides_credential(self) -> None:
        """Test that summaries never carry the bearer token."""
        token = ServiceToken.from_services("secret-token", "https://auth", {"psh": "https://push"})
        summary = service_token_summary(token)

        assert "secret-token" not in json.dumps(summary)
        assert summary["token_id"] == token.token_id
        assert summary["services"] == {"psh": "https://push"}


class TestOutputHandler:
    """Tests for OutputHandler."""

    def test_human_success(self, capsys) -> None:
        """Test that human mode prints the message."""
        OutputHandler().success({"x": 1}, "done")
        assert capsys.readouterr().out == "done\n"

    def test_json_success(self, capsys) -> None:
        """Test that JSON mode prints the envelope."""
        OutputHandler(json_mode=True).success({"x": 1}, "done")
        assert json.loads(capsys.readouterr().out)["data"] == {"x": 1}

    def test_info_goes_to_stderr_in_json_mode(self, capsys) -> None:
        """Test that progress messages keep stdout parseable."""
        OutputHandler(json_mode=True).info("working")
        captured = capsys.readouterr()
        assert captured.out == ""
        assert "working" in captured.err

    def test_error_exits(self, capsys) -> None:
        """Test that errors exit with status 1."""
        with pytest.raises(SystemExit) as exc_info:
            OutputHandler().error(ValueError("boom"), help_text="fix it")

        assert exc_info.value.code == 1
        err = capsys.readouterr().err
        assert "Error: boom" in err
        assert "fix it" in err

    def test_table_json_mode(self, capsys) -> None:
        """Test that tables become lists of dicts in JSON mode."""
        OutputHandler(json_mode=True).table(["A", "B"], [["1", "2"]])
        assert json.loads(capsys.readouterr().out)["data"] == [{"A": "1", "B": "2"}]
