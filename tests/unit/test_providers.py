"""Tests for AI provider adapters."""

from unittest.mock import Mock, patch

import pytest

from issueforge.process import CommandError, CommandTimeoutError, RateLimitError
from issueforge.providers import ClaudeProvider, GeminiProvider, create_provider


class TestCreateProvider:
    """Tests for the provider factory."""

    def test_claude_default_model(self) -> None:
        provider = create_provider("claude")
        assert isinstance(provider, ClaudeProvider)
        assert provider.model == "sonnet"

    def test_gemini_with_model(self) -> None:
        provider = create_provider("gemini", model="flash")
        assert isinstance(provider, GeminiProvider)
        assert provider.model == "flash"

    def test_unknown(self) -> None:
        with pytest.raises(ValueError, match="Unknown AI provider: copilot"):
            create_provider("copilot")


class TestExecute:
    """Tests for running prompts."""

    def test_claude_invocation(self, fake_runner) -> None:
        runner = fake_runner(outputs={
            ("claude", "--print", "--dangerously-skip-permissions", "--model", "opus", "Fix it"): "done",
        })
        provider = ClaudeProvider(model="opus", runner=runner)

        result = provider.execute("Fix it", cwd="/repo")

        assert result.output == "done"
        assert result.provider == "claude"
        assert result.model == "opus"
        assert result.duration >= 0

    def test_claude_disables_color(self) -> None:
        runner = Mock()
        runner.return_value = Mock(stdout="ok")

        ClaudeProvider(runner=runner).execute("Fix it", cwd="/repo")

        kwargs = runner.call_args[1]
        assert kwargs["check_rate_limit"] is False
        assert kwargs["env"]["NO_COLOR"] == "1"
        assert kwargs["cwd"] == "/repo"
        assert kwargs["timeout"] == 600

    def test_gemini_invocation(self, fake_runner) -> None:
        runner = fake_runner()

        GeminiProvider(runner=runner, timeout=30).execute("Fix it", model="flash")

        assert runner.calls == [("gemini", "-m", "flash", "Fix it")]

    def test_timeout_is_retried(self) -> None:
        runner = Mock(side_effect=[CommandTimeoutError("timed out", elapsed=600), Mock(stdout="ok")])
        sleep = Mock()

        result = ClaudeProvider(runner=runner, sleep=sleep, retry_delay=2).execute("Fix it")

        assert result.output == "ok"
        sleep.assert_called_once_with(2)

    def test_rate_limit_is_not_retried(self) -> None:
        runner = Mock(side_effect=RateLimitError("rate limit", retry_after=30))

        with pytest.raises(RateLimitError):
            GeminiProvider(runner=runner, sleep=Mock()).execute("Fix it")

        runner.assert_called_once()

    @pytest.mark.parametrize("stdout", [
        "**Approach**: add a rate limit to the login endpoint",
        "### Test Results\nTotal: 429\nPassing: 429\nFailing: 0",
        "Return 429 Too Many Requests when the quota exceeded flag is set",
    ])
    @patch("issueforge.process.subprocess.run")
    def test_successful_output_mentioning_rate_limits(self, mock_run: Mock, stdout: str) -> None:
        mock_run.return_value = Mock(returncode=0, stdout=stdout, stderr="")
        sleep = Mock()

        result = ClaudeProvider(sleep=sleep).execute("Add rate limiting", cwd="/repo")

        assert result.output == stdout
        mock_run.assert_called_once()
        sleep.assert_not_called()

    @patch("issueforge.process.subprocess.run")
    def test_failed_exit_with_rate_limit_raises(self, mock_run: Mock) -> None:
        mock_run.return_value = Mock(
            returncode=1, stdout="", stderr="Error: rate limit exceeded. Retry after 45"
        )

        with pytest.raises(RateLimitError) as exc_info:
            ClaudeProvider(sleep=Mock()).execute("Fix it", cwd="/repo")

        assert exc_info.value.retry_after == 45
        mock_run.assert_called_once()

    def test_fatal_error_propagates(self) -> None:
        runner = Mock(side_effect=CommandError("bad flag"))

        with pytest.raises(CommandError, match="bad flag"):
            GeminiProvider(runner=runner, sleep=Mock()).execute("Fix it")

        runner.assert_called_once()
