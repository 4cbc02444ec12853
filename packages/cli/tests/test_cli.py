"""Tests for the CLI entry point."""

from datetime import datetime
from pathlib import Path

import pytest
from click.testing import CliRunner

from repolens_cli.cli import main
from repolens_core.exceptions import ProviderError
from repolens_core.models import LanguageFileType, RAGStatus, RepositoryReview, ReviewType


@pytest.fixture(autouse=True)
def no_env_settings(monkeypatch):
    monkeypatch.delenv("SENSITIVE_SETTINGS_PATH", raising=False)


@pytest.fixture
def settings_file(tmp_path):
    path = tmp_path / "settings.yml"
    path.write_text(f"repository_path: {tmp_path}\nreport_output_path: {tmp_path / 'out'}\nsensitive:\n  api_key: sk-test\n")
    return path


@pytest.fixture
def repo(tmp_path):
    root = tmp_path / "demo"
    (root / ".git").mkdir(parents=True)
    (root / "main.py").write_text("import sys\n\nprint(sys.argv)\n")
    (root / "README.md").write_text("# demo\n")
    return root


def make_review(**kw):
    values = {
        "repository_name": "demo",
        "repository_type": "Python",
        "repository_rag_status": RAGStatus.GREEN,
        "summary": "All good.",
        "num_files": 1,
        "sum_loc": 2,
        "language_file_types": [
            LanguageFileType(language="Python", extension="py", percentage=100.0, loc=2, total_size=30, file_count=1)
        ],
    }
    values.update(kw)
    return RepositoryReview(**values)


class TestCLIGroup:
    def test_help_lists_commands(self):
        result = CliRunner().invoke(main, ["--help"])
        assert result.exit_code == 0
        for command in ("review", "stats", "resummarise"):
            assert command in result.output


# ---------------------------------------------------------------------------
# review
# ---------------------------------------------------------------------------


class TestReviewCommand:
    def test_missing_settings_file(self):
        result = CliRunner().invoke(main, ["review"])
        assert result.exit_code != 0
        assert "SENSITIVE_SETTINGS_PATH" in result.output

    def test_options_override_settings(self, mocker, settings_file, tmp_path):
        mock_run = mocker.patch("repolens_cli.commands.review.run_review", return_value=make_review())
        mocker.patch("repolens_cli.commands.review.create_report", return_value=tmp_path / "out" / "demo.json")

        result = CliRunner().invoke(
            main,
            [
                "--settings",
                str(settings_file),
                "review",
                "--repo-path",
                "/src/other",
                "--review-type",
                "security",
                "--provider",
                "google",
                "--service",
                "gemini-flash",
                "--max-files",
                "3",
            ],
        )

        assert result.exit_code == 0, result.output
        settings = mock_run.call_args.args[0]
        assert settings.repository_path == "/src/other"
        assert settings.review_type is ReviewType.SECURITY
        assert settings.active_provider().active_service().model == "gemini-1.5-flash"
        assert settings.dev.max_file_count == 3
        assert "All good." in result.output
        assert "Report written" in result.output

    def test_settings_path_from_environment(self, mocker, settings_file, tmp_path, monkeypatch):
        monkeypatch.setenv("SENSITIVE_SETTINGS_PATH", str(settings_file))
        mocker.patch("repolens_cli.commands.review.run_review", return_value=make_review())
        mock_report = mocker.patch("repolens_cli.commands.review.create_report", return_value=tmp_path / "r.json")

        result = CliRunner().invoke(main, ["review", "--output-type", "html"])

        assert result.exit_code == 0, result.output
        assert mock_report.call_args.args[1].value == "html"

    def test_report_timestamp_matches_review_date(self, mocker, settings_file, tmp_path):
        mock_run = mocker.patch("repolens_cli.commands.review.run_review", return_value=make_review())
        mock_report = mocker.patch("repolens_cli.commands.review.create_report", return_value=tmp_path / "r.json")

        result = CliRunner().invoke(main, ["--settings", str(settings_file), "review"])

        assert result.exit_code == 0, result.output
        now = mock_run.call_args.kwargs["now"]
        assert isinstance(now, datetime)
        assert mock_report.call_args.kwargs["timestamp"] is now

    def test_pdf_rejected_before_review(self, mocker, settings_file):
        mock_run = mocker.patch("repolens_cli.commands.review.run_review")

        result = CliRunner().invoke(main, ["--settings", str(settings_file), "review", "--output-type", "pdf"])

        assert result.exit_code != 0
        assert "not implemented" in result.output
        mock_run.assert_not_called()

    def test_provider_error_exits_non_zero(self, mocker, settings_file):
        mocker.patch(
            "repolens_cli.commands.review.run_review",
            side_effect=ProviderError("Authorization error. Code: 401", status_code=401),
        )

        result = CliRunner().invoke(main, ["--settings", str(settings_file), "review"])

        assert result.exit_code == 1
        assert "Authorization error" in result.output

    def test_developer_replay_path(self, mocker, tmp_path):
        settings = tmp_path / "dev.yml"
        settings.write_text(f"developer_mode:\n  test_path: {tmp_path}\n  test_file: old.json\n")
        mock_run = mocker.patch("repolens_cli.commands.review.run_review")
        mock_resummarise = mocker.patch("repolens_cli.commands.review.resummarise", return_value=make_review())
        mocker.patch("repolens_cli.commands.review.create_report", return_value=tmp_path / "new.json")

        result = CliRunner().invoke(main, ["--settings", str(settings), "review"])

        assert result.exit_code == 0, result.output
        mock_run.assert_not_called()
        assert mock_resummarise.call_args.args[1] == tmp_path / "old.json"

    def test_end_to_end_json_report(self, mocker, repo, tmp_path):
        from repolens_core.providers.base import Choice, ProviderResponse

        settings = tmp_path / "settings.yml"
        settings.write_text(f"report_output_path: {tmp_path / 'out'}\nsensitive:\n  api_key: sk-test\n")
        answers = ['{"summary": "Prints args."}', "Tiny script."]
        mocker.patch(
            "repolens_core.providers.openai.OpenAIProvider._call_api",
            side_effect=lambda kind, prompt: ProviderResponse(id="", model="gpt-4o", choices=[Choice(answers.pop(0))]),
        )

        result = CliRunner().invoke(main, ["--settings", str(settings), "review", "--repo-path", str(repo)])

        assert result.exit_code == 0, result.output
        reports = list((tmp_path / "out").glob("demo-*.json"))
        assert len(reports) == 1
        review = RepositoryReview.model_validate_json(reports[0].read_text())
        assert review.summary == "Tiny script."
        assert [fr.filename for fr in review.file_reviews] == ["main.py"]


# ---------------------------------------------------------------------------
# stats
# ---------------------------------------------------------------------------


class TestStatsCommand:
    def test_runs_without_settings_file(self, repo):
        result = CliRunner().invoke(main, ["stats", "--repo-path", str(repo)])
        assert result.exit_code == 0, result.output
        assert "Python" in result.output
        assert "Lines of code: 2" in result.output

    def test_invalid_repository(self, tmp_path):
        result = CliRunner().invoke(main, ["stats", "--repo-path", str(tmp_path)])
        assert result.exit_code != 0
        assert ".git" in result.output

    def test_empty_repository(self, tmp_path):
        (tmp_path / ".git").mkdir()
        result = CliRunner().invoke(main, ["stats", "--repo-path", str(tmp_path)])
        assert result.exit_code == 0
        assert "No reviewable source files" in result.output


# ---------------------------------------------------------------------------
# resummarise
# ---------------------------------------------------------------------------


class TestResummariseCommand:
    def test_requires_report(self, settings_file):
        result = CliRunner().invoke(main, ["--settings", str(settings_file), "resummarise"])
        assert result.exit_code != 0
        assert "--report" in result.output

    def test_replays_given_report(self, mocker, settings_file, tmp_path):
        mock_resummarise = mocker.patch(
            "repolens_cli.commands.resummarise.resummarise", return_value=make_review(summary="Fresh.")
        )
        mock_report = mocker.patch(
            "repolens_cli.commands.resummarise.create_report", return_value=tmp_path / "out" / "demo.json"
        )

        result = CliRunner().invoke(
            main, ["--settings", str(settings_file), "resummarise", "--report", str(tmp_path / "old.json")]
        )

        assert result.exit_code == 0, result.output
        assert Path(mock_resummarise.call_args.args[1]) == tmp_path / "old.json"
        assert mock_report.call_args.args[1].value == "json"
        assert mock_report.call_args.kwargs["timestamp"] is mock_resummarise.call_args.kwargs["now"]
        assert "Fresh." in result.output
