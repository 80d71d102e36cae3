"""
Smoke tests for CLI commands.

Each test points the CLI at a fresh in-memory database and a fake
synthesizer, then checks the command exits cleanly.
"""

import pytest
from typer.testing import CliRunner

import frailearn.db.database as database
from frailearn.cli import main as cli
from frailearn.cli.main import app
from frailearn.db.models import FlashcardReviewState
from frailearn.review.scheduler import ReviewScheduler

runner = CliRunner()


@pytest.fixture(autouse=True)
def cli_database(monkeypatch, engine, session_factory, synthesizer):
    """Route the CLI's default engine, sessions and synthesizer to test doubles."""
    monkeypatch.setattr(database, "engine", engine)
    monkeypatch.setattr(database, "SessionLocal", session_factory)
    monkeypatch.setattr(cli.CLIContext, "synthesizer", property(lambda self: synthesizer))
    monkeypatch.setattr(cli, "configure_logging", lambda level=None: None)


class TestCLIHelp:
    @pytest.mark.parametrize("group", ["db", "sweep", "review", "progress", "gate"])
    def test_group_help(self, group):
        result = runner.invoke(app, [group, "--help"])
        assert result.exit_code == 0

    def test_version(self):
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert "frailearn" in result.output


class TestCommands:
    def test_db_init(self):
        result = runner.invoke(app, ["db", "init"])
        assert result.exit_code == 0
        assert "initialized" in result.output

    def test_sweep_remedial_for_learner(self, build):
        learner_id = build.learner()
        build.mistake(learner_id, "Articles")
        build.mistake(learner_id, "Articles")

        result = runner.invoke(app, ["sweep", "remedial", "--learner", learner_id])

        assert result.exit_code == 0
        assert "Remedial Sweep" in result.output

    def test_sweep_retention(self):
        result = runner.invoke(app, ["sweep", "retention"])
        assert result.exit_code == 0
        assert "Deleted 0 mistakes" in result.output

    def test_sweep_watch_single_tick(self, build):
        result = runner.invoke(app, ["sweep", "watch", "--max-ticks", "1"])
        assert result.exit_code == 0

    def test_review_deck(self, session, build):
        learner_id = build.learner()
        ReviewScheduler().issue(
            session,
            learner_id,
            [{"front_text": "el gato", "back_text": "the cat"}],
            level="BEGINNER",
            chapter_number=1,
            topic="Nouns",
        )
        session.commit()
        assert session.query(FlashcardReviewState).count() == 1

        result = runner.invoke(app, ["review", "deck", learner_id])

        assert result.exit_code == 0
        assert "el gato" in result.output

    def test_progress_show(self, build):
        learner_id = build.learner("Priya")

        result = runner.invoke(app, ["progress", "show", learner_id])

        assert result.exit_code == 0
        assert "Priya" in result.output

    def test_progress_unknown_learner(self):
        result = runner.invoke(app, ["progress", "show", "missing"])
        assert result.exit_code == 1

    def test_gate_pending(self, build):
        learner_id = build.learner()
        build.section(learner_id, 1, 5, completed=True)

        result = runner.invoke(app, ["gate", "pending", learner_id])

        assert result.exit_code == 0
        assert "1-5" in result.output
