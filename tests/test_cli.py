"""
Tests for the CLI interface.
"""

import os
from datetime import datetime, timezone

import pytest
from typer.testing import CliRunner

from cost_advisor.cli.main import EXIT_CODE_FAIL, EXIT_CODE_PASS, app
from cost_advisor.demo.seed_demo_data import DEMO_ACCOUNT, DEMO_OWNER, seed
from cost_advisor.storage.models import AccountScope, RecommendationStatus
from cost_advisor.storage.repository import RecommendationRepository

runner = CliRunner()

SCOPE_ARGS = ["--owner", DEMO_OWNER, "--account", DEMO_ACCOUNT]


@pytest.fixture
def demo_db(tmp_path):
    """Database seeded with demo usage."""
    path = os.path.join(str(tmp_path), "demo.db")
    seed(path, now=datetime.now(timezone.utc))
    return path


class TestCLI:
    """Test CLI commands."""

    def test_no_command_prints_hint(self):
        result = runner.invoke(app, [])

        assert result.exit_code == EXIT_CODE_PASS
        assert "Use --help" in result.stdout

    def test_init_creates_database(self, tmp_path):
        db = os.path.join(str(tmp_path), "new.db")

        result = runner.invoke(app, ["init", "--db", db])

        assert result.exit_code == EXIT_CODE_PASS
        assert "Database initialized successfully" in result.stdout
        assert os.path.exists(db)

    def test_evaluate_reports_counts(self, demo_db):
        result = runner.invoke(app, ["evaluate", *SCOPE_ARGS, "--db", demo_db])

        assert result.exit_code == EXIT_CODE_PASS
        assert "Evaluation Result" in result.stdout
        assert "Created: 2" in result.stdout
        assert "Errors: 0" in result.stdout

    def test_evaluate_twice_creates_nothing_new(self, demo_db):
        runner.invoke(app, ["evaluate", *SCOPE_ARGS, "--db", demo_db])

        result = runner.invoke(app, ["evaluate", *SCOPE_ARGS, "--db", demo_db])

        assert result.exit_code == EXIT_CODE_PASS
        assert "Created: 0" in result.stdout
        assert "Unchanged: 2" in result.stdout

    def test_evaluate_without_schema_suggests_init(self, tmp_path):
        db = os.path.join(str(tmp_path), "missing.db")

        result = runner.invoke(app, ["evaluate", *SCOPE_ARGS, "--db", db])

        assert result.exit_code == EXIT_CODE_FAIL
        assert "cost-advisor init" in result.stdout

    def test_list_and_summary(self, demo_db):
        runner.invoke(app, ["evaluate", *SCOPE_ARGS, "--db", demo_db])

        listed = runner.invoke(app, ["list", *SCOPE_ARGS, "--db", demo_db])
        summary = runner.invoke(app, ["summary", *SCOPE_ARGS, "--db", demo_db])

        assert listed.exit_code == EXIT_CODE_PASS
        assert "Recommendations" in listed.stdout
        assert "No recommendations found." not in listed.stdout
        assert summary.exit_code == EXIT_CODE_PASS
        assert "Total potential savings: $58.00" in summary.stdout

    def test_list_empty(self, demo_db):
        result = runner.invoke(app, ["list", *SCOPE_ARGS, "--db", demo_db])

        assert result.exit_code == EXIT_CODE_PASS
        assert "No recommendations found." in result.stdout

    def test_list_rejects_unknown_priority(self, demo_db):
        result = runner.invoke(app, ["list", *SCOPE_ARGS, "--db", demo_db, "--priority", "urgent"])

        assert result.exit_code == EXIT_CODE_FAIL

    def test_dismiss_requires_reason(self, demo_db):
        runner.invoke(app, ["evaluate", *SCOPE_ARGS, "--db", demo_db])
        rec = RecommendationRepository(demo_db).list_active(AccountScope(DEMO_OWNER, DEMO_ACCOUNT))[0]

        result = runner.invoke(app, ["dismiss", rec.id, "--actor", "alice", "--db", demo_db])

        assert result.exit_code == EXIT_CODE_FAIL
        assert "validation_error" in result.stdout
        assert RecommendationRepository(demo_db).get(rec.id).status == RecommendationStatus.PENDING

    def test_implement_then_implement_again(self, demo_db):
        runner.invoke(app, ["evaluate", *SCOPE_ARGS, "--db", demo_db])
        rec = RecommendationRepository(demo_db).list_active(AccountScope(DEMO_OWNER, DEMO_ACCOUNT))[0]

        first = runner.invoke(app, ["implement", rec.id, "--actor", "alice", "--db", demo_db])
        second = runner.invoke(app, ["implement", rec.id, "--actor", "alice", "--db", demo_db])

        assert first.exit_code == EXIT_CODE_PASS
        assert "is now implemented" in first.stdout
        assert second.exit_code == EXIT_CODE_FAIL
        assert "conflict" in second.stdout

    def test_dismiss_with_reason(self, demo_db):
        runner.invoke(app, ["evaluate", *SCOPE_ARGS, "--db", demo_db])
        rec = RecommendationRepository(demo_db).list_active(AccountScope(DEMO_OWNER, DEMO_ACCOUNT))[0]

        result = runner.invoke(app, ["dismiss", rec.id, "--actor", "alice",
                                     "--reason", "Batch host", "--db", demo_db])

        assert result.exit_code == EXIT_CODE_PASS
        stored = RecommendationRepository(demo_db).get(rec.id)
        assert stored.status == RecommendationStatus.DISMISSED
        assert stored.dismissal_reason == "Batch host"

    def test_summary_totals_each_currency(self, demo_db, make_recommendation):
        RecommendationRepository(demo_db).save_recommendations([
            make_recommendation(resource_id="i-usd", savings="50.00",
                                owner_id=DEMO_OWNER, account_ref=DEMO_ACCOUNT),
            make_recommendation(resource_id="i-eur", savings="20.00", currency="EUR",
                                owner_id=DEMO_OWNER, account_ref=DEMO_ACCOUNT),
        ])

        result = runner.invoke(app, ["summary", *SCOPE_ARGS, "--db", demo_db])

        assert result.exit_code == EXIT_CODE_PASS
        assert "Total potential savings: $50.00" in result.stdout
        assert "Total potential savings: 20.00 EUR" in result.stdout


class TestDemoSeed:
    """Test the demo data seeder."""

    def test_seed_inserts_a_week_of_two_resources(self, tmp_path):
        path = os.path.join(str(tmp_path), "seed.db")

        assert seed(path) == 14
