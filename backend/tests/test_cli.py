"""
CLI command tests.
"""

from app.extensions import db
from app.models import User


class TestSystemCommands:

    def test_init_creates_default_users(self, app, db_session):
        runner = app.test_cli_runner()

        first = runner.invoke(args=["system", "init", "--password", "Password123!"])
        second = runner.invoke(args=["system", "init", "--password", "Password123!"])

        assert first.exit_code == 0, first.output
        assert "Created user 'admin'" in first.output
        assert "already exists" in second.output
        roles = {u.username: u.role for u in db.session.query(User).all()}
        assert roles == {"admin": "admin", "staff": "staff"}


class TestUserCommands:

    def test_create_and_list(self, app, db_session):
        runner = app.test_cli_runner()

        created = runner.invoke(args=[
            "users", "create", "--username", "cashier2", "--password", "Password123!", "--role", "staff",
        ])
        listed = runner.invoke(args=["users", "list"])

        assert created.exit_code == 0, created.output
        assert "cashier2" in listed.output

    def test_create_rejects_weak_password(self, app, db_session):
        runner = app.test_cli_runner()

        result = runner.invoke(args=[
            "users", "create", "--username", "cashier3", "--password", "short", "--role", "staff",
        ])

        assert result.exit_code != 0
        assert "at least 8 characters" in result.output
