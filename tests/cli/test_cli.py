"""Tests for the facebatch CLI (typer CliRunner)."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, patch

import httpx
import pytest
from typer.testing import CliRunner

from facebatch import __version__
from facebatch.cli.app import app
from facebatch.core.errors import RemoteError
from facebatch.workflows.enrollment import GroupEnrollment, PersonEnrollment

runner = CliRunner()


@pytest.fixture
def key(monkeypatch):
    monkeypatch.setenv("FACEBATCH_SUBSCRIPTION_KEY", "key-123")


def _outcome(tmp_path) -> GroupEnrollment:
    person = PersonEnrollment(name="alice", person_id="p1", folder=tmp_path / "alice", faces={"a.jpg": "f1"})
    return GroupEnrollment(group_id="family", persons=[person], training={"status": "succeeded"})


class TestRoot:
    def test_version(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_help(self):
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        assert "enroll" in result.output
        assert "train" in result.output


class TestEnroll:
    def test_enroll_json(self, tmp_path, key):
        mock = AsyncMock(return_value=_outcome(tmp_path))
        with patch("facebatch.cli.app.enroll_group", mock):
            result = runner.invoke(app, ["enroll", str(tmp_path), "--group", "family", "-c", "2", "--json"])

        assert result.exit_code == 0, result.output
        payload = json.loads(result.output)
        assert payload["group_id"] == "family"
        assert payload["total_faces"] == 1

        _, kwargs = mock.call_args
        assert kwargs["dispatch_policy"].max_concurrency == 2
        assert kwargs["create_group"] is False
        assert kwargs["train"] is True

    def test_enroll_table(self, tmp_path, key):
        with patch("facebatch.cli.app.enroll_group", AsyncMock(return_value=_outcome(tmp_path))):
            result = runner.invoke(app, ["enroll", str(tmp_path), "--group", "family"])
        assert result.exit_code == 0, result.output
        assert "alice" in result.output
        assert "succeeded" in result.output

    def test_missing_key_fails(self, tmp_path):
        result = runner.invoke(app, ["enroll", str(tmp_path), "--group", "family"])
        assert result.exit_code == 1

    def test_remote_error_fails(self, tmp_path, key):
        mock = AsyncMock(side_effect=RemoteError("LargePersonGroupNotFound", "Large person group is not found."))
        with patch("facebatch.cli.app.enroll_group", mock):
            result = runner.invoke(app, ["enroll", str(tmp_path), "--group", "family"])
        assert result.exit_code == 1

    def test_connection_error_fails_cleanly(self, tmp_path, key):
        mock = AsyncMock(side_effect=httpx.ConnectError("connection refused"))
        with patch("facebatch.cli.app.enroll_group", mock):
            result = runner.invoke(app, ["enroll", str(tmp_path), "--group", "family"])
        assert result.exit_code == 1
        assert isinstance(result.exception, SystemExit)


class TestTrain:
    def test_train(self, key):
        mock = AsyncMock(return_value={"status": "succeeded", "message": None})
        with patch("facebatch.cli.app.train_and_wait", mock):
            result = runner.invoke(app, ["train", "family", "--json"])

        assert result.exit_code == 0, result.output
        assert json.loads(result.output)["status"] == "succeeded"
        args, kwargs = mock.call_args
        assert args[1] == "family"
        assert kwargs["timeout"] is None

    def test_train_timeout(self, key):
        with patch("facebatch.cli.app.train_and_wait", AsyncMock(side_effect=TimeoutError("too slow"))):
            result = runner.invoke(app, ["train", "family", "--timeout", "1"])
        assert result.exit_code == 1

    def test_train_connection_error_fails_cleanly(self, key):
        with patch("facebatch.cli.app.train_and_wait", AsyncMock(side_effect=httpx.ConnectError("refused"))):
            result = runner.invoke(app, ["train", "family"])
        assert result.exit_code == 1
        assert isinstance(result.exception, SystemExit)
