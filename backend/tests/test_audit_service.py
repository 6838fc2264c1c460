"""Tests for audit service."""

import uuid
from unittest.mock import MagicMock

from placement.audit.models import AuditLog
from placement.audit.service import _get_ip, audit


class TestGetIp:
    def test_extracts_forwarded_ip(self):
        request = MagicMock()
        request.headers = {"X-Forwarded-For": "1.2.3.4, 5.6.7.8"}
        assert _get_ip(request) == "1.2.3.4"

    def test_uses_client_host(self):
        request = MagicMock()
        request.headers = {}
        request.client.host = "10.0.0.1"
        assert _get_ip(request) == "10.0.0.1"

    def test_returns_empty_when_no_client(self):
        request = MagicMock()
        request.headers = {}
        request.client = None
        assert _get_ip(request) == ""


class TestAudit:
    def test_creates_audit_log(self, db_session):
        actor = uuid.uuid4()
        request = MagicMock()
        request.headers = {"X-Forwarded-For": "192.168.1.1"}

        audit(db_session, request, "slot_publish", "slot=abc", actor_id=actor)
        db_session.commit()

        logs = db_session.query(AuditLog).all()
        assert len(logs) == 1
        assert logs[0].action == "slot_publish"
        assert logs[0].detail == "slot=abc"
        assert logs[0].ip_address == "192.168.1.1"
        assert logs[0].actor_id == actor

    def test_caller_commits(self, db_session, session_factory):
        request = MagicMock()
        request.headers = {}
        request.client.host = "127.0.0.1"

        audit(db_session, request, "slot_start")

        with session_factory() as other:
            assert other.query(AuditLog).count() == 0

    def test_creates_log_without_actor(self, db_session):
        request = MagicMock()
        request.headers = {}
        request.client.host = "127.0.0.1"

        audit(db_session, request, "slot_cancel")
        db_session.commit()

        logs = db_session.query(AuditLog).all()
        assert len(logs) == 1
        assert logs[0].actor_id is None
        assert logs[0].action == "slot_cancel"
