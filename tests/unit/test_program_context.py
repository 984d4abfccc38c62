"""
Active program tracking per session
"""

import pytest
from freezegun import freeze_time

from pmo_financial.program_context import ProgramContextManager


@pytest.fixture
def contexts():
    return ProgramContextManager()


class TestActiveProgram:
    def test_set_and_get(self, contexts):
        context = contexts.set_active_program("PRG-001", "Apollo", user_id="alice")

        assert contexts.get_active_program() == "PRG-001"
        assert contexts.get_active_context() is context
        assert contexts.is_program_active("PRG-001")
        assert context.to_dict()["program_name"] == "Apollo"

    def test_sessions_are_isolated(self, contexts):
        contexts.set_active_program("PRG-001", session_id="s1")
        contexts.set_active_program("PRG-002", session_id="s2")

        assert contexts.get_active_program("s1") == "PRG-001"
        assert contexts.get_active_program("s2") == "PRG-002"
        assert contexts.get_active_program() is None

        contexts.clear_active_program("s1")
        assert contexts.get_active_program("s1") is None
        assert contexts.get_active_program("s2") == "PRG-002"

    def test_program_id_required(self, contexts):
        with pytest.raises(ValueError):
            contexts.set_active_program("")

    def test_managers_do_not_share_state(self, contexts):
        contexts.set_active_program("PRG-001")
        assert ProgramContextManager().get_active_program() is None


class TestValidation:
    def test_no_active_program_is_valid(self, contexts):
        assert contexts.validate_program_context("PRG-009") == {"valid": True}

    def test_mismatch(self, contexts):
        contexts.set_active_program("PRG-001")

        assert contexts.validate_program_context("PRG-001") == {"valid": True}
        result = contexts.validate_program_context("PRG-002")
        assert result["valid"] is False
        assert result["error"] == (
            "Program context mismatch: active program is PRG-001, but operation requested for PRG-002"
        )


class TestHistory:
    def test_switch_and_recent_programs(self, contexts):
        with freeze_time("2024-05-01 09:00:00") as frozen:
            contexts.set_active_program("PRG-001", user_id="alice")
            frozen.tick(60)
            contexts.switch_program("PRG-002", user_id="alice")
            frozen.tick(60)
            contexts.switch_program("PRG-001", user_id="alice")

        assert contexts.get_active_program() == "PRG-001"
        assert contexts.get_user_recent_programs("alice") == ["PRG-001", "PRG-002"]
        assert contexts.get_user_recent_programs("alice", limit=1) == ["PRG-001"]
        assert contexts.get_user_access("alice")[0].access_count == 2
        assert contexts.get_user_recent_programs("bob") == []

    def test_stats_and_clear(self, contexts):
        contexts.set_active_program("PRG-001", user_id="alice", session_id="s1")
        contexts.set_active_program("PRG-001", user_id="bob", session_id="s2")
        contexts.set_active_program("PRG-003", session_id="s3")

        assert contexts.get_stats() == {"active_sessions": 3, "unique_programs": 2, "total_users": 2}

        contexts.clear()
        assert contexts.get_stats() == {"active_sessions": 0, "unique_programs": 0, "total_users": 0}
