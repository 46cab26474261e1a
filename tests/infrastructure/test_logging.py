import structlog
from structlog.testing import capture_logs

from roundtable.infrastructure.observability.logging import AgentLogger, add_service_context


class TestAgentLogger:
    def test_committed_and_failed_turns(self):
        logger = AgentLogger("test")

        with capture_logs() as logs:
            logger.log_turn("s1", "Atlas", 0, success=True, duration_ms=12.345, regenerated=True)
            logger.log_turn("s1", "Luna", 1, success=False, error="backend down")

        assert logs[0]["event"] == "turn_committed"
        assert logs[0]["regenerated"] is True
        assert logs[0]["duration_ms"] == 12.3
        assert logs[1]["event"] == "turn_failed"
        assert logs[1]["log_level"] == "warning"
        assert logs[1]["error"] == "backend down"

    def test_unchanged_phase_is_not_logged(self):
        logger = AgentLogger("test")

        with capture_logs() as logs:
            logger.log_state_transition("s1", "paused", "paused")
            logger.log_state_transition("s1", "idle", "active", reason="start")

        assert [(e["from_phase"], e["to_phase"]) for e in logs] == [("idle", "active")]

    def test_failed_sandbox_run_is_a_warning(self):
        with capture_logs() as logs:
            AgentLogger("test").log_sandbox_execution("s1", "c1", "js", 124, 30000, error="timed out")

        assert logs[0]["log_level"] == "warning"


class TestServiceContext:
    def test_bound_session_is_copied(self):
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(session_id="s9")
        try:
            event = add_service_context(None, "info", {"event": "x"})
            explicit = add_service_context(None, "info", {"event": "x", "session_id": "other"})
        finally:
            structlog.contextvars.clear_contextvars()

        assert event["session_id"] == "s9"
        assert explicit["session_id"] == "other"
