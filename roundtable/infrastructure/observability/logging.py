from typing import Dict, Any, List, Optional
import logging
import os
import sys
import structlog


RENDERERS = {
    "json": structlog.processors.JSONRenderer,
    "console": structlog.dev.ConsoleRenderer,
}


def add_service_context(logger: logging.Logger, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Copy the bound conversation context onto events that do not carry it"""

    context = structlog.contextvars.get_contextvars()
    for key in ("session_id", "trace_id"):
        value = context.get(key)
        if value and key not in event_dict:
            event_dict[key] = value
    return event_dict


def build_processors(log_format: str) -> List[Any]:
    renderer = RENDERERS.get(log_format, structlog.dev.ConsoleRenderer)
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        add_service_context,
        renderer(),
    ]


def setup_logging(
    log_level: str = "INFO",
    log_format: str = "json",
    service_name: str = "roundtable"
) -> None:
    """Route structlog through stdlib logging on stdout"""

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO)
    )
    # uvicorn access lines would interleave with the structured events
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

    structlog.configure(
        processors=build_processors(log_format),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    structlog.contextvars.bind_contextvars(
        service=service_name,
        environment=os.getenv("ROUNDTABLE_ENVIRONMENT", "development"),
    )


def bind_session(session_id: str):
    """Attach a session id to every event logged from the current task"""
    structlog.contextvars.bind_contextvars(session_id=session_id)


class AgentLogger:
    """Structured records for turns, phase changes and sandbox runs"""

    def __init__(self, name: str):
        self.logger = structlog.get_logger(name)

    def log_turn(
        self,
        session_id: str,
        agent_name: str,
        turn_index: int,
        success: bool,
        duration_ms: Optional[float] = None,
        regenerated: bool = False,
        error: Optional[str] = None
    ):
        fields = dict(
            session_id=session_id,
            agent_name=agent_name,
            turn_index=turn_index,
            duration_ms=round(duration_ms, 1) if duration_ms is not None else None,
        )
        if success:
            self.logger.info("turn_committed", regenerated=regenerated, **fields)
        else:
            self.logger.warning("turn_failed", error=error, **fields)

    def log_state_transition(
        self,
        session_id: str,
        from_phase: str,
        to_phase: str,
        reason: Optional[str] = None
    ):
        if from_phase == to_phase:
            return
        self.logger.info(
            "session_transition",
            session_id=session_id,
            from_phase=from_phase,
            to_phase=to_phase,
            reason=reason
        )

    def log_sandbox_execution(
        self,
        session_id: str,
        sandbox_id: str,
        language: str,
        exit_code: int,
        duration_ms: int,
        error: Optional[str] = None
    ):
        log = self.logger.info if exit_code == 0 and error is None else self.logger.warning
        log(
            "sandbox_execution",
            session_id=session_id,
            sandbox_id=sandbox_id,
            language=language,
            exit_code=exit_code,
            duration_ms=duration_ms,
            error=error
        )


agent_logger = AgentLogger("roundtable")
