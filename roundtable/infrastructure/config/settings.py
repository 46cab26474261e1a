from typing import List, Optional
from pydantic import BaseModel, Field
import os


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    return float(value) if value not in (None, "") else default


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value not in (None, "") else default


class GenerationConfig(BaseModel):
    """Generation backend connection and sampling defaults"""
    base_url: str = Field(default="http://localhost:11434", description="Ollama server URL")
    request_timeout: float = Field(default=300.0, description="Per-request timeout in seconds")
    temperature: float = 0.7
    top_p: float = 0.9
    num_ctx: int = 4096
    repeat_penalty: float = 1.5
    refine_model: str = Field(default="llama3.2:latest", description="Model used to refine topics")
    summary_model: str = Field(default="gemma2:9b", description="Model used for session summaries")


class SchedulerConfig(BaseModel):
    """Turn scheduling, retry and repetition settings"""
    history_window: int = 15
    max_attempts: int = 3
    backoff_base: float = 1.0
    speaking_delay: float = 2.0
    tick_interval: float = 1.0
    repetition_threshold: float = 0.5
    repetition_window: int = 5
    execute_code: bool = Field(default=False, description="Run JS/TS blocks from agent messages in the sandbox")


class MemoryConfig(BaseModel):
    """Long-term memory limits and storage location"""
    max_memories: int = 1000
    relevant_limit: int = 5
    storage_dir: Optional[str] = Field(default=None, description="Directory for JSON state; in-memory when unset")


class SandboxConfig(BaseModel):
    """Container sandbox settings"""
    enabled: bool = True
    image: str = "roundtable-sandbox:latest"
    build_context: str = "docker/sandbox"
    memory_limit_mb: int = 512
    execution_timeout: float = 30.0
    working_dir: str = "/workspace"

    @property
    def memory_limit_bytes(self) -> int:
        return self.memory_limit_mb * 1024 * 1024


class LoggingConfig(BaseModel):
    level: str = "INFO"
    format: str = "json"
    service_name: str = "roundtable"


class ServerConfig(BaseModel):
    host: str = "0.0.0.0"
    port: int = 8000
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])


class Settings(BaseModel):
    """Application settings"""
    generation: GenerationConfig = Field(default_factory=GenerationConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    memory: MemoryConfig = Field(default_factory=MemoryConfig)
    sandbox: SandboxConfig = Field(default_factory=SandboxConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from ROUNDTABLE_* environment variables"""

        generation = GenerationConfig()
        scheduler = SchedulerConfig()
        memory = MemoryConfig()
        sandbox = SandboxConfig()
        logging_config = LoggingConfig()
        server = ServerConfig()

        cors = os.getenv("ROUNDTABLE_CORS_ORIGINS")

        return cls(
            generation=GenerationConfig(
                base_url=os.getenv("OLLAMA_BASE_URL", generation.base_url),
                request_timeout=_env_float("ROUNDTABLE_REQUEST_TIMEOUT", generation.request_timeout),
                temperature=_env_float("ROUNDTABLE_TEMPERATURE", generation.temperature),
                refine_model=os.getenv("ROUNDTABLE_REFINE_MODEL", generation.refine_model),
                summary_model=os.getenv("ROUNDTABLE_SUMMARY_MODEL", generation.summary_model),
            ),
            scheduler=SchedulerConfig(
                history_window=_env_int("ROUNDTABLE_HISTORY_WINDOW", scheduler.history_window),
                max_attempts=_env_int("ROUNDTABLE_MAX_ATTEMPTS", scheduler.max_attempts),
                backoff_base=_env_float("ROUNDTABLE_BACKOFF_BASE", scheduler.backoff_base),
                speaking_delay=_env_float("ROUNDTABLE_SPEAKING_DELAY", scheduler.speaking_delay),
                tick_interval=_env_float("ROUNDTABLE_TICK_INTERVAL", scheduler.tick_interval),
                repetition_threshold=_env_float("ROUNDTABLE_REPETITION_THRESHOLD", scheduler.repetition_threshold),
                execute_code=_env_bool("ROUNDTABLE_EXECUTE_CODE", scheduler.execute_code),
            ),
            memory=MemoryConfig(
                max_memories=_env_int("ROUNDTABLE_MAX_MEMORIES", memory.max_memories),
                storage_dir=os.getenv("ROUNDTABLE_STORAGE_DIR") or None,
            ),
            sandbox=SandboxConfig(
                enabled=_env_bool("ROUNDTABLE_SANDBOX_ENABLED", sandbox.enabled),
                image=os.getenv("ROUNDTABLE_SANDBOX_IMAGE", sandbox.image),
                build_context=os.getenv("ROUNDTABLE_SANDBOX_CONTEXT", sandbox.build_context),
                memory_limit_mb=_env_int("ROUNDTABLE_SANDBOX_MEMORY_MB", sandbox.memory_limit_mb),
                execution_timeout=_env_float("ROUNDTABLE_SANDBOX_TIMEOUT", sandbox.execution_timeout),
            ),
            logging=LoggingConfig(
                level=os.getenv("ROUNDTABLE_LOG_LEVEL", logging_config.level),
                format=os.getenv("ROUNDTABLE_LOG_FORMAT", logging_config.format),
            ),
            server=ServerConfig(
                host=os.getenv("ROUNDTABLE_HOST", server.host),
                port=_env_int("ROUNDTABLE_PORT", server.port),
                cors_origins=[o.strip() for o in cors.split(",") if o.strip()] if cors else server.cors_origins,
            ),
        )
