"""Sandpiper configuration — loaded from .env via pydantic-settings."""

from pydantic import Field
from pydantic_settings import BaseSettings


class SandpiperSettings(BaseSettings):
    """All Sandpiper configuration. Reads from .env file and environment variables."""

    # --- Sandbox backend ---
    sandbox_provider: str = Field(
        default="local",
        description="Sandbox backend built by ProviderFactory: local|e2b",
    )
    local_sandbox_root: str | None = Field(
        default=None,
        description="Base directory for local sandboxes (fresh temp dir when unset)",
    )
    project_dir: str = Field(
        default="/home/user/app",
        description="Project working directory inside remote sandboxes",
    )

    # --- E2B ---
    e2b_api_key: str = Field(default="", description="E2B API key")
    e2b_template: str = Field(default="base", description="E2B sandbox template")
    e2b_timeout_seconds: int = Field(
        default=1800,
        description="Lifetime of a remote E2B sandbox before it is reaped",
    )

    # --- Command execution ---
    command_timeout_seconds: float = Field(
        default=120.0,
        description="Per-command timeout; a timed-out command is never retried",
    )
    package_install_command: str = Field(
        default="npm install --legacy-peer-deps",
        description="Command prefix used to install package specs",
    )
    package_batch_size: int = Field(
        default=0,
        description="Packages per install invocation (0 = all in one)",
    )
    max_retries: int = Field(
        default=3,
        description="Attempts for idempotent operations (installs, retry-safe commands)",
    )
    retry_backoff_seconds: float = Field(default=0.5)
    retry_safe_commands: list[str] = Field(
        default_factory=lambda: [
            "ls", "cat", "pwd", "echo", "head", "tail", "find", "du",
            "npm ls", "npm view", "git status", "git log", "git diff",
        ],
        description="Command prefixes considered non-mutating (eligible for retry)",
    )

    # --- Smart merge (Morph fast-apply) ---
    morph_api_key: str = Field(default="", description="Enables smart merge when set")
    morph_base_url: str = Field(default="https://api.morphllm.com/v1")
    morph_model: str = Field(default="morph-v3-large")
    morph_timeout_seconds: float = Field(default=60.0)

    # --- Archive ---
    archive_excludes: list[str] = Field(
        default_factory=lambda: [
            "node_modules/*", ".git/*", ".next/*", "dist/*", "build/*", "*.log",
        ],
    )
    archive_file_name: str = Field(default="sandbox-project.zip")

    # --- Logging ---
    log_level: str = Field(default="INFO", description="Log level")
    log_format: str = Field(
        default="console",
        description="Log format: 'console' for dev, 'json' for production",
    )

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    @property
    def smart_merge_available(self) -> bool:
        return bool(self.morph_api_key)


# Singleton: import this everywhere
settings = SandpiperSettings()
