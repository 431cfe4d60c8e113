"""Configuration management for Issue Forge."""

import os
from pathlib import Path
from typing import List, Literal, Optional, Tuple

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

CONFIG_NAMES = ["config.yaml", "config.yml", ".issue-forge.yaml", ".issue-forge.yml"]


class ConfigError(Exception):
    """Configuration is missing or invalid."""


class GlobalConfig(BaseModel):
    """Daemon-wide settings."""

    polling_interval: int = Field(default=600, ge=1)
    error_retry_interval: int = Field(default=30, ge=1)
    ai_provider: Literal["claude", "gemini"] = "claude"
    model: Optional[str] = None
    max_iterations: int = Field(default=3, ge=1)
    command_timeout: int = Field(default=600, ge=1)
    max_retries: int = Field(default=3, ge=1)
    retry_delay: float = Field(default=5, ge=0)


class LoggingConfig(BaseModel):
    """Log output settings."""

    level: str = "info"
    file_enabled: bool = False
    file_path: Path = Path("./logs")
    max_files: int = 7


class NotificationsConfig(BaseModel):
    """Chat notification settings."""

    enabled: bool = False
    provider: Literal["none", "slack", "telegram"] = "none"
    webhook_url: Optional[str] = None
    bot_token: Optional[str] = None
    chat_id: Optional[str] = None
    send_all_responses: bool = True


class ProjectConfig(BaseModel):
    """A repository checkout to monitor."""

    path: Path
    base_branch: str = "main"
    enabled: bool = True


class Config(BaseModel):
    """Issue Forge configuration."""

    model_config = ConfigDict(populate_by_name=True)

    global_: GlobalConfig = Field(default_factory=GlobalConfig, alias="global")
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    notifications: NotificationsConfig = Field(default_factory=NotificationsConfig)
    projects: List[ProjectConfig] = Field(default_factory=list)

    def enabled_projects(self) -> List[ProjectConfig]:
        return [p for p in self.projects if p.enabled]

    def get_project(self, path: Path) -> Optional[ProjectConfig]:
        """Find a configured project by path."""
        resolved = Path(path).resolve()
        for project in self.projects:
            if project.path.resolve() == resolved:
                return project
        return None


def find_config_file(start_path: Optional[Path] = None) -> Optional[Path]:
    """Find a config file by walking up the directory tree.

    Args:
        start_path: Directory to start searching from (default: cwd)

    Returns:
        Path to config file, or None if not found
    """
    current = (start_path or Path.cwd()).resolve()

    while True:
        for name in CONFIG_NAMES:
            config_file = current / name
            if config_file.exists():
                return config_file

        parent = current.parent
        if parent == current:
            return None
        current = parent


def _apply_env_overrides(data: dict) -> dict:
    logging_section = dict(data.get("logging") or {})
    if os.environ.get("LOG_LEVEL"):
        logging_section["level"] = os.environ["LOG_LEVEL"].lower()
    if os.environ.get("LOG_TO_FILE", "").lower() == "true":
        logging_section["file_enabled"] = True
    if os.environ.get("LOG_DIR"):
        logging_section["file_path"] = os.environ["LOG_DIR"]
    data["logging"] = logging_section

    notifications = dict(data.get("notifications") or {})
    for key, env_var in (
        ("webhook_url", "SLACK_WEBHOOK_URL"),
        ("bot_token", "TELEGRAM_BOT_TOKEN"),
        ("chat_id", "TELEGRAM_CHAT_ID"),
    ):
        if os.environ.get(env_var):
            notifications[key] = os.environ[env_var]
    data["notifications"] = notifications
    return data


def validate_config(config: Config) -> None:
    """Check things pydantic cannot: project count and paths.

    Raises:
        ConfigError: If the configuration is unusable
    """
    if not config.projects:
        raise ConfigError("At least one project must be configured.")

    for project in config.projects:
        if not project.path.exists():
            raise ConfigError(f"Project path does not exist: {project.path}")


def load_config(path: Optional[Path] = None) -> Tuple[Config, Path]:
    """Load and validate configuration.

    Args:
        path: Explicit config file (searched for from cwd when None)

    Returns:
        Tuple of (config, path of the file it came from)

    Raises:
        ConfigError: If no file is found or its contents are invalid
    """
    config_file = Path(path) if path else find_config_file()
    if config_file is None or not config_file.exists():
        raise ConfigError('No config file found. Run "issue-forge init" to create one.')

    try:
        with open(config_file, "r") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {config_file}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Config file {config_file} must contain a mapping")

    try:
        config = Config.model_validate(_apply_env_overrides(data))
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration in {config_file}:\n{e}") from e

    validate_config(config)
    return config, config_file


def default_config_yaml(project_path: Path) -> str:
    """Starter config written by ``issue-forge init``."""
    return (
        "# Issue Forge Configuration\n\n"
        "global:\n"
        "  polling_interval: 600  # Seconds to wait when no issues\n"
        "  ai_provider: claude    # claude or gemini\n"
        "  model: sonnet\n"
        "  max_iterations: 3\n\n"
        "logging:\n"
        "  level: info\n"
        "  file_enabled: false\n\n"
        "notifications:\n"
        "  enabled: false\n"
        "  provider: none         # none, slack or telegram\n\n"
        "projects:\n"
        f'  - path: "{project_path}"\n'
        "    base_branch: main\n"
    )
