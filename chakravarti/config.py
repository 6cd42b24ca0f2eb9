"""
Configuration management for chakravarti.

Loads config.yaml from the chakravarti home directory:

    $CHAKRAVARTI_HOME/config.yaml   (default ~/.config/chakravarti)

An optional `env_file` entry names a dotenv file whose variables are loaded
into the environment (provider API keys and the like).
"""

import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Optional

import yaml
from dotenv import load_dotenv

from chakravarti.schemas import JobConfig, OptimizeMode

HOME_ENV_VAR = "CHAKRAVARTI_HOME"
DEFAULT_HOME = "~/.config/chakravarti"
CONFIG_FILENAME = "config.yaml"


class ConfigError(Exception):
    """Configuration validation error."""
    pass


def get_chakravarti_home() -> Path:
    """Return the chakravarti home directory ($CHAKRAVARTI_HOME or the default)."""
    home = os.environ.get(HOME_ENV_VAR)
    if home:
        return Path(home).expanduser()
    return Path(DEFAULT_HOME).expanduser()


@dataclass
class ChakravartiConfig:
    """
    Complete chakravarti configuration.

    Attributes:
        max_attempts: Default attempt budget per job
        optimize: Default model selection strategy (cost, time, balanced)
        planner_model: Planner model override
        executor_model: Executor model override
        step_timeout_s: Default per-step timeout in seconds
        job_timeout_s: Optional wall clock limit per job
        max_in_flight: Max concurrent steps within a batch
        base_branch: Branch isolated workspaces are created from
        specs_dir: Directory the spec registry loads from
        store_dir: Directory job records are written to
        log_file: Log file path
        log_level: DEBUG, INFO, WARNING or ERROR
        log_format: "structured" (JSON) or "pretty"
        env_file: Dotenv file loaded into the environment
        allowed_factory_modules: Modules collaborator factories may be
            loaded from (exact match or submodule)
    """
    max_attempts: int = 3
    optimize: str = OptimizeMode.BALANCED.value
    planner_model: Optional[str] = None
    executor_model: Optional[str] = None
    step_timeout_s: float = 300.0
    job_timeout_s: Optional[float] = None
    max_in_flight: int = 4
    base_branch: str = "main"
    specs_dir: str = ".specs"
    store_dir: str = "~/.local/share/chakravarti"
    log_file: str = "~/.local/share/chakravarti/logs/chakravarti.log"
    log_level: str = "INFO"
    log_format: str = "structured"
    env_file: Optional[str] = None
    allowed_factory_modules: list[str] = field(default_factory=list)

    def validate(self) -> None:
        """
        Validate configuration values.

        Raises:
            ConfigError: If a value is out of range or unknown
        """
        if self.max_attempts < 1:
            raise ConfigError("max_attempts must be >= 1")
        if self.max_in_flight < 1:
            raise ConfigError("max_in_flight must be >= 1")
        if self.step_timeout_s <= 0:
            raise ConfigError("step_timeout_s must be positive")
        if self.job_timeout_s is not None and self.job_timeout_s <= 0:
            raise ConfigError("job_timeout_s must be positive")
        try:
            OptimizeMode(self.optimize)
        except ValueError:
            valid = ", ".join(m.value for m in OptimizeMode)
            raise ConfigError(f"optimize must be one of: {valid} (got {self.optimize!r})")
        if self.log_level.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR"):
            raise ConfigError(f"Invalid log_level: {self.log_level}")
        if self.log_format not in ("structured", "pretty"):
            raise ConfigError(f"log_format must be 'structured' or 'pretty' (got {self.log_format!r})")

    def to_job_config(self, **overrides: Any) -> JobConfig:
        """Build a JobConfig from these defaults; non-None overrides win."""
        values = {
            "max_attempts": self.max_attempts,
            "optimize": OptimizeMode(self.optimize),
            "planner_model": self.planner_model,
            "executor_model": self.executor_model,
            "step_timeout_s": self.step_timeout_s,
            "job_timeout_s": self.job_timeout_s,
            "max_in_flight": self.max_in_flight,
            "base_branch": self.base_branch,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        if isinstance(values["optimize"], str):
            values["optimize"] = OptimizeMode(values["optimize"])
        return JobConfig(**values)

    def get_store_dir(self) -> Path:
        return Path(self.store_dir).expanduser()

    def get_specs_dir(self) -> Path:
        return Path(self.specs_dir).expanduser()

    def get_log_file_path(self) -> Path:
        return Path(self.log_file).expanduser()

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ChakravartiConfig":
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigError(f"Unknown configuration keys: {', '.join(unknown)}")
        return cls(**data)


def load_config(config_path: Optional[Path] = None) -> ChakravartiConfig:
    """
    Load configuration from YAML file.

    Args:
        config_path: Path to config file. Defaults to $CHAKRAVARTI_HOME/config.yaml

    Returns:
        Validated ChakravartiConfig

    Raises:
        FileNotFoundError: If the config file does not exist
        ConfigError: If the config is invalid
    """
    if config_path is None:
        config_path = get_chakravarti_home() / CONFIG_FILENAME

    if not config_path.exists():
        raise FileNotFoundError(
            f"chakravarti config.yaml not found at {config_path}. Run 'chakravarti init' to create one."
        )

    try:
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML syntax: {e}")

    if not isinstance(data, dict):
        raise ConfigError("Configuration file must contain a mapping")

    config = ChakravartiConfig.from_dict(data)
    config.validate()

    if config.env_file:
        env_path = Path(config.env_file).expanduser()
        if env_path.exists():
            load_dotenv(env_path)

    return config


def write_default_config(home: Path, force: bool = False) -> Path:
    """
    Write a default config.yaml (and an empty .env) into home.

    Raises:
        FileExistsError: If config.yaml exists and force is False
    """
    home.mkdir(parents=True, exist_ok=True)
    cfg_path = home / CONFIG_FILENAME
    if cfg_path.exists() and not force:
        raise FileExistsError(f"Config already exists at {cfg_path}")

    config = ChakravartiConfig(env_file=str(home / ".env"))
    cfg_path.write_text(yaml.safe_dump(config.to_dict(), sort_keys=False))

    env_path = home / ".env"
    if not env_path.exists():
        env_path.write_text("# OPENAI_API_KEY=...\n# ANTHROPIC_API_KEY=...\n")
    return cfg_path
