"""Configuration: YAML files validated by pydantic, plus env-driven Settings.

Two files are merged on every run:

    ~/.rize/config.yml                         global environment variables
    ~/.rize/projects/<name>-<hash>/config.yml  per-project services + env

Project environment values override global ones. Missing files are created
with defaults on first load. Tool-level settings (the sandbox image) come
from ``RIZE_*`` environment variables via pydantic-settings.

Usage::

    from rize.config import load_config

    cfg = load_config(Path.cwd())
    cfg.enabled_services()
"""

from __future__ import annotations

from functools import cached_property
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from rize.identity import resolve
from rize.logger import logger

DEFAULT_IMAGE = "alienxp03/rize:latest"


class ConfigError(Exception):
    """A configuration file could not be read or failed validation."""


# ---------------------------------------------------------------------------
# Sub-models
# ---------------------------------------------------------------------------


class _StrictModel(BaseModel):
    """Base for all config models; reject unknown keys so typos fail loudly."""

    model_config = {"extra": "forbid"}


class HealthCheckConfig(_StrictModel):
    test: list[str]
    interval: str = "5s"
    timeout: str = "5s"
    retries: int = 5


class ServiceDefinition(_StrictModel):
    """One auxiliary service as it appears in the generated compose file."""

    image: str
    command: list[str] = []
    ports: list[str] = []
    environment: dict[str, str] = {}
    volumes: list[str] = []
    healthcheck: HealthCheckConfig | None = None


class NetworkConfig(_StrictModel):
    name: str = "rize"
    driver: str = "bridge"


_MITMPROXY_SCRIPT = """cat > /tmp/rize-noauth.py <<'PY'
from mitmproxy import ctx

class DisableWebAuth:
    def running(self):
        app = getattr(ctx.master, "app", None)
        if app:
            app.settings["is_valid_password"] = lambda _password: True

addons = [DisableWebAuth()]
PY
exec mitmweb --web-host 0.0.0.0 --set block_global=false --set web_password= \
--set web_open_browser=false -s /tmp/rize-noauth.py"""


SERVICE_DEFINITIONS: dict[str, ServiceDefinition] = {
    "playwright": ServiceDefinition(
        image="mcr.microsoft.com/playwright:v1.40.0",
        ports=["8381:3000"],
        environment={"PLAYWRIGHT_BROWSERS_PATH": "/ms-playwright"},
    ),
    "postgres": ServiceDefinition(
        image="postgres:16-alpine",
        environment={
            "POSTGRES_PASSWORD": "dev",
            "POSTGRES_USER": "dev",
            "POSTGRES_DB": "dev",
        },
        volumes=["rize-postgres:/var/lib/postgresql/data"],
        healthcheck=HealthCheckConfig(test=["CMD-SHELL", "pg_isready -U dev"]),
    ),
    "redis": ServiceDefinition(
        image="redis:7-alpine",
        volumes=["rize-redis:/data"],
        healthcheck=HealthCheckConfig(test=["CMD", "redis-cli", "ping"], timeout="3s"),
    ),
    "mitmproxy": ServiceDefinition(
        image="mitmproxy/mitmproxy:latest",
        ports=["8080:8080", "8081:8081"],
        volumes=["rize-mitmproxy:/home/mitmproxy/.mitmproxy"],
        command=["/bin/sh", "-c", _MITMPROXY_SCRIPT],
    ),
}

SERVICE_VOLUMES = ["rize-postgres", "rize-redis", "rize-mitmproxy"]


def _default_services() -> dict[str, bool]:
    return {name: True for name in SERVICE_DEFINITIONS}


def _default_global_environment() -> dict[str, str]:
    return {"ANTHROPIC_API_KEY": "", "OPENAI_API_KEY": "", "GOOGLE_API_KEY": ""}


def _yaml_scalar(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    # lists and mappings are left for validation to reject
    return value


def _environment_strings(v: Any) -> Any:
    """Accept unquoted YAML scalars (``PORT: 8080``, ``DEBUG: true``, ``FOO:``)."""
    if v is None:
        return {}
    if not isinstance(v, dict):
        return v
    return {str(key): _yaml_scalar(value) for key, value in v.items()}


class GlobalConfig(_StrictModel):
    environment: dict[str, str] = {}

    @field_validator("environment", mode="before")
    @classmethod
    def _scalars_to_str(cls, v: Any) -> Any:
        return _environment_strings(v)


class ProjectConfig(_StrictModel):
    services: dict[str, bool] = {}
    environment: dict[str, str] = {}

    @field_validator("services", mode="before")
    @classmethod
    def _none_is_empty(cls, v: Any) -> Any:
        return {} if v is None else v

    @field_validator("environment", mode="before")
    @classmethod
    def _scalars_to_str(cls, v: Any) -> Any:
        return _environment_strings(v)


def default_global_config() -> GlobalConfig:
    return GlobalConfig(environment=_default_global_environment())


def default_project_config() -> ProjectConfig:
    return ProjectConfig(services=_default_services())


class Config(BaseModel):
    """Merged view handed to the sandbox engine."""

    services: dict[str, bool] = {}
    environment: dict[str, str] = {}
    network: NetworkConfig = NetworkConfig()
    definitions: dict[str, ServiceDefinition] = dict(SERVICE_DEFINITIONS)

    def is_enabled(self, name: str) -> bool:
        return self.services.get(name, False)

    def enabled_services(self) -> list[str]:
        return sorted(name for name, enabled in self.services.items() if enabled)


# ---------------------------------------------------------------------------
# Tool settings (environment driven)
# ---------------------------------------------------------------------------


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="RIZE_", extra="ignore")

    image: str = DEFAULT_IMAGE

    @cached_property
    def home_dir(self) -> Path:
        return Path.home()

    @cached_property
    def state_root(self) -> Path:
        return self.home_dir / ".rize"

    @cached_property
    def compose_path(self) -> Path:
        return self.home_dir / ".config" / "rize" / "docker-compose.yml"


_settings: Settings | None = None


def get_settings() -> Settings:
    """Lazy cached singleton."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Clear the cached singleton (for tests)."""
    global _settings
    _settings = None


# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------


def _state_root(home: Path | None) -> Path:
    """``~/.rize`` under an explicit *home*, else the Settings one."""
    return home / ".rize" if home is not None else get_settings().state_root


def global_config_path(home: Path | None = None) -> Path:
    return _state_root(home) / "config.yml"


def project_dir(project_path: str | Path, home: Path | None = None) -> Path:
    return _state_root(home) / "projects" / resolve(project_path).slug


def project_config_path(project_path: str | Path, home: Path | None = None) -> Path:
    return project_dir(project_path, home) / "config.yml"


def project_state_dir(project_path: str | Path, home: Path | None = None) -> Path:
    """Per-project state (shell history etc.) mounted into the sandbox."""
    return project_dir(project_path, home) / "state"


# ---------------------------------------------------------------------------
# Load / save
# ---------------------------------------------------------------------------


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        data = yaml.safe_load(path.read_text())
    except OSError as exc:
        raise ConfigError(f"failed to read config file {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"failed to parse config file {path}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"config file {path} must contain a mapping")
    return data


def _write_yaml(path: Path, model: BaseModel) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(model.model_dump(), sort_keys=True))


def save_global(cfg: GlobalConfig, home: Path | None = None) -> Path:
    path = global_config_path(home)
    _write_yaml(path, cfg)
    return path


def save_project(cfg: ProjectConfig, project_path: str | Path, home: Path | None = None) -> Path:
    path = project_config_path(project_path, home)
    _write_yaml(path, cfg)
    return path


def load_global(home: Path | None = None) -> GlobalConfig:
    """Load the global config, creating it with defaults if missing."""
    path = global_config_path(home)
    if not path.exists():
        cfg = default_global_config()
        try:
            save_global(cfg, home)
        except OSError as exc:
            logger.warning("Could not write default global config", path=str(path), err=str(exc))
        return cfg

    try:
        return GlobalConfig.model_validate(_read_yaml(path))
    except ValidationError as exc:
        raise ConfigError(f"invalid global config {path}: {exc}") from exc


def load_project(project_path: str | Path, home: Path | None = None) -> ProjectConfig:
    """Load the per-project config, creating it with defaults if missing.

    Services absent from the file are filled in with their default state.
    """
    path = project_config_path(project_path, home)
    if not path.exists():
        cfg = default_project_config()
        try:
            save_project(cfg, project_path, home)
        except OSError as exc:
            logger.warning("Could not write default project config", path=str(path), err=str(exc))
        return cfg

    try:
        cfg = ProjectConfig.model_validate(_read_yaml(path))
    except ValidationError as exc:
        raise ConfigError(f"invalid project config {path}: {exc}") from exc

    for name, enabled in _default_services().items():
        cfg.services.setdefault(name, enabled)
    return cfg


def merge_configs(global_cfg: GlobalConfig, project_cfg: ProjectConfig) -> Config:
    """Services come from the project; project environment wins over global."""
    return Config(
        services=dict(project_cfg.services),
        environment={**global_cfg.environment, **project_cfg.environment},
    )


def load_config(project_path: str | Path, home: Path | None = None) -> Config:
    return merge_configs(load_global(home), load_project(project_path, home))
