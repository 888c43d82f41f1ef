"""Application configuration using pydantic-settings."""

import functools
from pathlib import Path
from typing import Any

import yaml
from pydantic import Field
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict


def _find_project_root() -> Path:
    """Find project root by locating pyproject.toml."""
    current = Path(__file__).resolve()
    for parent in [current] + list(current.parents):
        if (parent / "pyproject.toml").exists():
            return parent
    return Path(__file__).resolve().parent.parent.parent


class YamlSettingsSource(PydanticBaseSettingsSource):
    """Custom settings source that loads from settings.yaml."""

    def get_field_value(self, field_name: str) -> tuple[Any, str, bool]:
        """Not used - we implement __call__ instead."""
        return None, "", False

    def __call__(self) -> dict[str, Any]:
        """Load settings from YAML file."""
        yaml_path = _find_project_root() / "config" / "settings.yaml"
        if not yaml_path.exists():
            return {}

        with open(yaml_path, encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}

        # Flatten nested structure to match Settings field names
        flattened = {}
        if 'remote' in data:
            remote = data['remote']
            flattened['api_base_url'] = remote.get('api_base_url')
            flattened['request_timeout_seconds'] = remote.get('request_timeout_seconds')
        if 'storage' in data:
            flattened['storage_origin'] = data['storage'].get('origin')
        if 'server' in data:
            server = data['server']
            flattened['host'] = server.get('host')
            flattened['port'] = server.get('port')
            flattened['enable_star_endpoints'] = server.get('enable_star_endpoints')
            flattened['leaderboard_default_limit'] = server.get('leaderboard_default_limit')

        # Remove None values
        return {k: v for k, v in flattened.items() if v is not None}


class Settings(BaseSettings):
    """Application settings loaded from environment and config files."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Remote progress API
    api_base_url: str = Field(default="http://localhost:3001")
    session_token: str | None = Field(default=None)
    request_timeout_seconds: float = Field(default=10.0)

    # Local fallback mirror; defaults to the API origin
    storage_origin: str | None = Field(default=None)

    # Reference server
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=3001)
    enable_star_endpoints: bool = Field(default=True)
    leaderboard_default_limit: int = Field(default=10)

    # Authentication (optional: None disables the shared-secret check)
    app_secret: str | None = Field(default=None)

    # Paths
    project_root: Path = Field(default_factory=_find_project_root)

    @property
    def origin(self) -> str:
        return self.storage_origin or self.api_base_url

    @property
    def local_storage_dir(self) -> Path:
        d = self.project_root / "data" / "local_storage"
        d.mkdir(parents=True, exist_ok=True)
        return d

    @property
    def server_data_dir(self) -> Path:
        d = self.project_root / "data" / "server"
        d.mkdir(parents=True, exist_ok=True)
        return d

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Customise settings sources to include YAML file.

        Priority order (highest to lowest):
        1. init_settings (arguments passed to Settings())
        2. env_settings (environment variables)
        3. dotenv_settings (.env file)
        4. YamlSettingsSource (settings.yaml)
        5. file_secret_settings
        """
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            YamlSettingsSource(settings_cls),
            file_secret_settings,
        )


@functools.lru_cache
def get_settings() -> Settings:
    """Get application settings singleton."""
    return Settings()


def load_skill_catalog() -> dict[str, str]:
    """Load the skill catalog (display name -> skill id) from YAML.

    The mapping keeps file order, which is the order reconciliation walks it.
    """
    catalog_path = _find_project_root() / "config" / "skill_catalog.yaml"
    if not catalog_path.exists():
        raise FileNotFoundError(f"Skill catalog not found: {catalog_path}")
    with open(catalog_path, encoding='utf-8') as f:
        data = yaml.safe_load(f) or {}
    skills = data.get('skills', {}) or {}
    catalog = {str(name): str(skill_id) for name, skill_id in skills.items()}
    if len(set(catalog.values())) != len(catalog):
        raise ValueError(f"Duplicate skill ids in catalog: {catalog_path}")
    return catalog
