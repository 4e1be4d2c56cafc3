"""Configuration management using Pydantic models."""

import logging
import os
import shutil
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)


# Placeholder values that indicate unconfigured credentials
INVALID_PLACEHOLDERS = {
    "YOUR_PLEX_USERNAME_HERE",
    "YOUR_MAL_ACCESS_TOKEN_HERE",
    "YOUR_MAL_CLIENT_ID_HERE",
    "",
}


class PlexConfig(BaseModel):
    """Plex account and server settings."""
    user: str = ""
    anime_libraries: list[str] = Field(default_factory=list)
    url: Optional[str] = None
    token: Optional[str] = None

    @field_validator("anime_libraries", mode="before")
    @classmethod
    def split_libraries(cls, v):
        """Accept a comma separated string as well as a list."""
        if v is None:
            return []
        if isinstance(v, str):
            return [lib.strip() for lib in v.split(",") if lib.strip()]
        return v


class MappingConfig(BaseModel):
    """Mapping table sources; empty means the community maps."""
    tvdb_path: Optional[str] = None
    tmdb_path: Optional[str] = None


class AnimeDBConfig(BaseModel):
    """Anime metadata table source; empty means shinkrodb."""
    path: Optional[str] = None


class MALConfig(BaseModel):
    """MyAnimeList API configuration."""
    client_id: Optional[str] = None
    access_token: Optional[str] = None


class SyncConfig(BaseModel):
    """Synchronization settings."""
    dry_run: bool = False
    log_level: str = "INFO"


class Config(BaseModel):
    """Root configuration model."""
    plex: PlexConfig = Field(default_factory=PlexConfig)
    mapping: MappingConfig = Field(default_factory=MappingConfig)
    anime_db: AnimeDBConfig = Field(default_factory=AnimeDBConfig)
    mal: Optional[MALConfig] = None
    myanimelist: Optional[MALConfig] = None
    sync: SyncConfig = Field(default_factory=SyncConfig)

    @field_validator("plex", "mapping", "anime_db", "sync", "mal", "myanimelist", mode="before")
    @classmethod
    def ensure_section(cls, v):
        """Treat an empty YAML section as defaults."""
        return v if v is not None else {}


class Settings:
    """Application settings loaded from config.yaml."""

    def __init__(self, config_path: Optional[Path] = None):
        """Load and validate configuration."""
        self.config_path = Path(config_path) if config_path else self._get_config_path()

        if not self.config_path.exists():
            self._create_config_template()

        self._load_config()

    def _get_config_path(self) -> Path:
        """Get config file path based on environment."""
        env_path = os.environ.get("PLEX_MAL_SYNC_CONFIG")
        if env_path:
            return Path(env_path)
        if os.path.exists("/.dockerenv"):
            return Path("/app/data/config.yaml")
        return Path("data/config.yaml")

    def _create_config_template(self) -> None:
        """Create config template from example."""
        example_path = Path("config.example.yaml")
        if example_path.exists():
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy(example_path, self.config_path)
            logger.info(f"Created config template: {self.config_path}")
            logger.info("Please edit the config file with your Plex user and MAL token")

    def _load_config(self) -> None:
        """Load configuration from YAML using Pydantic."""
        raw_config = {}
        try:
            if self.config_path.exists():
                with open(self.config_path, "r", encoding="utf-8") as f:
                    raw_config = yaml.safe_load(f) or {}
            else:
                logger.warning(f"No config file at {self.config_path}, using defaults")

            config = Config(**raw_config)
        except Exception as e:
            logger.error(f"Failed to load config: {e}")
            raise

        self.plex_user = config.plex.user
        self.anime_libraries = config.plex.anime_libraries
        self.plex_url = config.plex.url
        self.plex_token = config.plex.token

        self.mapping_tvdb_path = config.mapping.tvdb_path or None
        self.mapping_tmdb_path = config.mapping.tmdb_path or None
        self.anime_db_path = config.anime_db.path or None

        # Support both "mal" and "myanimelist" keys
        mal_config = config.myanimelist or config.mal or MALConfig()
        self.mal_client_id = mal_config.client_id
        self.mal_access_token = os.environ.get("MAL_ACCESS_TOKEN") or mal_config.access_token or ""

        self.dry_run = config.sync.dry_run
        self.log_level = config.sync.log_level.upper()

    @property
    def plex_client_configured(self) -> bool:
        return bool(self.plex_url and self.plex_token)


def validate_credentials(settings: Optional[Settings] = None) -> tuple[bool, list[str]]:
    """
    Validate that required settings are not placeholder values.
    Returns (is_valid, list_of_invalid_settings).
    """
    settings = settings or get_settings()
    required = {
        "plex.user": settings.plex_user,
        "plex.anime_libraries": ",".join(settings.anime_libraries),
        "mal.access_token": settings.mal_access_token,
    }

    missing_or_invalid = [name for name, value in required.items() if not value or value in INVALID_PLACEHOLDERS]
    return len(missing_or_invalid) == 0, missing_or_invalid


# Singleton cache for settings
_SETTINGS_SINGLETON = None

def get_settings() -> Settings:
    """Get (cached) application settings singleton."""
    global _SETTINGS_SINGLETON
    if _SETTINGS_SINGLETON is None:
        _SETTINGS_SINGLETON = Settings()
    return _SETTINGS_SINGLETON

def reload_settings(config_path: Optional[Path] = None) -> Settings:
    """Force reload of application settings singleton."""
    global _SETTINGS_SINGLETON
    _SETTINGS_SINGLETON = Settings(config_path)
    return _SETTINGS_SINGLETON
