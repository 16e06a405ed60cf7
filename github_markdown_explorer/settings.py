"""Application settings loaded from environment variables and .env file."""

from pathlib import Path

from pydantic import AliasChoices, Field, PrivateAttr, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from .utils import is_valid_owner, is_valid_repo

DEFAULT_CACHE_DIR = Path.home() / ".cache/github-markdown-explorer"
FALLBACK_OWNER = "github"
FALLBACK_REPO = "docs"


class Settings(BaseSettings):
    """Settings for the explorer.

    Built once at startup and passed to the client and cache store; nothing
    re-reads the environment per call.
    """

    model_config = SettingsConfigDict(
        env_prefix="EXPLORER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Raises the hourly quota from 60 to 5000. SecretStr keeps it out of reprs.
    github_token: SecretStr | None = Field(
        default=None,
        validation_alias=AliasChoices("GITHUB_TOKEN", "EXPLORER_GITHUB_TOKEN"),
    )
    cache_dir: Path = DEFAULT_CACHE_DIR
    api_base_url: str = "https://api.github.com"
    user_agent: str = "github-markdown-explorer/0.1"
    default_ttl_seconds: int = 6 * 60 * 60
    request_timeout: float = 30.0

    default_owner: str = FALLBACK_OWNER
    default_repo: str = FALLBACK_REPO

    _config_source: str = PrivateAttr(default="environment")

    def model_post_init(self, __context) -> None:
        # An invalid pair is replaced as a whole, never mixed with the fallback.
        if not (is_valid_owner(self.default_owner) and is_valid_repo(self.default_repo)):
            self.default_owner = FALLBACK_OWNER
            self.default_repo = FALLBACK_REPO
            self._config_source = "fallback"
        elif (self.default_owner, self.default_repo) == (FALLBACK_OWNER, FALLBACK_REPO):
            self._config_source = "fallback"

    @property
    def config_source(self) -> str:
        return self._config_source

    @property
    def is_custom_config(self) -> bool:
        return self._config_source == "environment"

    def token(self) -> str | None:
        """Plain token value for building the Authorization header."""
        if self.github_token is None:
            return None
        return self.github_token.get_secret_value() or None
