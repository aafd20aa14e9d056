"""
Engine settings.

Read from environment variables prefixed ``DYNSQL_`` (or a ``.env`` file).
Components take explicit keyword overrides; these values are only defaults.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="DYNSQL_",
        env_file=".env",
        env_ignore_empty=True,
        extra="ignore",
    )

    # Bound under the reserved ``_databaseId`` key of every context.
    DATABASE_ID: str | None = None

    EXPRESSION_CACHE_MAX_SIZE: int = 4096
    TEMPLATE_CACHE_MAX_SIZE: int = 512

    # Single-underscore members of argument objects are readable when True.
    ALLOW_PRIVATE_MEMBER_ACCESS: bool = True

    # Full-match regex every ${} substitution must satisfy; None disables the check.
    SUBSTITUTION_ALLOW_PATTERN: str | None = None

    SHRINK_WHITESPACES_IN_SQL: bool = False
    NULLABLE_ON_FOR_EACH: bool = False


settings = Settings()
