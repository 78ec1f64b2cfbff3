"""
Configuration settings for reportstore.

Two layers:

- ``Settings`` uses Pydantic Settings to load process-level values (where the
  database properties file lives, logging, pool connect retries) from the
  environment or a ``.env`` file.
- ``DatabaseSettings`` validates the database configuration source, a flat
  key/value mapping usually read from a Java-style ``db.properties`` file
  (``jdbc.url``, ``user``, ``password``, ...). An absent or empty source is not
  an error: it means separate DB storage is disabled.
"""
from __future__ import annotations

import configparser
import logging
import re
from functools import lru_cache
from pathlib import Path
from typing import Mapping, Optional

from psycopg.conninfo import make_conninfo
from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

log = logging.getLogger(__name__)

DB_PROPERTIES_FILENAME = "db.properties"

# "key value" lines, where whitespace alone separates key from value.
_BLANK_SEPARATOR = re.compile(r"^([^\s=:#!][^\s=:]*)[ \t\f]+(?![=:\s])")


class Settings(BaseSettings):
    # Database
    db_properties_file: str = Field(DB_PROPERTIES_FILENAME, alias="DB_PROPERTIES_FILE")
    db_connect_attempts: int = Field(1, alias="DB_CONNECT_ATTEMPTS", ge=1)
    db_connect_backoff_seconds: float = Field(1.0, alias="DB_CONNECT_BACKOFF_SECONDS", ge=0)

    # Application
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_json: bool = Field(False, alias="LOG_JSON")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Retrieve a cached instance of Settings to avoid repeated env parsing.
    """
    return Settings()


class DatabaseSettings(BaseModel):
    """
    Connection pool configuration, keyed the way ``db.properties`` spells it.

    ``max_lifetime`` of ``None`` means pooled connections are never retired
    for age; the liveness probe is what recycles dead ones.
    """

    url: str = Field(..., alias="jdbc.url", min_length=1)
    user: Optional[str] = Field(None, alias="user")
    password: Optional[str] = Field(None, alias="password")
    pool_size: int = Field(3, alias="pool.size", ge=1)
    connection_timeout: float = Field(15.0, alias="connection.timeout", gt=0)
    max_lifetime: Optional[float] = Field(None, alias="max.lifetime", gt=0)
    connection_test_query: str = Field("SELECT 1", alias="connection.test.query")

    model_config = {
        "frozen": True,
        "populate_by_name": True,
        "extra": "ignore",
    }

    @field_validator("url")
    @classmethod
    def _strip_jdbc_prefix(cls, value: str) -> str:
        value = value.strip()
        if value.startswith("jdbc:"):
            value = value[len("jdbc:"):]
        return value

    @field_validator("max_lifetime", mode="before")
    @classmethod
    def _zero_means_unlimited(cls, value: object) -> object:
        if value in (0, "0", ""):
            return None
        return value

    @classmethod
    def from_source(cls, source: Optional[Mapping[str, str]]) -> Optional["DatabaseSettings"]:
        """
        Build settings from a configuration source.

        Returns ``None`` when the source is missing, empty, or invalid, which
        callers treat as "storage disabled".
        """
        if not source:
            log.warning("No DB configuration found. Separate DB storage disabled.")
            return None
        try:
            return cls.model_validate(dict(source))
        except ValidationError as exc:
            log.warning(
                "Invalid DB configuration. Separate DB storage disabled.",
                extra={"errors": exc.error_count()},
            )
            return None

    def conninfo(self) -> str:
        """Compose a libpq connection string from url, user and password."""
        params = {}
        if self.user:
            params["user"] = self.user
        if self.password:
            params["password"] = self.password
        return make_conninfo(self.url, **params)


def _normalize_line(line: str) -> str:
    # Leading whitespace would read as a value continuation.
    return _BLANK_SEPARATOR.sub(r"\1=", line.lstrip(), count=1)


def load_properties(path: Path | str) -> dict[str, str]:
    """
    Read a Java-style properties file.

    Keys are separated from values by ``=``, ``:`` or whitespace; lines starting
    with ``#`` or ``!`` are comments and a repeated key keeps its last value.
    Backslash line continuations and escapes are not supported.

    A missing or unreadable file yields an empty mapping, which callers treat
    as "storage disabled".
    """
    path = Path(path)
    if not path.is_file():
        return {}

    parser = configparser.ConfigParser(
        delimiters=("=", ":"),
        comment_prefixes=("#", "!"),
        interpolation=None,
        strict=False,
        allow_no_value=True,
    )
    # Keys such as "jdbc.url" are case-sensitive in properties files.
    parser.optionxform = str  # type: ignore[assignment, method-assign]
    try:
        with path.open("r", encoding="utf-8") as f:
            lines = [_normalize_line(line) for line in f]
        parser.read_string("[db]\n" + "".join(lines), source=str(path))
    except (configparser.Error, OSError, UnicodeDecodeError) as exc:
        log.warning(
            "Not able to read %s. Separate DB storage disabled.",
            path,
            extra={"error_type": type(exc).__name__},
        )
        return {}
    return {key: value or "" for key, value in parser["db"].items()}


__all__ = [
    "DB_PROPERTIES_FILENAME",
    "DatabaseSettings",
    "Settings",
    "get_settings",
    "load_properties",
]
