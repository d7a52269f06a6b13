"""Application configuration read from the environment."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv


@dataclass(frozen=True)
class AuthConfig:
    """Session and OAuth settings."""

    session_secret: str = ""
    google_client_id: str = ""
    google_client_secret: str = ""


@dataclass(frozen=True)
class DatabaseConfig:
    """Database connection settings."""

    database_url: str = ""


@dataclass(frozen=True)
class ServerConfig:
    """HTTP server settings."""

    host: str = ""
    port: str = ""


@dataclass(frozen=True)
class Config:
    """Complete application configuration."""

    auth: AuthConfig = field(default_factory=AuthConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    environment: str = ""


def _load_dotenv_from_cwd() -> None:
    path = Path.cwd() / ".env"
    if path.is_file():
        # Values already present in the environment take precedence.
        load_dotenv(dotenv_path=path, override=False)


def load_config(environ: Mapping[str, str] | None = None) -> Config:
    """Build a Config from ``environ``, or from os.environ plus a local .env file."""
    if environ is None:
        _load_dotenv_from_cwd()
        environ = os.environ

    def get(name: str) -> str:
        return environ.get(name, "")

    return Config(
        auth=AuthConfig(
            session_secret=get("SESSION_SECRET"),
            google_client_id=get("GOOGLE_ID"),
            google_client_secret=get("GOOGLE_SECRET"),
        ),
        database=DatabaseConfig(database_url=get("DATABASE_URL")),
        server=ServerConfig(host=get("HOST"), port=get("PORT")),
        environment=get("ENVIRONMENT"),
    )