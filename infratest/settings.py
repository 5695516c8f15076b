"""Harness settings.

Loaded from ``INFRATEST_*`` environment variables and an optional ``.env``
file in the working directory.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class HarnessSettings(BaseSettings):
    """Settings shared by the pytest plugin, the CLI and the session helpers."""

    model_config = SettingsConfigDict(
        env_prefix="INFRATEST_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # -------------------------------------------------------------------------
    # Tooling
    # -------------------------------------------------------------------------
    terraform_binary: str = Field(
        default="terraform",
        description="Terraform (or OpenTofu) executable",
    )
    pulumi_binary: str = Field(
        default="pulumi",
        description="Pulumi executable, only checked by `infratest doctor`",
    )
    modules_dir: Path = Field(
        default=Path("terraform/modules"),
        description="Directory holding the infrastructure modules under test",
    )
    work_dir: Path = Field(
        default=Path(".infratest/work"),
        description="Where isolated runs copy the modules; a copy is kept until its run is destroyed",
    )

    # -------------------------------------------------------------------------
    # Retries
    # -------------------------------------------------------------------------
    max_retries: int = Field(
        default=3,
        description="Retries for transient tool errors",
        ge=0,
    )
    time_between_retries: float = Field(
        default=5.0,
        description="Seconds to wait between retries",
        ge=0,
    )

    # -------------------------------------------------------------------------
    # Run ledger
    # -------------------------------------------------------------------------
    ledger_url: str = Field(
        default="sqlite:///./.infratest/runs.db",
        description="SQLAlchemy URL of the run ledger",
    )

    # -------------------------------------------------------------------------
    # Test selection
    # -------------------------------------------------------------------------
    run_infra: bool = Field(
        default=False,
        description="Run tests marked `infra` (they provision real resources)",
    )
    aws_region: str = Field(
        default="us-east-1",
        description="Region exported to the tool as AWS_REGION when unset",
    )

    # -------------------------------------------------------------------------
    # Logging
    # -------------------------------------------------------------------------
    log_level: str = Field(default="INFO", description="Root log level")
    log_json: bool = Field(default=False, description="Render logs as JSON lines")

    def module_path(self, name: str) -> Path:
        """Return the directory of the named infrastructure module."""
        return self.modules_dir / name


@lru_cache
def get_settings() -> HarnessSettings:
    """Return the cached settings instance."""
    return HarnessSettings()
