"""
Configuration loader for the alerting service.

Uses Pydantic Settings for environment variable parsing, with SSM parameter
resolution in non-local environments.
"""

from __future__ import annotations

import os
from functools import lru_cache

import boto3
from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

SSM_POINTER_SUFFIX = "_SSM_PARAM"
# GetParameters accepts at most 10 names per call.
SSM_BATCH_SIZE = 10


class Settings(BaseSettings):
    """Alerting configuration loaded from environment variables.

    In production (APP_ENV != 'local'), environment variables with an
    ``_SSM_PARAM`` suffix are resolved via AWS Systems Manager Parameter
    Store before constructing the settings object.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    database_url: SecretStr
    aws_region: str = "us-east-1"

    # Storage timeouts
    db_connect_timeout_seconds: int = 5
    db_statement_timeout_ms: int = 5000

    # Alert publishing. An empty queue URL disables publishing.
    alert_queue_url: str = ""
    enable_alert_publishing: bool = True

    # HTTP API
    cors_origins: list[str] = ["http://localhost:5173", "http://localhost:3000"]

    @property
    def publishing_enabled(self) -> bool:
        return self.enable_alert_publishing and bool(self.alert_queue_url)


def _resolve_ssm_params() -> None:
    """Copy Parameter Store values into the environment ahead of ``Settings``.

    Deployed stacks carry pointers rather than secrets: the Lambda or
    container sets ``DATABASE_URL_SSM_PARAM=/structwatch/prod/db-url`` and
    the decrypted value lands in ``DATABASE_URL``. Pointers whose parameter
    does not exist are left unresolved, so ``Settings`` reports the missing
    field.
    """
    pointers = {
        key.removesuffix(SSM_POINTER_SUFFIX): param_name
        for key, param_name in os.environ.items()
        if key.endswith(SSM_POINTER_SUFFIX)
    }
    if not pointers:
        return

    ssm = boto3.client("ssm", region_name=os.environ.get("AWS_REGION", "us-east-1"))

    names = sorted(set(pointers.values()))
    values: dict[str, str] = {}
    for start in range(0, len(names), SSM_BATCH_SIZE):
        response = ssm.get_parameters(
            Names=names[start : start + SSM_BATCH_SIZE], WithDecryption=True
        )
        values.update({p["Name"]: p["Value"] for p in response["Parameters"]})

    for env_key, param_name in pointers.items():
        if param_name in values:
            os.environ[env_key] = values[param_name]


@lru_cache(maxsize=1)
def load_settings() -> Settings:
    """Settings shared by the API process and the ingest worker.

    Parameter Store is only consulted outside ``APP_ENV=local``; the result
    is cached for the life of the process.
    """
    app_env = os.environ.get("APP_ENV", "local")
    if app_env != "local":
        _resolve_ssm_params()

    return Settings()  # type: ignore[call-arg]
