"""Gateway configuration.

Resolution precedence, per field: explicit override > environment > default.
The resolver takes the environment as an argument; only load_gateway_config()
reads the process environment.
"""

import os
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator

# field name -> environment variable
ENV_VARS: Dict[str, str] = {
    "renderer_url": "RECANON_RENDERER_URL",
    "renderer_api_key": "RECANON_RENDERER_API_KEY",
    "rate_limit": "RECANON_RATE_LIMIT",
    "rate_window_seconds": "RECANON_RATE_WINDOW_SECONDS",
    "sweep_interval_seconds": "RECANON_SWEEP_INTERVAL_SECONDS",
    "max_body_bytes": "RECANON_MAX_BODY_BYTES",
    "upstream_timeout_seconds": "RECANON_UPSTREAM_TIMEOUT_SECONDS",
}


class GatewayConfig(BaseModel):
    """Server-held Gateway settings. The URL and key never leave the process."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    renderer_url: Optional[str] = Field(default=None, repr=False)
    renderer_api_key: Optional[SecretStr] = None
    rate_limit: int = Field(default=30, ge=1)
    rate_window_seconds: int = Field(default=60, ge=1)
    sweep_interval_seconds: float = Field(default=60, gt=0)
    max_body_bytes: int = Field(default=1024 * 1024, ge=1)
    upstream_timeout_seconds: float = Field(default=30.0, gt=0)
    max_error_detail_chars: int = Field(default=500, ge=0)

    @field_validator("renderer_url")
    @classmethod
    def _strip_trailing_slash(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip().rstrip("/")
        return v or None

    @property
    def configured(self) -> bool:
        return self.renderer_url is not None

    def api_key(self) -> Optional[str]:
        if self.renderer_api_key is None:
            return None
        return self.renderer_api_key.get_secret_value() or None

    def public_view(self) -> Dict[str, Any]:
        """The only configuration facts a caller may see."""
        return {"configured": self.configured}


def _present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return value.strip() != ""
    return True


def resolve_gateway_config(
    overrides: Optional[Mapping[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> GatewayConfig:
    """Resolve configuration from explicit overrides and an environment mapping.

    Pure: reads nothing but its arguments. Empty strings count as absent.

    Raises:
        pydantic.ValidationError: If a resolved value is invalid
            (e.g. a non-numeric RECANON_RATE_LIMIT).
    """
    overrides = overrides or {}
    environ = environ or {}
    values: Dict[str, Any] = {}

    for field_name in GatewayConfig.model_fields:
        if _present(overrides.get(field_name)):
            values[field_name] = overrides[field_name]
            continue
        env_name = ENV_VARS.get(field_name)
        if env_name is not None and _present(environ.get(env_name)):
            values[field_name] = environ[env_name].strip()

    return GatewayConfig.model_validate(values)


def load_gateway_config(overrides: Optional[Mapping[str, Any]] = None) -> GatewayConfig:
    """Resolve configuration against the process environment."""
    return resolve_gateway_config(overrides, os.environ)
