"""
Shared configuration management for the OIDC flow SDK.
"""

from typing import List, Optional

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from shared.errors import ConfigurationError


SUPPORTED_ALGORITHMS = ("RS256", "HS256")
SUPPORTED_RESPONSE_MODES = ("query", "form_post")


class SdkConfig(BaseSettings):
    """Every option recognised by the SDK, validated once at construction.

    Values may be passed as keyword arguments or read from ``OIDC_*``
    environment variables (list options as JSON arrays).
    """

    model_config = SettingsConfigDict(
        env_prefix="OIDC_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )

    # Tenant
    domain: Optional[str] = None
    custom_domain: Optional[str] = None
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    redirect_uri: Optional[str] = None

    # Authorization request defaults
    audience: List[str] = Field(default_factory=list)
    organization: List[str] = Field(default_factory=list)
    scope: List[str] = Field(default_factory=lambda: ["openid", "profile", "email"])
    response_mode: str = "query"
    response_type: str = "code"
    use_pkce: bool = True

    # Token verification
    token_algorithm: str = "RS256"
    token_jwks_uri: Optional[str] = None
    token_max_age: Optional[int] = None
    token_leeway: int = 60
    token_cache_ttl: int = 60

    # Session persistence
    persist_user: bool = True
    persist_id_token: bool = True
    persist_access_token: bool = True
    persist_refresh_token: bool = True
    skip_userinfo: bool = True

    # Transport
    http_timeout: float = 10.0

    log_level: str = "info"

    @model_validator(mode="after")
    def _validate(self) -> "SdkConfig":
        for name in ("domain", "client_id", "redirect_uri"):
            if not getattr(self, name):
                raise ConfigurationError(f"Missing required option '{name}'", details={"option": name})

        self.domain = _normalize_domain(self.domain)
        if self.custom_domain:
            self.custom_domain = _normalize_domain(self.custom_domain)

        if self.token_algorithm not in SUPPORTED_ALGORITHMS:
            raise ConfigurationError(
                f"Unsupported token algorithm '{self.token_algorithm}'",
                details={"option": "token_algorithm", "supported": list(SUPPORTED_ALGORITHMS)}
            )

        if self.token_algorithm == "HS256" and not self.client_secret:
            raise ConfigurationError(
                "HS256 token verification requires a client secret",
                details={"option": "client_secret"}
            )

        if self.response_mode not in SUPPORTED_RESPONSE_MODES:
            raise ConfigurationError(
                f"Unsupported response mode '{self.response_mode}'",
                details={"option": "response_mode", "supported": list(SUPPORTED_RESPONSE_MODES)}
            )

        for name in ("token_leeway", "token_cache_ttl"):
            if getattr(self, name) < 0:
                raise ConfigurationError(f"Option '{name}' must not be negative", details={"option": name})

        if self.token_max_age is not None and self.token_max_age < 0:
            raise ConfigurationError("Option 'token_max_age' must not be negative", details={"option": "token_max_age"})

        return self

    def format_domain(self, tenant: bool = False) -> str:
        """Base URL of the provider; the custom domain wins unless ``tenant``."""
        if self.custom_domain and not tenant:
            return f"https://{self.custom_domain}"
        return f"https://{self.domain}"

    @property
    def issuer(self) -> str:
        return self.format_domain() + "/"

    @property
    def issuers(self) -> List[str]:
        """Issuer values accepted on incoming tokens."""
        accepted = [self.issuer]
        tenant_issuer = self.format_domain(tenant=True) + "/"
        if tenant_issuer not in accepted:
            accepted.append(tenant_issuer)
        return accepted

    @property
    def jwks_uri(self) -> str:
        return self.token_jwks_uri or f"{self.format_domain()}/.well-known/jwks.json"

    @property
    def token_audience(self) -> List[str]:
        """Audiences an ID token may be issued to: configured APIs plus this client."""
        audience = list(self.audience)
        if self.client_id not in audience:
            audience.append(self.client_id)
        return audience


def _normalize_domain(value: str) -> str:
    value = value.strip()
    for prefix in ("https://", "http://"):
        if value.startswith(prefix):
            value = value[len(prefix):]
    return value.rstrip("/")


def get_config(**overrides) -> SdkConfig:
    """Build configuration from the environment, with keyword overrides."""
    return SdkConfig(**overrides)
