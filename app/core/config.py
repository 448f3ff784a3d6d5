"""
Application configuration.
All settings are loaded from environment variables.
Use env.example as a reference for required variables.
"""
import json

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    IMPORTANT: Credentials have no defaults - they MUST be set in .env file.
    """

    # ===========================================
    # APPLICATION
    # ===========================================
    app_env: str = "local"
    # Public URL of the web frontend (redirects after OAuth, portal return URL).
    site_url: str = "http://localhost:3000"
    # Comma-separated. Empty = default list in app.main.
    cors_origins: str = ""
    # Trusted proxy IPs (comma-separated). Used for X-Forwarded-For in production.
    trusted_proxy_ips: str = ""

    # ===========================================
    # DATABASE (PostgreSQL)
    # ===========================================
    database_url: str  # Required, no default

    # ===========================================
    # REDIS (profile change stream, circuit breaker state)
    # ===========================================
    redis_url: str  # Required, no default

    # ===========================================
    # AUTH (Supabase)
    # ===========================================
    supabase_url: str  # Required, no default
    supabase_anon_key: str  # Required, no default
    auth_access_cookie: str = "sb-access-token"
    auth_refresh_cookie: str = "sb-refresh-token"
    auth_code_verifier_cookie: str = "sb-code-verifier"
    auth_cookie_secure: bool = False  # Set True in production (HTTPS)

    # ===========================================
    # BILLING (Stripe)
    # ===========================================
    stripe_secret_key: str  # Required, no default
    stripe_webhook_secret: str  # Required, no default
    stripe_webhook_tolerance: int = 300  # seconds
    # {"price_id": "plan"} for the active (test or live) Stripe account.
    stripe_price_plans: str = "{}"

    # ===========================================
    # OBJECT STORAGE (S3)
    # ===========================================
    s3_bucket_name: str  # Required, no default
    aws_region: str  # Required, no default
    aws_access_key_id: str | None = None  # Optional: falls back to the boto3 credential chain
    aws_secret_access_key: str | None = None

    # ===========================================
    # REPLICATE API
    # ===========================================
    replicate_api_token: str  # Required, no default
    replicate_api_url: str = "https://api.replicate.com/v1"
    # flux-in-context
    replicate_model_version: str = "703f38c44b9c2820b79b54f96ef5f6554240b3ec4035a0cf80ba04e1f87ae307"
    replicate_model_name: str = "flux-in-context"
    replicate_timeout: float = 60.0
    replicate_poll_interval: float = 2.0
    replicate_max_poll_attempts: int = 60

    # ===========================================
    # GENERATION
    # ===========================================
    generation_cost_credits: int = 2
    generation_type: str = "logo-to-anything"
    max_file_size_mb: int = 10
    allowed_image_extensions: str = ".jpg,.jpeg,.png,.webp,.svg"

    # ===========================================
    # INTERNAL
    # ===========================================
    http_client_timeout: float = 10.0

    # ===========================================
    # CIRCUIT BREAKER
    # ===========================================
    cb_failure_threshold: int = 5
    cb_open_seconds: int = 30

    # ===========================================
    # LOGGING
    # ===========================================
    request_id_header: str = "X-Request-Id"
    log_level: str = "INFO"
    log_file: str | None = None
    log_max_bytes: int = 10_000_000
    log_backup_count: int = 5

    # ===========================================
    # PROFILE STREAM
    # ===========================================
    profile_stream_heartbeat_seconds: float = 15.0

    @field_validator("allowed_image_extensions")
    @classmethod
    def parse_extensions(cls, v: str) -> str:
        """Validate extensions format."""
        # Store as comma-separated string, parse when needed
        return v.lower().strip()

    @field_validator("stripe_price_plans")
    @classmethod
    def validate_price_plans(cls, v: str) -> str:
        """Price map must be a flat JSON object of strings."""
        try:
            parsed = json.loads(v or "{}")
        except json.JSONDecodeError as e:
            raise ValueError(f"stripe_price_plans is not valid JSON: {e}") from e
        if not isinstance(parsed, dict) or not all(
            isinstance(k, str) and isinstance(val, str) for k, val in parsed.items()
        ):
            raise ValueError('stripe_price_plans must look like {"price_id": "plan"}')
        return v or "{}"

    @property
    def allowed_extensions_set(self) -> set[str]:
        """Get allowed extensions as a set."""
        return {ext.strip() for ext in self.allowed_image_extensions.split(",") if ext.strip()}

    @property
    def trusted_proxy_ips_set(self) -> set[str]:
        """Get trusted proxy IPs as a set."""
        return {ip.strip() for ip in self.trusted_proxy_ips.split(",") if ip.strip()}

    @property
    def max_file_size_bytes(self) -> int:
        return self.max_file_size_mb * 1024 * 1024

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"


settings = Settings()
