from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Provider
    provider: str = "gemini"  # "gemini" or "elevenlabs"
    api_keys: str = ""  # comma-separated seed credentials
    credential_prefix: str = "AIza"  # ElevenLabs keys start with "sk_"
    credential_min_length: int = 20
    provider_timeout_seconds: float = 60.0
    speech_model: str = "gemini-2.5-flash-preview-tts"
    text_model: str = "gemini-2.5-flash"
    default_voice: str = "Kore"

    # Credential pool
    default_cooldown_seconds: float = 60.0
    usage_threshold_per_key: int = 100

    # Response cache
    cache_enabled: bool = True
    memory_cache_size: int = 100
    persistent_cache_size: int = 200
    cache_max_age_seconds: float = 7 * 24 * 60 * 60
    cache_compaction_interval_seconds: float = 600.0

    # Concurrency throttle
    max_in_flight: int = 1
    adaptive_delay_base: float = 1.0
    adaptive_delay_min: float = 0.4
    adaptive_delay_max: float = 2.0
    adaptive_step_down: float = 0.05
    adaptive_step_up: float = 0.2
    adaptive_success_streak: int = 3

    # Retry / rotation
    retry_mode: str = "auto"  # "auto" surfaces failure for a fallback path, "persistent" keeps waiting
    rotation_delay_seconds: float = 0.5
    unknown_max_attempts: int = 2

    auto_max_attempts: int = 3
    auto_backoff_base: float = 2.0
    auto_backoff_multiplier: float = 2.0
    auto_backoff_max: float = 10.0

    persistent_max_attempts: int = 20
    persistent_backoff_base: float = 5.0
    persistent_backoff_multiplier: float = 1.5
    persistent_backoff_max: float = 60.0
    persistent_exhausted_wait: float = 60.0
    persistent_max_cycles: int = 3

    # Segmenter
    chunk_max_size: int = 200
    chunk_min_size: int = 50
    reassembly_policy: str = "strict"  # "strict" or "best_effort" (text only)

    # Storage
    database_url: str = "sqlite+aiosqlite:///./synthgate.db"
    fernet_key: str = ""  # enables encrypted persistence of added credentials

    # App
    app_env: str = "development"
    app_debug: bool = True
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    allowed_origins: str = "*"

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    # Sentry
    sentry_dsn: str = ""

    @property
    def seed_credentials(self) -> list[str]:
        return [k.strip() for k in self.api_keys.split(",") if k.strip()]

    def gateway_policy(self, mode: str | None = None):
        """Build the retry policy for an operating mode (defaults to ``retry_mode``)."""
        from synthgate.gateway.retry import RetryPolicy
        from synthgate.gateway.types import RetryMode

        mode = RetryMode(mode or self.retry_mode)
        if mode == RetryMode.PERSISTENT:
            return RetryPolicy(
                mode=mode,
                max_attempts=self.persistent_max_attempts,
                base_delay=self.persistent_backoff_base,
                multiplier=self.persistent_backoff_multiplier,
                max_delay=self.persistent_backoff_max,
                rotation_delay=self.rotation_delay_seconds,
                unknown_max_attempts=self.unknown_max_attempts,
                exhausted_wait=self.persistent_exhausted_wait,
                max_cycles=self.persistent_max_cycles,
            )
        return RetryPolicy(
            mode=mode,
            max_attempts=self.auto_max_attempts,
            base_delay=self.auto_backoff_base,
            multiplier=self.auto_backoff_multiplier,
            max_delay=self.auto_backoff_max,
            rotation_delay=self.rotation_delay_seconds,
            unknown_max_attempts=self.unknown_max_attempts,
            cap_retry_hint=True,
        )


settings = Settings()


def validate_settings_for_production() -> None:
    """Validate critical settings. Called on startup in non-test environments."""
    errors: list[str] = []

    if settings.provider not in ("gemini", "elevenlabs"):
        errors.append(f"PROVIDER must be 'gemini' or 'elevenlabs', got {settings.provider!r}")

    if settings.retry_mode not in ("auto", "persistent"):
        errors.append(f"RETRY_MODE must be 'auto' or 'persistent', got {settings.retry_mode!r}")

    if settings.max_in_flight < 1:
        errors.append("MAX_IN_FLIGHT must be at least 1")

    if settings.chunk_min_size >= settings.chunk_max_size:
        errors.append("CHUNK_MIN_SIZE must be smaller than CHUNK_MAX_SIZE")

    if settings.app_env == "production":
        if not settings.fernet_key:
            errors.append(
                'FERNET_KEY must be set (generate with: python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())")'
            )
        if settings.allowed_origins == "*":
            errors.append("ALLOWED_ORIGINS must not be '*' in production")
        if settings.app_debug:
            errors.append("APP_DEBUG must be false in production")

    if errors:
        raise SystemExit("Configuration errors:\n  - " + "\n  - ".join(errors))
