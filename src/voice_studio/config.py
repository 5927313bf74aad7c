from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_env: str = "dev"
    app_version: str = "0.3.0"
    database_path: str = "data/voice_studio.db"

    log_level: str = "INFO"
    log_file: str = ""
    log_max_bytes: int = 10 * 1024 * 1024
    log_backup_count: int = 5

    # Identity provider (Supabase auth issues HS256 tokens with aud=authenticated)
    jwt_secret: str = ""
    jwt_algorithm: str = "HS256"
    jwt_audience: str = "authenticated"

    vendor_base_url: str = "https://api.ai33.pro"
    vendor_api_key: str = ""
    vendor_timeout_sec: int = 60
    encryption_key: str = ""

    clone_cost_credits: int = 500
    transcription_cost_credits: int = 200
    dubbing_cost_credits: int = 1000
    music_cost_credits: int = 1000
    signup_free_credits: int = 1000

    max_credits: int = 100_000_000
    max_single_change: int = 50_000_000

    max_upload_mb: int = 20
    max_text_chars: int = 10000
    retention_hours: int = 24

    rate_limit_requests: int = 30
    rate_limit_window_sec: int = 60

    poll_max_attempts: int = 60
    poll_interval_sec: float = 2.0
    api_base_url: str = "http://localhost:8900"


settings = Settings()
