"""Runtime configuration for the voice call client."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-driven runtime settings."""

    model_config = SettingsConfigDict(env_prefix="VOICE_CALL_", env_file=".env", extra="ignore")

    app_name: str = "voice-call"
    log_level: str = "INFO"
    server_url: str = Field(
        default="ws://127.0.0.1:8765",
        description="WebSocket endpoint of the conversational agent backend.",
    )
    default_script_type: str = "reliant_bpo"
    language: str = "en-US"
    output_gain: float = Field(default=1.0, ge=0.0, le=2.0)
    pcm_sample_rate: int = 24_000
    phrase_time_limit: float = 10.0
    reconnect_delay_seconds: float = 2.0

    silence_timeout_seconds: float = 1.5
    restart_cooldown_seconds: float = 1.0
    settle_delay_seconds: float = 1.0
    call_start_delay_seconds: float = 0.5
    unmute_delay_seconds: float = 0.5
    capture_retry_delay_seconds: float = 1.0
    error_restart_delay_seconds: float = 2.0
    turn_close_grace_seconds: float = 0.5
    liveness_interval_seconds: float = 10.0
    response_stall_seconds: float = 30.0


settings = Settings()
