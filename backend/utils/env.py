from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    GEMINI_API_KEY: str = ""

    S3_REGION: str = "us-east-1"
    S3_ACCESS_KEY_ID: str | None = None
    S3_SECRET_ACCESS_KEY: str | None = None
    S3_ENDPOINT: str | None = None
    S3_FORCE_PATH_STYLE: bool = False
    S3_BUCKET_NAME: str = ""
    S3_PUBLIC_DOMAIN: str | None = None
    UPLOAD_MAX_RETRIES: int = 5
    UPLOAD_BACKOFF_BASE_SECONDS: float = 0.1

    POLL_INTERVAL_SECONDS: int = 10
    MAX_WAIT_MINUTES: int = 30
    FETCH_TIMEOUT_SECONDS: int = 60

    FFMPEG_PATH: str = "ffmpeg"
    FFMPEG_PROBE_TIMEOUT_SECONDS: float = 5.0
    FFMPEG_STRIP_TIMEOUT_SECONDS: float = 60.0
    FFMPEG_LIVE_PHOTO_TIMEOUT_SECONDS: float = 120.0

    CONTINUE_ON_FAIL: bool = False
    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    @property
    def max_wait_seconds(self) -> int:
        return self.MAX_WAIT_MINUTES * 60


settings = Settings()
