from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    # core
    ENV: str = "dev"
    API_PREFIX: str = "/api"
    # Used to build report links in notification emails
    APP_BASE_URL: str = "http://localhost:3000"

    # database & redis
    # Plain string so sqlite:// URLs used in tests are accepted as well
    DATABASE_URL: str
    REDIS_URL: str

    # auth / security
    API_AUTH_KEY: str | None = None
    FRONTEND_ORIGIN: str | None = None
    # Explicit debug-only switch for wide-open CORS in non-prod envs
    CORS_ALLOW_ALL_ORIGINS: bool = False

    # llm
    OPENROUTER_API_KEY: str | None = None
    OPENAI_API_KEY: str | None = None
    SENTIMENT_MODEL: str = "google/gemini-2.5-flash"
    ANALYSIS_MODEL: str = "google/gemini-2.5-flash"
    # Gateway pacing / retry policy (all LLM calls share one gateway)
    LLM_MIN_DELAY_SECONDS: float = 1.2
    LLM_MAX_RETRIES: int = 3
    LLM_BACKOFF_MAX_SECONDS: float = 10.0
    # Hard per-request timeout handed to the HTTP client
    LLM_REQUEST_TIMEOUT_SECONDS: float = 60.0

    # sentiment classification
    SENTIMENT_BATCH_SIZE: int = 30
    SENTIMENT_MAX_CONCURRENT: int = 3
    SENTIMENT_MAX_POSTS: int = 150
    SENTIMENT_TEXT_CHARS: int = 300
    SENTIMENT_WRITE_BATCH_SIZE: int = 200

    # report generation
    REPORT_DEFER_INSIGHTS: bool = False
    REPORT_AI_MAX_POSTS: int = 100
    REPORT_AI_MAX_COMMENT_POSTS: int = 25
    REPORT_AI_MAX_COMMENTS_PER_POST: int = 30
    ANALYSIS_MAX_COMMENTS: int = 100
    REPORT_TRANSACTION_TIMEOUT_SECONDS: int = 30
    REPORT_DUPLICATE_WINDOW_MINUTES: int = 10

    # platform comment clients (each optional)
    X_RAPIDAPI_KEY: str | None = None
    X_RAPIDAPI_HOST: str = "twitter-v24.p.rapidapi.com"
    YOUTUBE_API_KEY: str | None = None
    SOCIAVAULT_API_KEY: str | None = None
    PLATFORM_TIMEOUT_SECONDS: int = 20
    COMMENT_CACHE_TTL_SECONDS: int = 60 * 60 * 6

    # notifications
    SENDGRID_API_KEY: str | None = None
    SENDGRID_FROM_EMAIL: str = "reports@example.com"
    SHARE_TOKEN_TTL_DAYS: int = 30

    class Config:
        env_file = ".env"
        case_sensitive = True


@lru_cache
def get_settings() -> Settings:
    return Settings()
