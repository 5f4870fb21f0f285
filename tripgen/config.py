"""Application configuration via environment variables."""

from typing import List

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Deployment
    environment: str = "development"  # "development" or "production"
    port: int = 8000
    log_level: str = "INFO"
    cors_origins: List[str] = ["http://localhost:3000", "*"]

    # Supabase
    supabase_url: str = ""
    supabase_service_role_key: str = ""
    supabase_anon_key: str = ""
    supabase_jobs_table: str = "jobs"

    # Job store
    job_store_backend: str = "auto"  # "auto", "supabase" or "memory"
    store_max_retries: int = 3
    store_retry_base_ms: int = 200
    store_health_check_interval_s: float = 60.0  # 0 disables recovery probes

    # Job processing
    max_concurrent_jobs: int = 4
    create_verify_attempts: int = 3
    normalize_on_completion: bool = True

    # OpenAI
    openai_api_key: str = ""
    openai_base_url: str = "https://api.openai.com/v1"
    openai_model: str = "gpt-4o"
    openai_temperature: float = 0.7
    openai_max_tokens: int = 10000

    # Generation timeout policy (seconds)
    generation_base_timeout_s: float = 60.0
    generation_timeout_increment_s: float = 30.0
    complex_prompt_threshold: int = 8000

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def supabase_configured(self) -> bool:
        return bool(self.supabase_url and (self.supabase_service_role_key or self.supabase_anon_key))


settings = Settings()
