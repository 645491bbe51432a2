from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    data_dir: Path = Path.home() / ".flashgen" / "data"
    sqlite_filename: str = "flashgen.db"
    log_level: str = "INFO"

    openrouter_api_key: str = ""
    openrouter_base_url: str = "https://openrouter.ai/api/v1"
    llm_model: str = "openai/gpt-4o-mini"
    temperature: float = 0.3
    max_tokens: int = 6000
    request_timeout: float = 120.0
    site_url: str = "http://localhost:8000"
    site_name: str = "Flashgen"

    max_retries: int = 3
    backoff_base_seconds: float = 1.0  # delay = 2**attempt * base

    source_text_min_chars: int = 1000
    source_text_max_chars: int = 10000

    model_config = {"env_prefix": "FLASHGEN_"}


settings = Settings()
