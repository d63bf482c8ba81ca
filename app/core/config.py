from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    DATABASE_URL: str
    SQL_ECHO: bool = False

    # Generation (OpenAI compatible chat completions)
    OPENAI_API_KEY: str
    OPENAI_BASE_URL: Optional[str] = None
    OPENAI_MODEL: str = "gpt-4o-mini"
    GENERATION_TEMPERATURE: float = 0.0
    GENERATION_TIMEOUT_SECONDS: float = 30.0
    GENERATION_RETRIES: int = 0

    # Execution of validated SQL
    EXECUTION_TIMEOUT_SECONDS: float = 30.0
    EXECUTION_READ_ONLY: bool = True

    # Schema catalog
    CATALOG_SCHEMA: str = "public"
    CATALOG_TIMEOUT_SECONDS: float = 15.0
    SCHEMA_CACHE_PATH: str = "schema.json"
    SCHEMA_TTL_HOURS: float = 24.0
    SCHEMA_RETRY_SECONDS: float = 60.0

    # Mapping rules file, the packaged rules.json when unset
    LEXICON_PATH: Optional[str] = None

    # Response shaping
    MAX_RESULT_ROWS: int = 20
    CHART_DIR: str = "static/charts"
    CHART_MAX_FILES: int = 200

    # This tells Pydantic to read from the .env file
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


# Create a single instance of the settings to use everywhere
settings = Settings()
