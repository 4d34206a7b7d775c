import os
from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()

class Settings(BaseSettings):
    PROJECT_NAME: str = "TrackSM"
    SECRET_KEY: str = os.getenv("SECRET_KEY", "tracksm_secret_key_123")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Database
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///tracksm.db")

    # TMDB
    TMDB_API_KEY: str = os.getenv("TMDB_API_KEY", "")
    TMDB_BASE_URL: str = "https://api.themoviedb.org/3"
    TMDB_LANGUAGE: str = "en-US"
    TMDB_POSTER_URL: str = "https://image.tmdb.org/t/p/w500"
    TMDB_BACKDROP_URL: str = "https://image.tmdb.org/t/p/w1280"
    TMDB_STILL_URL: str = "https://image.tmdb.org/t/p/w780"
    TMDB_THUMB_URL: str = "https://image.tmdb.org/t/p/w154"

    # Catalog limits (TMDB side)
    CATALOG_BATCH_LIMIT: int = 40
    CATALOG_SEASON_LIMIT: int = 25
    SEARCH_RESULT_LIMIT: int = 14
    CAST_PREVIEW_LIMIT: int = 16

    # Persistence API used by the sync gateway
    API_BASE_URL: str = os.getenv("API_BASE_URL", "http://localhost:8000")

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

settings = Settings()
