import os
from dataclasses import dataclass

from dotenv import load_dotenv, find_dotenv

# find_dotenv walks up the directory tree looking for the nearest .env
load_dotenv(find_dotenv())


@dataclass(frozen=True)
class Settings:
    """Runtime configuration read once from the environment."""

    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./clinic_flow.db")
    avg_consult_minutes: int = int(os.getenv("AVG_CONSULT_MINUTES", "15"))
    clinic_id: str = os.getenv("CLINIC_ID", "main")
    claim_retries: int = int(os.getenv("CLAIM_RETRIES", "3"))
    tracking_secret: str = os.getenv("TRACKING_SECRET", "clinic-flow-dev-secret-change-me")
    tracking_token_hours: int = int(os.getenv("TRACKING_TOKEN_HOURS", "8"))
    log_level: str = os.getenv("LOG_LEVEL", "INFO")


SETTINGS = Settings()
