# app/config.py
from pydantic_settings import BaseSettings
from functools import lru_cache

class Settings(BaseSettings):
    # MongoDB settings
    MONGODB_URI: str
    MONGODB_DB_NAME: str = "fleet_schedules"
    
    # Server settings
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    RELOAD: bool = True
    
    # API settings
    API_PREFIX: str = "/api"

    # Fleet operating timezone, every "today" is computed here
    TIMEZONE: str = "Africa/Abidjan"

    # Reconciliation scheduler
    SCHEDULER_ENABLED: bool = True
    EXPIRATION_SWEEP_INTERVAL_SECONDS: int = 60
    PAYMENT_SWEEP_HOUR: int = 0
    PAYMENT_SWEEP_MINUTE: int = 0
    PAYMENT_SWEEP_SECOND: int = 1

    # An assigned schedule with neither end date nor shift end expires
    # when its start day is over
    EXPIRE_OPEN_ENDED_SCHEDULES: bool = True

    SEED_SAMPLE_DATA: bool = False

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = "logs"
    
    class Config:
        env_file = ".env"
        extra = "ignore"

@lru_cache()
def get_settings():
    return Settings()
