from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings"""

    # Database
    DATABASE_URL: str = "sqlite:///./ipgate.db"

    # Security
    SECRET_KEY: str = "ipgate-super-secret-key-change-in-production"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24  # 24 hours

    # Geolocation
    GEOIP_PROVIDER: str = "maxmind"  # maxmind, ip-api or none
    GEOIP_DATABASE_PATH: str = "data/GeoLite2-City.mmdb"
    GEO_CACHE_TTL_HOURS: int = 24
    # Cache lookups that resolved nothing. Disable to retry unresolved IPs
    # on every request instead of waiting for the TTL.
    GEO_CACHE_EMPTY_RESULTS: bool = True

    # Maintenance
    HISTORY_RETENTION_DAYS: int = 90

    # Rate Limiting
    KICK_RATE_LIMIT: str = "30/hour"

    # Logging
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"


settings = Settings()
