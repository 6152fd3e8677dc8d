from pydantic_settings import BaseSettings
from pydantic import Field
from sqlalchemy.engine import URL
from typing import Optional, List


class Settings(BaseSettings):
    # Core
    environment: str = Field(default="dev")
    app_name: str = Field(default="PBMS API")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Server
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=3001, alias="PORT")
    cors_origins: str = Field(default="*", alias="CORS_ORIGINS")  # comma separated

    # Database: DATABASE_URL wins, otherwise the DB_* parts build a PostgreSQL URL
    database_url: Optional[str] = Field(default=None, alias="DATABASE_URL")
    db_user: Optional[str] = Field(default=None, alias="DB_USER")
    db_password: Optional[str] = Field(default=None, alias="DB_PASSWORD")
    db_host: Optional[str] = Field(default=None, alias="DB_HOST")
    db_port: int = Field(default=5432, alias="DB_PORT")
    db_name: str = Field(default="pbms", alias="DB_NAME")
    auto_create_db: bool = Field(default=True, alias="AUTO_CREATE_DB")
    migrations_dir: str = Field(default="migrations", alias="MIGRATIONS_DIR")

    # JWT
    jwt_secret: str = Field(default="change-me", alias="JWT_SECRET")
    jwt_algorithm: str = Field(default="HS256")
    jwt_ttl_seconds: int = Field(default=60 * 60 * 24, alias="JWT_TTL")  # 24 hours

    # Rate limit
    rate_limit: str = Field(default="1000/15minutes", alias="RATE_LIMIT")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"

    @property
    def sqlalchemy_database_url(self) -> str:
        if self.database_url:
            # Heroku/Azure style URLs
            if self.database_url.startswith("postgres://"):
                return self.database_url.replace("postgres://", "postgresql+psycopg2://", 1)
            return self.database_url
        if self.db_host:
            return URL.create(
                "postgresql+psycopg2",
                username=self.db_user,
                password=self.db_password,
                host=self.db_host,
                port=self.db_port,
                database=self.db_name,
            ).render_as_string(hide_password=False)
        return "sqlite:///./var/dev.db"

    @property
    def cors_origin_list(self) -> List[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


settings = Settings()
