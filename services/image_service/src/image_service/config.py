from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=None, extra="ignore", frozen=True)

    port: int = 8003
    data_dir: str = "/data"
    database_url: str | None = None
    auth_username: str = "admin"
    auth_password: str = "admin"
    log_level: str = "INFO"

    @property
    def db_url(self) -> str:
        if self.database_url:
            return self.database_url
        # sqlite файл
        return f"sqlite:///{self.data_dir.rstrip('/')}/image_service.db"


settings = Settings()


def get_settings() -> Settings:
    return settings
