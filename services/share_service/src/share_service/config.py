from pydantic_settings import BaseSettings, SettingsConfigDict

MIB = 1024 * 1024


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=None, extra="ignore")

    port: int = 5000
    base_url: str = "http://localhost:5000"
    data_dir: str = "/data"

    max_file_size: int = 50 * MIB
    max_file_count: int = 4

    file_expiry_hours: float = 24
    cleanup_interval_minutes: float = 60
    sweeper_enabled: bool = True
    # drop groups whose blobs have all been swept
    prune_stale_groups: bool = False

    archive_prefix: str = "SwiftShare"
    log_level: str = "INFO"

    @property
    def uploads_dir(self) -> str:
        return f"{self.data_dir.rstrip('/')}/uploads"

    @property
    def groups_file(self) -> str:
        return f"{self.data_dir.rstrip('/')}/fileGroups.json"

    @property
    def public_url(self) -> str:
        return self.base_url.rstrip("/")


settings = Settings()
