import os
import sys
from pathlib import Path

from pydantic_settings import BaseSettings


def default_config_directory() -> Path:
    """Directory the gateway keeps its configuration in after install."""
    if sys.platform.startswith("win"):
        program_files = os.environ.get("ProgramFiles", r"C:\Program Files")
        return Path(program_files) / "InnerEye Gateway" / "Config"
    return Path("/etc/innereye-gateway")


class Settings(BaseSettings):
    # Persisted processor settings
    CONFIG_INSTALL_DIRECTORY: str = str(default_config_directory())
    DATABASE_URL: str = ""  # Defaults to an SQLite file in CONFIG_INSTALL_DIRECTORY

    # Inference service probe
    PROBE_TIMEOUT_SECONDS: float = 5.0
    PING_PATH: str = "/v1/ping"
    LICENSE_KEY_HEADER: str = "API_AUTH_SECRET"

    # Installer behaviour
    UNATTENDED: bool = False
    SILENT_UI_LEVEL: str = "2"

    # Service info
    SERVICE_NAME: str = "inference-license-validator"
    APP_VERSION: str = "1.0.0"
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return f"sqlite:///{Path(self.CONFIG_INSTALL_DIRECTORY) / 'processor_settings.db'}"

settings = Settings()
