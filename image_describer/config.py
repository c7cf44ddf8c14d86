import os
import sys
import shlex
from pathlib import Path
from typing import Final, List, Optional

from dotenv import load_dotenv

load_dotenv()

DEFAULT_VISION_URL = "https://vision.astica.ai/describe"
DEFAULT_VISION_PARAMS = "gpt, describe, describe_all, tags, colors"


class ConfigError(RuntimeError):
    """Raised when a required setting is missing or invalid."""


class Settings:
    """
    Application settings loaded from environment variables.

    Only the HTTP layer reads settings; the batch pipeline gets its
    collaborators and limits passed in explicitly.
    """

    def __init__(self) -> None:
        # External services
        self.vision_api_key: Final[str] = os.getenv("ASTICA_KEY", "")
        self.db_connection_string: Final[str] = os.getenv("DB_CONNECTION_STRING", "")
        self.db_name: Final[str] = os.getenv("DB_NAME", "image_describer")
        self.blob_backend: Final[str] = os.getenv("BLOB_BACKEND", "gridfs").lower()

        # Vision API request parameters
        self.vision_api_url: Final[str] = os.getenv("VISION_API_URL", DEFAULT_VISION_URL)
        self.vision_model_version: Final[str] = os.getenv("VISION_MODEL_VERSION", "2.1_full")
        self.vision_params: Final[str] = os.getenv("VISION_PARAMS", DEFAULT_VISION_PARAMS)
        self.vision_prompt_length: Final[int] = int(os.getenv("VISION_PROMPT_LENGTH", "95"))
        self.vision_timeout_seconds: Final[float] = float(
            os.getenv("VISION_TIMEOUT_SECONDS", "60")
        )
        self.vision_max_connections: Final[int] = int(
            os.getenv("VISION_MAX_CONNECTIONS", "100")
        )

        # Batch processing
        self.batch_wave_size: Final[int] = int(os.getenv("BATCH_WAVE_SIZE", "20"))
        self.data_dir: Final[Path] = Path(os.getenv("DATA_DIR", "data"))
        self.db_path: Final[Path] = self.data_dir / "app.db"
        self.persist_command: Final[List[str]] = self._parse_command(
            os.getenv("PERSIST_COMMAND", ""), self.db_path
        )

    @staticmethod
    def _parse_command(raw: str, db_path: Path) -> List[str]:
        if raw.strip():
            return shlex.split(raw)
        return [sys.executable, "-m", "image_describer.persist", "--db", str(db_path)]

    def validate(self) -> None:
        missing = []
        if not self.vision_api_key:
            missing.append("ASTICA_KEY")
        if self.blob_backend == "gridfs" and not self.db_connection_string:
            missing.append("DB_CONNECTION_STRING")
        if missing:
            raise ConfigError(f"Missing required settings: {', '.join(missing)}")

        if self.blob_backend not in ("gridfs", "local"):
            raise ConfigError(f"Unsupported BLOB_BACKEND: {self.blob_backend}")
        if self.batch_wave_size < 1:
            raise ConfigError("BATCH_WAVE_SIZE must be at least 1")
        if self.vision_max_connections < 1:
            raise ConfigError("VISION_MAX_CONNECTIONS must be at least 1")


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Drop the cached settings so the next call re-reads the environment."""
    global _settings
    _settings = None
