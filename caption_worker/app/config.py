# caption_worker/app/config.py
from __future__ import annotations

from pathlib import Path
from typing import Optional, Tuple

from pydantic_settings import BaseSettings, SettingsConfigDict

from caption_worker.app.errors import ConfigError

# Resolve repo root: repo/ (since this file is repo/caption_worker/app/config.py)
REPO_ENV = Path(__file__).resolve().parents[2] / ".env"


class Settings(BaseSettings):
    """
    Central config for the caption worker. Uses Pydantic v2 + pydantic-settings.

    - Loads env from the repo root .env if present
    - Ignores unknown env vars (prevents CI/local crashes)
    - Case-insensitive env keys
    - Sane defaults for local dev & tests (no live services required)
    - WORKER_CAPTION_KEY has no usable default; see require_caption_key()
    """

    model_config = SettingsConfigDict(
        env_file=str(REPO_ENV),
        extra="ignore",
        case_sensitive=False,
    )

    # --- Captioning API -------------------------------------------------------
    WORKER_CAPTION_URL: str = "https://api.deepai.org/api/neuraltalk"
    WORKER_CAPTION_KEY: str = ""

    # --- Redis (broker + keyed store) -----------------------------------------
    WORKER_REDIS_ADDR: str = "localhost:6379"
    WORKER_REDIS_PASSWD: str = ""
    WORKER_REDIS_DB: int = 0
    WORKER_REDIS_CHANNEL: str = "queue"
    WORKER_OUTPUT_CHANNEL: str = ""  # empty -> republish on WORKER_REDIS_CHANNEL

    # --- Dispatch -------------------------------------------------------------
    WORKER_POOL_SIZE: int = 8  # 0 -> one thread per message, unbounded
    WORKER_QUEUE_MAXSIZE: int = 64
    WORKER_QUEUE_PUT_TIMEOUT_MS: int = 0  # 0 -> block the subscription (backpressure)
    WORKER_SINGLE_FLIGHT: int = 1  # 1 -> one in-flight enrichment per photo_id
    WORKER_CHECK_STORE: int = 0  # 1 -> skip photos whose caption is already stored
    WORKER_DEAD_LETTER_KEY: str = ""  # redis list for failed messages; empty disables

    # --- Timeouts / Limits ----------------------------------------------------
    FETCH_TIMEOUT_MS: int = 15000  # 0 -> no timeout
    CAPTION_TIMEOUT_MS: int = 60000  # 0 -> no timeout
    MAX_IMAGE_BYTES: int = 1024 * 1024 * 32

    # --- Logging / status -----------------------------------------------------
    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = "data/logs"
    WORKER_LOG_MAX_MB: int = 16
    STATUS_ENABLED: int = 1
    PORT_WORKER: int = 8090
    DEBUG_CONFIG: Optional[int] = 0

    @property
    def output_channel(self) -> str:
        return self.WORKER_OUTPUT_CHANNEL or self.WORKER_REDIS_CHANNEL

    @property
    def fetch_timeout(self) -> Optional[float]:
        return _ms_to_seconds(self.FETCH_TIMEOUT_MS)

    @property
    def caption_timeout(self) -> Optional[float]:
        return _ms_to_seconds(self.CAPTION_TIMEOUT_MS)

    @property
    def queue_put_timeout(self) -> Optional[float]:
        return _ms_to_seconds(self.WORKER_QUEUE_PUT_TIMEOUT_MS)

    def redis_host_port(self) -> Tuple[str, int]:
        """Split WORKER_REDIS_ADDR ("host:port") into its parts."""
        addr = self.WORKER_REDIS_ADDR.strip()
        host, sep, port = addr.rpartition(":")
        if not sep:
            return addr or "localhost", 6379
        try:
            return host or "localhost", int(port)
        except ValueError as e:
            raise ConfigError(f"invalid WORKER_REDIS_ADDR: {addr!r}") from e

    def require_caption_key(self) -> str:
        key = self.WORKER_CAPTION_KEY.strip()
        if not key:
            raise ConfigError(
                "Couldn't create worker due to lacking caption api key (WORKER_CAPTION_KEY)"
            )
        return key


def _ms_to_seconds(ms: int) -> Optional[float]:
    if not ms or ms <= 0:
        return None
    return ms / 1000.0


def load_settings(**overrides) -> Settings:
    """Build a fresh Settings from env (+ .env) with optional overrides."""
    return Settings(**overrides)
