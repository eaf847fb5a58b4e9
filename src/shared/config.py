from pydantic_settings import BaseSettings

from shared import constants


class Settings(BaseSettings):
    LOG_LEVEL: str = "INFO"

    CLUSTER_RADIUS_PX: float = constants.DEFAULT_CLUSTER_RADIUS_PX
    VIRTUAL_WINDOW_SIZE: int = constants.DEFAULT_WINDOW_SIZE
    BATCH_SIZE: int = constants.DEFAULT_BATCH_SIZE
    TARGET_FPS: float = constants.DEFAULT_TARGET_FPS
    FRAME_HISTORY_SIZE: int = constants.FRAME_HISTORY_SIZE

    ENABLE_VIRTUALIZATION: bool = True
    ENABLE_LOD: bool = True
    ENABLE_BATCHING: bool = True
    BATCH_YIELD_MS: float = 0.0          # pause between batches (0 = next loop tick)

    DEBOUNCE_DELAY_MS: float = constants.DEFAULT_DEBOUNCE_MS
    LOCATION_CACHE_TTL_S: float = constants.LOCATION_CACHE_TTL_S

    PERF_MONITOR_INTERVAL_S: float = constants.PERF_MONITOR_INTERVAL_S
    PERF_HISTORY_SIZE: int = constants.PERF_HISTORY_SIZE
    MEMORY_LIMIT_MB: float = constants.MEMORY_LIMIT_MB

    PORT: int = constants.DEV_PORT

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
