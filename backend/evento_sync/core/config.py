from __future__ import annotations

from functools import lru_cache

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from evento_sync.enums import CacheBackend
from evento_sync.services.calendar import TermSettings


class FetcherConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    batch_size: int = Field(default=200, ge=1)
    min_batch_size: int = Field(default=10, ge=1)
    max_batch_size: int = Field(default=1000, ge=1)
    adaptive_batch_sizing: bool = True
    date_chunk_fallback: bool = True
    date_chunk_days: int = Field(default=90, ge=1)
    max_api_retries: int = Field(default=3, ge=1)
    retry_delay_base_s: float = Field(default=1.0, ge=0)
    retry_delay_cap_s: float = Field(default=30.0, ge=0)
    cache_ttl: int = Field(default=3600, ge=1)
    enable_incremental: bool = True
    parallel_requests: bool = False
    max_parallel_threads: int = Field(default=2, ge=1)

    @model_validator(mode="after")
    def _check_batch_bounds(self) -> FetcherConfig:
        if self.min_batch_size > self.max_batch_size:
            raise ValueError(
                f"min_batch_size ({self.min_batch_size}) must not exceed max_batch_size ({self.max_batch_size})"
            )
        return self

    def clamp_batch_size(self, value: int) -> int:
        return max(self.min_batch_size, min(self.max_batch_size, int(value)))

    @property
    def initial_batch_size(self) -> int:
        return self.clamp_batch_size(self.batch_size)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="", case_sensitive=False)

    app_name: str = "Evento Sync API"
    database_url: str = "sqlite:///./evento_sync.db"

    evento_base_url: str = "https://evento.example.org/api"
    evento_api_token: str | None = None
    request_timeout_s: float = 20.0

    batch_size: int = 200
    min_batch_size: int = 10
    max_batch_size: int = 1000
    adaptive_batch_sizing: bool = True
    date_chunk_fallback: bool = True
    date_chunk_days: int = 90
    max_api_retries: int = 3
    retry_delay_base_s: float = 1.0
    retry_delay_cap_s: float = 30.0
    cache_ttl: int = 3600
    enable_incremental: bool = True
    parallel_requests: bool = False
    max_parallel_threads: int = 2

    cache_backend: CacheBackend = CacheBackend.SQL
    full_purge_interval_days: int = 7
    refresh_horizon_days: int = 365

    spring_start_day: int = 1
    spring_start_month: int = 2
    spring_end_day: int = 31
    spring_end_month: int = 7
    spring_restrict_to_start: bool = True
    autumn_start_day: int = 1
    autumn_start_month: int = 8
    autumn_end_day: int = 31
    autumn_end_month: int = 1
    autumn_restrict_to_start: bool = True

    def fetcher_config(self) -> FetcherConfig:
        return FetcherConfig(
            batch_size=self.batch_size,
            min_batch_size=self.min_batch_size,
            max_batch_size=self.max_batch_size,
            adaptive_batch_sizing=self.adaptive_batch_sizing,
            date_chunk_fallback=self.date_chunk_fallback,
            date_chunk_days=self.date_chunk_days,
            max_api_retries=self.max_api_retries,
            retry_delay_base_s=self.retry_delay_base_s,
            retry_delay_cap_s=self.retry_delay_cap_s,
            cache_ttl=self.cache_ttl,
            enable_incremental=self.enable_incremental,
            parallel_requests=self.parallel_requests,
            max_parallel_threads=self.max_parallel_threads,
        )

    def term_settings(self) -> TermSettings:
        return TermSettings(
            spring_start_day=self.spring_start_day,
            spring_start_month=self.spring_start_month,
            spring_end_day=self.spring_end_day,
            spring_end_month=self.spring_end_month,
            spring_restrict_to_start=self.spring_restrict_to_start,
            autumn_start_day=self.autumn_start_day,
            autumn_start_month=self.autumn_start_month,
            autumn_end_day=self.autumn_end_day,
            autumn_end_month=self.autumn_end_month,
            autumn_restrict_to_start=self.autumn_restrict_to_start,
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
