"""Centralized configuration for the offer search service."""
from __future__ import annotations

import socket
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Service configuration loaded from environment variables."""

    environment: str = "development"
    host: str = "0.0.0.0"
    port: int = 8000

    # Logging
    log_level: str = "info"
    log_json: bool = False
    log_file: str | None = None

    # Document store
    store_backend: str = Field(default="elasticsearch", description="elasticsearch | memory")
    elasticsearch_url: str = "http://localhost:9200"
    elasticsearch_username: str | None = None
    elasticsearch_password: str | None = None
    elasticsearch_request_timeout: float = 10.0
    offer_index_name: str = "offers"
    offer_index_shards: int = 3
    offer_index_replicas: int = 1
    # "wait_for" makes a write visible to the reverse lookups of the next command.
    elasticsearch_refresh: str = Field(default="wait_for", description="true | false | wait_for")

    # Upstream entity services
    seller_service_url: str = "http://localhost:5001"
    buyer_service_url: str = "http://localhost:5002"
    carrier_service_url: str = "http://localhost:5003"
    transport_service_url: str = "http://localhost:5003"
    http_timeout_seconds: float = 10.0
    http_max_retries: int = 3

    # Sync consumers
    sync_partitions: int = Field(default=5, ge=1)
    sync_queue_size: int = Field(default=10, ge=1)
    sync_fanout_page_size: int = Field(default=1000, ge=1)

    # Sync ingress (Redis stream consumer group)
    sync_ingress_enabled: bool = True
    redis_url: str = "redis://localhost:6379/0"
    sync_stream: str = "offer-search:sync"
    sync_consumer_group: str = "offer-search"
    sync_consumer_name: str = Field(default_factory=lambda: f"offer-search-{socket.gethostname()}")
    sync_read_count: int = Field(default=50, ge=1)
    sync_read_block_ms: int = Field(default=5000, ge=1)
    sync_retry_backoff_seconds: float = Field(default=1.0, ge=0)

    # Search
    search_default_page_size: int = 20
    search_max_page_size: int = 100
    autocomplete_max_results: int = 25
    inner_hits_size: int = 100

    model_config = {"env_prefix": "OFFER_SEARCH_", "env_file": ".env", "extra": "ignore"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the process-wide settings instance."""
    return Settings()
