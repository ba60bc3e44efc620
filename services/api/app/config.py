"""
Configuration management using Pydantic BaseSettings.
All values can be overridden via environment variables or a .env file.
"""
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # ── Database (MySQL-protocol compatible) ───────────────────────────────
    db_host: str = "tidb"
    db_port: int = 4000
    db_user: str = "root"
    db_password: str = ""
    db_name: str = "campus_feed"

    @property
    def db_url(self) -> str:
        return (
            f"mysql+aiomysql://{self.db_user}:{self.db_password}"
            f"@{self.db_host}:{self.db_port}/{self.db_name}"
        )

    # ── Cache ──────────────────────────────────────────────────────────────
    cache_backend: str = "redis"         # 'redis' | 'memory'
    redis_host: str = "redis"
    redis_port: int = 6379
    redis_socket_timeout: float = 0.5    # fail fast, the source is authoritative
    feed_cache_ttl: int = 60             # feed listings
    post_cache_ttl: int = 300            # single post lookups
    feed_page_size: int = 20

    # ── Change notifications ───────────────────────────────────────────────
    change_notifier: str = "kafka"       # 'kafka' | 'local'
    kafka_bootstrap_servers: str = "kafka:9092"
    kafka_topic_changes: str = "db-changes"
    kafka_consumer_group: str = "feed-cache-invalidator"

    # ── Observability ──────────────────────────────────────────────────────
    otel_exporter_otlp_endpoint: str = "http://jaeger:4317"
    service_name: str = "feed-api"
    environment: str = "development"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
