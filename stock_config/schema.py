"""
Settings schema (``stock_config.schema``).

Responsibility
--------------
The frozen runtime settings dataclass and its defaults.  Pure data; the
loader fills it from YAML and the environment.
"""

from dataclasses import dataclass, fields

DEFAULT_DATABASE_URL = "sqlite:///./stock_kernel.db"


@dataclass(frozen=True)
class Settings:
    """
    Runtime settings for the stock kernel and its HTTP API.

    Guarantees:
        - Immutable once loaded.
        - Every field has a default, so an empty configuration is valid.
    """

    database_url: str = DEFAULT_DATABASE_URL
    echo_sql: bool = False
    log_level: str = "INFO"
    idempotency_ttl_minutes: int = 60
    default_page_size: int = 20
    max_page_size: int = 100
    environment: str = "development"

    def __post_init__(self):
        if self.idempotency_ttl_minutes <= 0:
            raise ValueError("idempotency_ttl_minutes must be > 0")
        if not 1 <= self.default_page_size <= self.max_page_size:
            raise ValueError("default_page_size must be between 1 and max_page_size")


SETTINGS_FIELDS = {f.name: f for f in fields(Settings)}
