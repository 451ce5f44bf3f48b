from typing import Dict, List, Optional
from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Core
    log_level: str = "INFO"
    service_env: str = "dev"  # dev|prod
    server_public_url: str = "http://localhost:8000"
    problem_type_base: str = "https://nutrition-app.com/problems"

    # CORS
    cors_allow_origins: str = "*"
    cors_allow_credentials: bool = True
    cors_allow_methods: str = "*"
    cors_allow_headers: str = "*"

    # DB
    db_url: str = "sqlite:///./recipes.db"

    # Auth / multiusuario
    api_keys: str = "default:demo123"
    auth_fallback_user: Optional[str] = "default"
    admin_users: str = "admin"
    jwt_secret: str = "change-me-dev"
    jwt_expire_minutes: int = 120

    # Rate limiting (token bucket, recarga continua)
    rate_limit_read_capacity: int = 60
    rate_limit_read_per_minute: float = 60.0
    rate_limit_write_capacity: int = 6
    rate_limit_write_per_minute: float = 6.0

    # Redis (rate limiting + idempotencia)
    redis_url: Optional[str] = None
    redis_password: Optional[str] = None

    # Idempotencia
    idempotency_replay_window_s: int = 86400
    idempotency_wait_timeout_s: float = 10.0
    idempotency_poll_interval_s: float = 0.05

    # Búsqueda / ranking
    search_default_limit: int = 50
    search_max_limit: int = 200
    weight_text: float = 1.0
    weight_match: float = 0.5
    weight_recency: float = 0.3
    weight_popularity: float = 0.2
    weight_repeat: float = 0.4
    recency_horizon_days: float = 30.0
    repeat_half_life_days: float = 14.0
    viewed_event_weight: float = 1.0
    cooked_event_weight: float = 2.0

    # Popularidad (agregado periódico)
    popularity_window_days: int = 30
    popularity_refresh_interval_s: int = 900  # 0 = sin bucle de refresco

    # Historial
    view_dedup_window_s: int = 3600
    history_feed_days: int = 180

    # Size limit
    max_body_bytes: int = 262144  # 256KB

    def parsed_api_keys(self) -> Dict[str, str]:
        mapping: Dict[str, str] = {}
        for pair in [p.strip() for p in self.api_keys.split(",") if p.strip()]:
            if ":" not in pair:
                continue
            user, token = pair.split(":", 1)
            mapping[token.strip()] = user.strip()
        return mapping

    def parsed_admin_users(self) -> List[str]:
        return [u.strip() for u in self.admin_users.split(",") if u.strip()]

    @model_validator(mode="after")
    def _validate_security(self) -> "Settings":
        if self.service_env != "dev":
            if self.jwt_secret == "change-me-dev":
                raise ValueError("jwt_secret must be set via environment variable in non-dev environments")
            if self.service_env == "prod":
                self.auth_fallback_user = None
        return self

    @model_validator(mode="after")
    def _validate_limits(self) -> "Settings":
        if self.search_default_limit < 1 or self.search_default_limit > self.search_max_limit:
            raise ValueError("search_default_limit must be between 1 and search_max_limit")
        for name in ("rate_limit_read_capacity", "rate_limit_write_capacity"):
            if getattr(self, name) < 1:
                raise ValueError(f"{name} must be >= 1")
        for name in ("rate_limit_read_per_minute", "rate_limit_write_per_minute", "recency_horizon_days", "repeat_half_life_days"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be > 0")
        return self

settings = Settings()
