from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "Portfolio Risk Analyzer"
    version: str = "0.1.0"
    environment: str = "dev"
    database_url: str = "sqlite:///./risk_analyzer.db"
    log_level: str = "INFO"
    annualization: int = 252
    default_confidence: float = 0.99
    default_horizon_days: int = 1
    default_window_days: int = 250
    default_simulations: int = 10_000
    max_simulations: int = 100_000
    monte_carlo_seed: int | None = None
    progress_buffer_size: int = 100
    job_ttl_seconds: int = 300
    price_cache_ttl_seconds: int = 600
    per_symbol_timeout_seconds: int = 25
    exact_chi_square: bool = False
    fallback_volatility: float = 0.154
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = Settings()
