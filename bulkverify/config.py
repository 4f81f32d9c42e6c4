"""Application configuration using Pydantic settings."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    # App Settings
    debug: bool = False
    log_level: str = "INFO"
    app_host: str = "0.0.0.0"
    app_port: int = 8001

    # Keepa API (optional - verification runs unenriched without it)
    keepa_api_key: str = ""
    keepa_base_url: str = "https://api.keepa.com"
    keepa_domain: int = 1  # 1 = amazon.com
    keepa_stats_days: int = 90
    keepa_timeout_seconds: float = 30.0

    # ==========================================================================
    # Batch Verification Settings
    # ==========================================================================
    verify_batch_size: int = 100  # ASINs per Keepa request
    verify_batch_delay_seconds: float = 1.0  # Static pause between batches
    verify_pacing_strategy: str = "fixed"  # "fixed" or "token_bucket"
    keepa_tokens_per_minute: int = 60  # Plan refill rate, used by token_bucket pacing

    # ==========================================================================
    # Discovery Criteria (default rule set)
    # ==========================================================================
    rule_min_price: float = 3.0
    rule_max_price: float = 25.0
    rule_min_reviews: int = 500
    rule_min_rating: float = 3.5
    rule_require_prime: bool = True
    rule_max_sales_rank: int | None = 100000  # BSR above this is low demand
    rule_excluded_title_words: str = (
        "nike,adidas,apple,samsung,sony,lg,philips,bose,beats,jbl,anker,logitech,microsoft,"
        "branded,official,licensed,authentic,genuine,"
        "disney,marvel,star wars,pokemon,nintendo,"
        "refurbished,renewed,used,open box"
    )
    rule_markup_multiplier: float = 1.70  # 70% markup on Amazon cost

    # 30d vs 90d average deviation above which a price counts as volatile
    price_volatility_threshold: float = 0.15

    # ==========================================================================
    # Cost Model (estimation only)
    # ==========================================================================
    keepa_tokens_per_product: int = 1
    deep_enrichment_cost_per_product: float = 0.015  # USD per product lookup
    keepa_products_per_minute: int = 100
    deep_enrichment_products_per_minute: int = 30
    default_estimated_pass_rate: float = 0.4

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


settings = Settings()
