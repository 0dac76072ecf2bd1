from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # OpenRouter (AI enhancement + AI extraction)
    openrouter_api_key: str = ""
    openrouter_base_url: str = "https://openrouter.ai/api/v1"
    default_model: str = "openai/gpt-4o-mini"
    openrouter_model: str = ""
    ai_max_tokens: int = 1200

    # Search provider
    search_provider: str = "brave"  # brave | tavily
    brave_api_key: str = ""
    tavily_api_key: str = ""
    search_fallback_to_tavily: bool = True
    search_max_results_per_query: int = 10

    # Scraping
    scrape_provider: str = "auto"  # httpx | firecrawl | jina_reader | auto
    firecrawl_base_url: str = "http://localhost:3002"
    firecrawl_api_key: str = ""
    jina_reader_base_url: str = ""
    scrape_retry_max: int = 1
    scrape_max_chars: int = 120000

    # Orchestration concurrency
    max_concurrent_searches: int = 50
    max_concurrent_queries: int = 10
    max_concurrent_extractions: int = 20

    # Stage timeouts (ms)
    query_generation_timeout_ms: int = 30000
    web_search_timeout_ms: int = 60000
    content_scraping_timeout_ms: int = 45000
    contact_extraction_timeout_ms: int = 60000
    total_search_timeout_ms: int = 300000

    # Retry
    retry_max_attempts: int = 3
    retry_base_delay_ms: int = 1000
    retry_max_delay_ms: int = 30000
    retry_backoff_multiplier: float = 2.0

    # Result cache
    search_cache_enabled: bool = True
    search_cache_ttl_ms: int = 3600000
    search_cache_max_size: int = 1000

    # Score thresholds
    min_relevance_score: float = 0.3
    min_confidence_score: float = 0.5
    min_quality_score: float = 0.3
    max_results_per_source: int = 50

    # Scoring knobs
    query_weight_relevance: float = 0.4
    query_weight_diversity: float = 0.25
    query_weight_coverage: float = 0.35
    query_similarity_threshold: float = 0.8
    max_generated_queries: int = 20
    dedupe_bio_similarity_threshold: float = 0.7

    # Persistence
    persistence_backend: str = "memory"  # memory | supabase
    supabase_url: str = ""
    supabase_anon_key: str = ""

    # App
    app_log_level: str = "INFO"
    noisy_log_level: str = "WARNING"
    log_dir: str = "logs"
    log_to_file: bool = True

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }


settings = Settings()
