"""Research scraping core.

Runs pluggable scraping strategies against the URLs discovered for a
research session, serialises executions per (session, strategy) with
database leases, and merges every run into one deduplicated dataset.

Key modules:
    base            -- BaseScraper plugin contract and shared fetch pipeline
    plugins         -- StaticHtmlScraper, JsonApiScraper, ImpersonatedHtmlScraper
    registry        -- ScraperRegistry for plugin lookup and selection
    orchestrator    -- ScraperOrchestrator running plugins for sessions
    service         -- ScrapingService, the caller-facing API
    locks           -- ExecutionLockManager lease-based locks
    sweeper         -- LockSweeper for expired leases
    aggregator      -- DataAggregator URL-keyed merging and statistics
    extractors      -- HTML and JSON content extraction
    storage         -- SessionStore and SQLAlchemySessionStore
    db              -- SQLAlchemy models, engine and session factory
    controller      -- ThreadPoolController for bounded page fan-out
    rate_limiter    -- RateLimiter for request spacing
    backoff         -- BackoffStrategy for exponential retry delays
    progress        -- ProgressReporter sinks
    context         -- ScraperContext per execution
    metrics         -- PerformanceTracker timings
    models          -- ScraperConfig, PageResult, ScraperResult and friends
    normalization   -- normalize_url shared URL canonicalisation
    config          -- Settings loaded from the environment
    errors          -- ResearchScraperError hierarchy and error codes
"""
