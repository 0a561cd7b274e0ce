"""
Configuration management using YAML files and dataclasses.

This module defines all configuration dataclasses and provides loading
from YAML files with defaults. Configuration sections:
- IngestConfig: Ingest sink endpoint and shared secret
- RegistryConfig: Where due sources come from (YAML file or web admin API)
- BatchConfig: Batch size, per-source item cap and worker count
- FetchConfig: Reader service, retries and HTTP settings
- ExtractConfig: HTML extraction for the scrape fallback
- AnalysisConfig: Ordered AI provider list for the analysis cascade
- DedupConfig: Batch-local duplicate filtering
- PriorityConfig: Source type tiers
- LoggingConfig: Logging behavior
- LangfuseConfig: Langfuse tracing settings
- AppConfig: Root configuration container
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
import os
from typing import Any

import yaml

from .core.errors import ConfigError


DEFAULT_USER_AGENT = "Mozilla/5.0 (compatible; FeedCrawler/1.0)"
DEFAULT_INGEST_URL = "http://localhost:3000/api/ingest"


@dataclass
class IngestConfig:
    """Configuration for the ingest sink.

    Attributes:
        api_url: Ingest endpoint (falls back to INGEST_API_URL, then SITE_URL + /api/ingest)
        secret: Optional inline shared secret (overrides env var)
        secret_env: Environment variable holding the shared secret
        timeout_seconds: Request timeout for each POST
    """

    api_url: str | None = None
    secret: str | None = None
    secret_env: str = "INGEST_SECRET"
    timeout_seconds: float = 30.0


@dataclass
class RegistryConfig:
    """Configuration for the source registry.

    Attributes:
        kind: "file" for a local YAML source list, "http" for the web admin API
        sources_file: Path of the YAML source list when kind is "file"
        base_url: Web app base URL when kind is "http" (falls back to SITE_URL)
        timeout_seconds: Request timeout for registry calls
    """

    kind: str = "file"
    sources_file: str = "sources.yaml"
    base_url: str | None = None
    timeout_seconds: float = 30.0


@dataclass
class BatchConfig:
    """Configuration for batch orchestration.

    Attributes:
        sources_per_batch: Maximum due sources crawled per batch
        items_per_source: Maximum feed items considered per source
        concurrency: Number of concurrent source workers
        max_item_age_days: Items older than this are dropped
        loop_interval_seconds: Pause between batches in loop mode
    """

    sources_per_batch: int = 50
    items_per_source: int = 20
    concurrency: int = 5
    max_item_age_days: int = 30
    loop_interval_seconds: float = 60.0


@dataclass
class FetchConfig:
    """Configuration for HTTP content fetching.

    Attributes:
        reader_prefix: Reader service prefix; the target URL is appended without its scheme
        reader_timeout_seconds: Timeout for a single reader request
        max_retries: Retries after the first reader attempt
        scrape_timeout_seconds: Timeout for the direct-scrape fallback
        feed_timeout_seconds: Timeout for downloading a feed
        feed_max_attempts: Attempts per feed download; transient failures are retried
        feed_retry_base_seconds: First feed retry delay, doubled on each further retry
        max_content_bytes: Reader and scrape responses larger than this are rejected
        user_agent: HTTP User-Agent header string
        trust_env: Whether to respect system proxy settings
    """

    reader_prefix: str = "https://r.jina.ai/http://"
    reader_timeout_seconds: float = 30.0
    max_retries: int = 3
    scrape_timeout_seconds: float = 15.0
    feed_timeout_seconds: float = 30.0
    feed_max_attempts: int = 3
    feed_retry_base_seconds: float = 1.0
    max_content_bytes: int = 1_000_000
    user_agent: str = DEFAULT_USER_AGENT
    trust_env: bool = True


@dataclass
class ExtractConfig:
    """Configuration for HTML content extraction.

    Attributes:
        primary: Primary extraction method ("bs4", "trafilatura", or "readability")
        fallback: List of fallback methods to try if primary fails
        max_chars: Cap on scraped text length
    """

    primary: str = "bs4"
    fallback: list[str] = field(default_factory=list)
    max_chars: int = 10000


@dataclass
class ProviderConfig:
    """Configuration for one AI analysis provider.

    Attributes:
        name: Provider name ("anthropic", "gemini", "openai", "openai_compatible")
        model: Model identifier
        api_key: Optional inline API key (overrides env var)
        api_key_env: Environment variable name containing the API key
        base_url: Base URL for the provider API
        timeout_seconds: Request timeout for one analysis call
        max_output_tokens: Output token budget
        temperature: Sampling temperature
    """

    name: str = "anthropic"
    model: str = "claude-3-5-haiku-20241022"
    api_key: str | None = None
    api_key_env: str | None = None
    base_url: str | None = None
    timeout_seconds: float = 30.0
    max_output_tokens: int = 700
    temperature: float = 0.2


def _default_providers() -> list[ProviderConfig]:
    return [
        ProviderConfig(
            name="anthropic",
            model="claude-3-5-haiku-20241022",
            api_key_env="ANTHROPIC_API_KEY",
        ),
        ProviderConfig(
            name="gemini",
            model="gemini-1.5-flash-001",
            api_key_env="GEMINI_API_KEY",
        ),
    ]


@dataclass
class AnalysisConfig:
    """Configuration for the analysis cascade.

    Attributes:
        max_content_chars: Maximum characters of article content sent to a provider
        providers: Providers tried in order before the heuristic analyzer
    """

    max_content_chars: int = 12000
    providers: list[ProviderConfig] = field(default_factory=_default_providers)


@dataclass
class DedupConfig:
    """Configuration for batch-local deduplication.

    Attributes:
        near_duplicates: Whether title and content near-duplicate checks run per item
        title_similarity_threshold: Similarity threshold (0-1) for titles
        title_method: "jaccard" for word overlap, "fuzzy" for rapidfuzz ratio
        content_fingerprint: Whether content fingerprints are compared
    """

    near_duplicates: bool = True
    title_similarity_threshold: float = 0.7
    title_method: str = "jaccard"
    content_fingerprint: bool = True


@dataclass
class PriorityConfig:
    """Source type tiers used by crawl-by-priority runs."""

    high: list[str] = field(default_factory=lambda: ["article", "blog", "news"])
    medium: list[str] = field(default_factory=lambda: ["podcast", "video"])
    low: list[str] = field(default_factory=lambda: ["twitter", "newsletter", "wechat"])


@dataclass
class LoggingConfig:
    """Configuration for logging behavior.

    Attributes:
        level: Logging level ("DEBUG", "INFO", "WARNING", "ERROR")
        console: Whether to log to console
        file: Whether to log to file
        format: Log file format ("jsonl" or "plain")
        filename: Name of the main log file
        log_dir: Directory for the log file
    """

    level: str = "INFO"
    console: bool = True
    file: bool = False
    format: str = "jsonl"
    filename: str = "crawl.jsonl"
    log_dir: str = "logs"


@dataclass
class LangfuseConfig:
    """Configuration for Langfuse tracing.

    Attributes:
        enabled: Whether to enable Langfuse tracing
        public_key: Langfuse public key (optional)
        secret_key: Langfuse secret key (optional)
        host: Langfuse host URL (optional)
        environment: Langfuse environment label (optional)
        release: Langfuse release identifier (optional)
        timeout_seconds: Timeout for Langfuse ingestion requests
        max_text_chars: Maximum characters for prompt/response payloads
    """

    enabled: bool = False
    public_key: str | None = None
    secret_key: str | None = None
    host: str | None = None
    environment: str | None = None
    release: str | None = None
    timeout_seconds: int = 30
    max_text_chars: int = 20000


@dataclass
class AppConfig:
    """Root configuration container aggregating all config sections."""

    ingest: IngestConfig = field(default_factory=IngestConfig)
    registry: RegistryConfig = field(default_factory=RegistryConfig)
    batch: BatchConfig = field(default_factory=BatchConfig)
    fetch: FetchConfig = field(default_factory=FetchConfig)
    extract: ExtractConfig = field(default_factory=ExtractConfig)
    analysis: AnalysisConfig = field(default_factory=AnalysisConfig)
    dedup: DedupConfig = field(default_factory=DedupConfig)
    priority: PriorityConfig = field(default_factory=PriorityConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    langfuse: LangfuseConfig = field(default_factory=LangfuseConfig)


def load_config(path: str | None) -> AppConfig:
    """Load configuration from a YAML file with defaults."""
    if not path:
        return AppConfig()

    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}
    if not isinstance(raw, dict):
        raise ConfigError(f"Config file {path} must contain a mapping")

    return _merge_config(AppConfig(), raw)


def _merge_config(base: AppConfig, raw: dict[str, Any]) -> AppConfig:
    """Merge raw YAML config into base AppConfig."""
    data = asdict(base)
    for key, value in raw.items():
        if key not in data:
            continue
        if isinstance(value, dict) and isinstance(data[key], dict):
            data[key].update(value)
        else:
            data[key] = value
    try:
        return _fromdict(data)
    except TypeError as exc:
        raise ConfigError(f"Invalid configuration: {exc}") from exc


def _fromdict(data: dict[str, Any]) -> AppConfig:
    """Reconstruct AppConfig from nested dictionary."""
    analysis = dict(data["analysis"])
    providers = analysis.pop("providers", None) or []
    return AppConfig(
        ingest=IngestConfig(**data["ingest"]),
        registry=RegistryConfig(**data["registry"]),
        batch=BatchConfig(**data["batch"]),
        fetch=FetchConfig(**data["fetch"]),
        extract=ExtractConfig(**data["extract"]),
        analysis=AnalysisConfig(
            providers=[ProviderConfig(**p) if isinstance(p, dict) else p for p in providers],
            **analysis,
        ),
        dedup=DedupConfig(**data["dedup"]),
        priority=PriorityConfig(**data["priority"]),
        logging=LoggingConfig(**data["logging"]),
        langfuse=LangfuseConfig(**data.get("langfuse", {})),
    )


def get_api_key(cfg: ProviderConfig) -> str | None:
    """Get API key from inline config or environment variable."""
    if cfg.api_key:
        return cfg.api_key
    if cfg.api_key_env:
        return os.getenv(cfg.api_key_env)
    defaults = {
        "anthropic": "ANTHROPIC_API_KEY",
        "gemini": "GEMINI_API_KEY",
        "openai": "OPENAI_API_KEY",
        "openai_compatible": "OPENAI_API_KEY",
        "openai-compatible": "OPENAI_API_KEY",
    }
    env_name = defaults.get(cfg.name.lower().strip())
    if not env_name:
        return None
    return os.getenv(env_name)


def get_ingest_secret(cfg: IngestConfig) -> str | None:
    """Get the ingest shared secret from inline config or environment variable."""
    if cfg.secret:
        return cfg.secret
    return os.getenv(cfg.secret_env)


def get_ingest_api_url(cfg: IngestConfig) -> str:
    """Get the ingest endpoint from config, INGEST_API_URL, or SITE_URL."""
    if cfg.api_url:
        return cfg.api_url
    env_url = os.getenv("INGEST_API_URL")
    if env_url:
        return env_url
    site_url = os.getenv("SITE_URL")
    if site_url:
        return f"{site_url.rstrip('/')}/api/ingest"
    return DEFAULT_INGEST_URL


def get_registry_base_url(cfg: RegistryConfig) -> str | None:
    """Get the registry base URL from config, REGISTRY_BASE_URL, or SITE_URL."""
    if cfg.base_url:
        return cfg.base_url.rstrip("/")
    env_url = os.getenv("REGISTRY_BASE_URL") or os.getenv("SITE_URL")
    return env_url.rstrip("/") if env_url else None


def validate_config(cfg: AppConfig) -> list[str]:
    """Return a list of configuration problems; empty when valid."""
    errors: list[str] = []
    if not get_ingest_secret(cfg.ingest):
        errors.append(f"Ingest secret is required (set {cfg.ingest.secret_env} or ingest.secret)")
    if not 1 <= cfg.batch.sources_per_batch <= 500:
        errors.append("batch.sources_per_batch must be between 1 and 500")
    if not 1 <= cfg.batch.items_per_source <= 100:
        errors.append("batch.items_per_source must be between 1 and 100")
    if not 1 <= cfg.batch.concurrency <= 50:
        errors.append("batch.concurrency must be between 1 and 50")
    if not 1 <= cfg.fetch.reader_timeout_seconds <= 120:
        errors.append("fetch.reader_timeout_seconds must be between 1 and 120")
    if cfg.fetch.max_retries < 0:
        errors.append("fetch.max_retries must be non-negative")
    if cfg.fetch.feed_max_attempts < 1:
        errors.append("fetch.feed_max_attempts must be at least 1")
    if cfg.fetch.max_content_bytes < 1:
        errors.append("fetch.max_content_bytes must be positive")
    if cfg.registry.kind not in ("file", "http"):
        errors.append(f"registry.kind must be 'file' or 'http', got {cfg.registry.kind!r}")
    if cfg.registry.kind == "http" and not get_registry_base_url(cfg.registry):
        errors.append("registry.base_url (or SITE_URL) is required for the http registry")
    if cfg.dedup.title_method not in ("jaccard", "fuzzy"):
        errors.append("dedup.title_method must be 'jaccard' or 'fuzzy'")
    return errors
