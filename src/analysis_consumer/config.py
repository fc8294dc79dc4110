"""Analysis consumer configuration from environment variables and YAML."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml

DEFAULT_CONFIG_PATH = Path("config.yaml")


def _frozen_mapping(values: Optional[Mapping[str, Any]], setting: str) -> Mapping[str, str]:
    if values is None:
        return MappingProxyType({})
    if not isinstance(values, Mapping):
        raise ValueError(f"'{setting}' must be a mapping of module name to string")
    # Entries without a value are ignored
    return MappingProxyType(
        {str(k): str(v) for k, v in values.items() if v is not None and str(v).strip()}
    )


@dataclass(frozen=True)
class ConsumerConfig:
    """Analysis consumer configuration.

    Load using ConsumerConfig.load(). Connection settings come from
    environment variables; the blacklist, credential pool, ref overrides
    and service factories come from the YAML file.
    All timing values in milliseconds unless otherwise noted.
    """

    # Kafka connection
    bootstrap_servers: str
    security_protocol: str = "PLAINTEXT"
    sasl_mechanism: str = "PLAIN"
    sasl_plain_username: str = ""
    sasl_plain_password: str = ""

    # Consumer
    analysis_topic: str = "npms.analysis.pending"
    consumer_group: str = "npms-analyzer-consume"
    auto_offset_reset: str = "earliest"
    max_poll_interval_ms: int = 600000  # analyses can take minutes
    session_timeout_ms: int = 30000
    redelivery_backoff_ms: int = 1000

    # Analysis store (CouchDB)
    couchdb_url: str = "http://127.0.0.1:5984"
    couchdb_database: str = "npms"

    # Search index (Elasticsearch)
    elasticsearch_url: str = "http://127.0.0.1:9200"
    elasticsearch_index: str = "npms-current"

    http_timeout_seconds: float = 15.0

    # Analysis and scoring service factories (dotted paths)
    analyzer_factory: str = ""
    scorer_factory: str = ""

    # Read-only settings from the YAML file
    blacklist: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    github_tokens: Tuple[str, ...] = ()
    git_ref_overrides: Mapping[str, str] = field(
        default_factory=lambda: MappingProxyType({})
    )

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> "ConsumerConfig":
        """Load configuration from the environment and the YAML file.

        The YAML path is taken from the argument, then CONSUMER_CONFIG_PATH,
        then ./config.yaml. A missing file is only an error when the path
        was given explicitly.

        Raises:
            ValueError: If required settings are missing or malformed
        """
        explicit = config_path is not None or "CONSUMER_CONFIG_PATH" in os.environ
        path = Path(config_path or os.getenv("CONSUMER_CONFIG_PATH", str(DEFAULT_CONFIG_PATH)))

        file_values: Dict[str, Any] = {}
        if path.exists():
            file_values = load_yaml(path)
        elif explicit:
            raise ValueError(f"Config file not found: {path}")

        return cls.from_env(file_values)

    @classmethod
    def from_env(cls, file_values: Optional[Mapping[str, Any]] = None) -> "ConsumerConfig":
        """Load configuration from environment variables.

        Required environment variables:
            KAFKA_BOOTSTRAP_SERVERS: Kafka broker addresses

        Optional environment variables (with defaults):
            KAFKA_SECURITY_PROTOCOL: PLAINTEXT (default)
            KAFKA_SASL_MECHANISM: PLAIN (default)
            KAFKA_SASL_PLAIN_USERNAME / KAFKA_SASL_PLAIN_PASSWORD
            KAFKA_ANALYSIS_TOPIC: npms.analysis.pending (default)
            KAFKA_CONSUMER_GROUP: npms-analyzer-consume (default)
            KAFKA_MAX_POLL_INTERVAL_MS: 600000 (default)
            KAFKA_SESSION_TIMEOUT_MS: 30000 (default)
            REDELIVERY_BACKOFF_MS: 1000 (default)
            COUCHDB_NPMS_URL: http://127.0.0.1:5984 (default)
            COUCHDB_NPMS_DB: npms (default)
            ELASTICSEARCH_URL: http://127.0.0.1:9200 (default)
            ELASTICSEARCH_INDEX: npms-current (default)
            HTTP_TIMEOUT_SECONDS: 15 (default)
            ANALYZER_FACTORY / SCORER_FACTORY: override the YAML entries

        Args:
            file_values: Parsed YAML settings (blacklist, github_tokens,
                git_ref_overrides, analyzer, scorer)

        Raises:
            ValueError: If required environment variables are missing
        """
        bootstrap_servers = os.getenv("KAFKA_BOOTSTRAP_SERVERS")
        if not bootstrap_servers:
            raise ValueError("KAFKA_BOOTSTRAP_SERVERS environment variable is required")

        file_values = file_values or {}

        tokens = file_values.get("github_tokens") or []
        if isinstance(tokens, str):
            tokens = [t.strip() for t in tokens.split(",") if t.strip()]
        if not isinstance(tokens, (list, tuple)):
            raise ValueError("'github_tokens' must be a list of strings")

        try:
            return cls(
                # Connection
                bootstrap_servers=bootstrap_servers,
                security_protocol=os.getenv("KAFKA_SECURITY_PROTOCOL", "PLAINTEXT"),
                sasl_mechanism=os.getenv("KAFKA_SASL_MECHANISM", "PLAIN"),
                sasl_plain_username=os.getenv("KAFKA_SASL_PLAIN_USERNAME", ""),
                sasl_plain_password=os.getenv("KAFKA_SASL_PLAIN_PASSWORD", ""),

                # Consumer
                analysis_topic=os.getenv("KAFKA_ANALYSIS_TOPIC", "npms.analysis.pending"),
                consumer_group=os.getenv("KAFKA_CONSUMER_GROUP", "npms-analyzer-consume"),
                max_poll_interval_ms=int(os.getenv("KAFKA_MAX_POLL_INTERVAL_MS", "600000")),
                session_timeout_ms=int(os.getenv("KAFKA_SESSION_TIMEOUT_MS", "30000")),
                redelivery_backoff_ms=int(os.getenv("REDELIVERY_BACKOFF_MS", "1000")),

                # Store and index
                couchdb_url=os.getenv("COUCHDB_NPMS_URL", "http://127.0.0.1:5984"),
                couchdb_database=os.getenv("COUCHDB_NPMS_DB", "npms"),
                elasticsearch_url=os.getenv("ELASTICSEARCH_URL", "http://127.0.0.1:9200"),
                elasticsearch_index=os.getenv("ELASTICSEARCH_INDEX", "npms-current"),
                http_timeout_seconds=float(os.getenv("HTTP_TIMEOUT_SECONDS", "15")),

                # Services
                analyzer_factory=os.getenv("ANALYZER_FACTORY", file_values.get("analyzer") or ""),
                scorer_factory=os.getenv("SCORER_FACTORY", file_values.get("scorer") or ""),

                # File settings
                blacklist=_frozen_mapping(file_values.get("blacklist"), "blacklist"),
                github_tokens=tuple(str(t) for t in tokens),
                git_ref_overrides=_frozen_mapping(
                    file_values.get("git_ref_overrides"), "git_ref_overrides"
                ),
            )
        except (TypeError, ValueError) as e:
            raise ValueError(f"Invalid configuration: {e}") from e


def load_yaml(path: Path) -> Dict[str, Any]:
    """Read a YAML settings file.

    Raises:
        ValueError: If the file is not valid YAML or not a mapping
    """
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a mapping")
    return data
