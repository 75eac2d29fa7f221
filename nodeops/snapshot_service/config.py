"""
Configuration management for the snapshot service.

Configuration comes from environment variables, optionally overlaid by a
flat JSON file (``--config``) using the legacy deployment field names:

    {
        "container_name": "nimiq",
        "file_path": "/data/nimiq",
        "bucket_name": "snapshots",
        "access_key": "...",
        "secret_key": "...",
        "endpoint": "https://s3.example.com",
        "region": "eu-central-1"
    }

The configuration is built once at startup and passed explicitly to every
component. Nothing reads os.environ after that.

Invariants:
    - All config objects are frozen after construction
    - Secrets are never logged or exposed in error messages
    - validate() runs before any component is constructed

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Keep the JSON file field names stable; deployments depend on them
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from croniter import croniter

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

# S3 rejects multipart parts smaller than this (except the last one)
MIN_PART_SIZE = 5 * 1024 * 1024


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


def _split_names(raw: str) -> frozenset[str]:
    return frozenset(name.strip() for name in raw.split(",") if name.strip())


@dataclass(frozen=True)
class S3Config:
    """Object storage configuration.

    Attributes:
        bucket: Bucket receiving archives and metadata
        region: Region name
        endpoint_url: Custom endpoint URL (MinIO, Wasabi, ...)
        access_key_id: Static access key (optional, uses AWS credential chain)
        secret_access_key: Static secret key (optional)
        force_path_style: Use path-style addressing (bucket in the URL path)
        part_size_bytes: Multipart upload part size
    """

    bucket: str = ""
    region: str = "us-east-1"
    endpoint_url: str | None = None
    access_key_id: str | None = None
    secret_access_key: str | None = None
    force_path_style: bool = True
    part_size_bytes: int = 16 * 1024 * 1024

    @classmethod
    def from_env(cls) -> S3Config:
        """Load configuration from environment variables."""
        return cls(
            bucket=os.getenv("BUCKET_NAME", os.getenv("S3_BUCKET", "")),
            region=os.getenv("S3_REGION", os.getenv("AWS_REGION", "us-east-1")),
            endpoint_url=os.getenv("S3_ENDPOINT"),
            access_key_id=os.getenv("AWS_ACCESS_KEY_ID"),
            secret_access_key=os.getenv("AWS_SECRET_ACCESS_KEY"),
            force_path_style=_env_bool("S3_FORCE_PATH_STYLE", "true"),
            part_size_bytes=int(os.getenv("S3_PART_SIZE_BYTES", str(16 * 1024 * 1024))),
        )


@dataclass(frozen=True)
class SourceConfig:
    """What gets snapshotted and how it is labelled.

    Attributes:
        data_dir: Root directory of the workload's on-disk state
        protocol: Key category, e.g. "nimiq"
        network: Key environment, e.g. "main-albatross"
        version: Workload version recorded in metadata
        ignore: Base names excluded from archive and fingerprint
    """

    data_dir: str = ""
    protocol: str = "nimiq"
    network: str = "main-albatross"
    version: str = "unknown"
    ignore: frozenset[str] = field(default_factory=frozenset)

    @classmethod
    def from_env(cls) -> SourceConfig:
        """Load configuration from environment variables."""
        return cls(
            data_dir=os.getenv("FILE_PATH", ""),
            protocol=os.getenv("PROTOCOL", "nimiq"),
            network=os.getenv("NETWORK", "main-albatross"),
            version=os.getenv("VERSION", "unknown"),
            ignore=_split_names(os.getenv("IGNORE_FILES", "")),
        )


@dataclass(frozen=True)
class WorkloadConfig:
    """Workload lifecycle configuration.

    Attributes:
        controller: "docker" or "none"
        container_name: Container to stop during capture
        stop_timeout_seconds: Grace period passed to ``docker stop``
    """

    controller: str = "docker"
    container_name: str = ""
    stop_timeout_seconds: int = 30

    @classmethod
    def from_env(cls) -> WorkloadConfig:
        """Load configuration from environment variables."""
        return cls(
            controller=os.getenv("WORKLOAD_CONTROLLER", "docker").lower(),
            container_name=os.getenv("CONTAINER_NAME", ""),
            stop_timeout_seconds=int(os.getenv("CONTAINER_STOP_TIMEOUT", "30")),
        )


@dataclass(frozen=True)
class PipelineConfig:
    """Streaming pipeline tuning.

    Attributes:
        chunk_size_bytes: Size of chunks handed from encoder to uploader
        max_chunks: Chunks buffered before the encoder blocks
        compression_level: gzip level (1-9)
        verify_fingerprint: Cross-check archived bytes against the metadata digest
    """

    chunk_size_bytes: int = 1024 * 1024
    max_chunks: int = 8
    compression_level: int = 6
    verify_fingerprint: bool = True

    @classmethod
    def from_env(cls) -> PipelineConfig:
        """Load configuration from environment variables."""
        return cls(
            chunk_size_bytes=int(os.getenv("PIPELINE_CHUNK_BYTES", str(1024 * 1024))),
            max_chunks=int(os.getenv("PIPELINE_MAX_CHUNKS", "8")),
            compression_level=int(os.getenv("PIPELINE_COMPRESSION_LEVEL", "6")),
            verify_fingerprint=_env_bool("PIPELINE_VERIFY_FINGERPRINT", "true"),
        )


@dataclass(frozen=True)
class RetentionConfig:
    """Retention configuration.

    Attributes:
        enabled: Whether to prune before each run
        keep: Generations kept per object class
    """

    enabled: bool = True
    keep: int = 5

    @classmethod
    def from_env(cls) -> RetentionConfig:
        """Load configuration from environment variables."""
        return cls(
            enabled=_env_bool("RETENTION_ENABLED", "true"),
            keep=int(os.getenv("RETENTION_KEEP", "5")),
        )


@dataclass(frozen=True)
class ScheduleConfig:
    """Schedule configuration.

    Attributes:
        cron: Cron expression (croniter syntax, "@daily" etc. allowed)
        run_on_start: Run one snapshot immediately when serving starts
    """

    cron: str = "@daily"
    run_on_start: bool = False

    @classmethod
    def from_env(cls) -> ScheduleConfig:
        """Load configuration from environment variables."""
        return cls(
            cron=os.getenv("SNAPSHOT_CRON", "@daily"),
            run_on_start=_env_bool("SNAPSHOT_RUN_ON_START", "false"),
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
        )


@dataclass(frozen=True)
class ServiceConfig:
    """Complete service configuration.

    Attributes:
        s3: Object storage configuration
        source: Snapshot source configuration
        workload: Workload controller configuration
        pipeline: Streaming pipeline configuration
        retention: Retention configuration
        schedule: Schedule configuration
        observability: Logging configuration
    """

    s3: S3Config = field(default_factory=S3Config)
    source: SourceConfig = field(default_factory=SourceConfig)
    workload: WorkloadConfig = field(default_factory=WorkloadConfig)
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)
    retention: RetentionConfig = field(default_factory=RetentionConfig)
    schedule: ScheduleConfig = field(default_factory=ScheduleConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> ServiceConfig:
        """Load complete configuration from environment variables.

        Raises:
            ConfigurationError: If required configuration is missing or invalid.
        """
        config = cls._from_environment()
        config.validate()
        return config

    @classmethod
    def _from_environment(cls) -> ServiceConfig:
        try:
            return cls(
                s3=S3Config.from_env(),
                source=SourceConfig.from_env(),
                workload=WorkloadConfig.from_env(),
                pipeline=PipelineConfig.from_env(),
                retention=RetentionConfig.from_env(),
                schedule=ScheduleConfig.from_env(),
                observability=ObservabilityConfig.from_env(),
            )
        except ValueError as e:
            raise ConfigurationError(f"Invalid numeric setting: {e}") from e

    @classmethod
    def from_file(cls, path: str | Path) -> ServiceConfig:
        """Load configuration from a JSON file, on top of the environment.

        Args:
            path: Path to the JSON configuration file

        Raises:
            ConfigurationError: If the file cannot be read or is invalid.
        """
        file_path = Path(path).expanduser().resolve()
        try:
            with open(file_path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Cannot load configuration from {file_path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigurationError(f"Configuration file {file_path} must contain a JSON object")

        base = cls._from_environment()
        try:
            config = base._overlay(data)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid value in {file_path}: {e}") from e

        config.validate()
        return config

    @classmethod
    def load(cls, path: str | Path | None = None) -> ServiceConfig:
        """Load from a file when given, else from the environment."""
        if path:
            return cls.from_file(path)
        return cls.from_env()

    def _overlay(self, data: dict[str, Any]) -> ServiceConfig:
        """Apply flat JSON fields over this configuration."""
        s3_fields = {
            "bucket_name": "bucket",
            "region": "region",
            "endpoint": "endpoint_url",
            "access_key": "access_key_id",
            "secret_key": "secret_access_key",
            "force_path_style": "force_path_style",
            "part_size_bytes": "part_size_bytes",
        }
        source_fields = {
            "file_path": "data_dir",
            "protocol": "protocol",
            "network": "network",
            "version": "version",
        }
        workload_fields = {
            "controller": "controller",
            "container_name": "container_name",
            "stop_timeout_seconds": "stop_timeout_seconds",
        }

        def pick(mapping: dict[str, str]) -> dict[str, Any]:
            return {attr: data[name] for name, attr in mapping.items() if name in data}

        source_kwargs = pick(source_fields)
        if "ignore" in data:
            ignore = data["ignore"]
            if isinstance(ignore, str):
                source_kwargs["ignore"] = _split_names(ignore)
            else:
                source_kwargs["ignore"] = frozenset(str(name) for name in ignore)

        retention_kwargs: dict[str, Any] = {}
        if "keep" in data:
            retention_kwargs["keep"] = int(data["keep"])
        if "retention_enabled" in data:
            retention_kwargs["enabled"] = bool(data["retention_enabled"])

        schedule_kwargs: dict[str, Any] = {}
        if "cron" in data:
            schedule_kwargs["cron"] = str(data["cron"])
        if "run_on_start" in data:
            schedule_kwargs["run_on_start"] = bool(data["run_on_start"])

        return replace(
            self,
            s3=replace(self.s3, **pick(s3_fields)),
            source=replace(self.source, **source_kwargs),
            workload=replace(self.workload, **pick(workload_fields)),
            retention=replace(self.retention, **retention_kwargs),
            schedule=replace(self.schedule, **schedule_kwargs),
        )

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ConfigurationError: If configuration is invalid.
        """
        if not self.s3.bucket:
            raise ConfigurationError("BUCKET_NAME is required")
        if not self.source.data_dir:
            raise ConfigurationError("FILE_PATH (data directory) is required")
        if not self.source.protocol or "/" in self.source.protocol:
            raise ConfigurationError("PROTOCOL must be non-empty and must not contain '/'")
        if not self.source.network or "/" in self.source.network:
            raise ConfigurationError("NETWORK must be non-empty and must not contain '/'")
        if self.s3.part_size_bytes < MIN_PART_SIZE:
            raise ConfigurationError(
                f"S3_PART_SIZE_BYTES must be at least {MIN_PART_SIZE} bytes"
            )
        if self.workload.controller not in ("docker", "none"):
            raise ConfigurationError(
                f"Invalid WORKLOAD_CONTROLLER '{self.workload.controller}'. "
                "Must be one of: docker, none"
            )
        if self.workload.controller == "docker" and not self.workload.container_name:
            raise ConfigurationError("CONTAINER_NAME is required when WORKLOAD_CONTROLLER=docker")
        if self.retention.keep < 1:
            raise ConfigurationError("RETENTION_KEEP must be at least 1")
        if self.pipeline.chunk_size_bytes < 1 or self.pipeline.max_chunks < 1:
            raise ConfigurationError("Pipeline chunk size and max chunks must be positive")
        if not 1 <= self.pipeline.compression_level <= 9:
            raise ConfigurationError("PIPELINE_COMPRESSION_LEVEL must be between 1 and 9")
        if not croniter.is_valid(self.schedule.cron):
            raise ConfigurationError(f"Invalid SNAPSHOT_CRON expression: {self.schedule.cron!r}")

        if not os.path.isdir(self.source.data_dir):
            logger.warning(
                f"Data directory does not exist: {self.source.data_dir}. "
                "Snapshot runs will fail until it is created."
            )

    def log_config(self) -> None:
        """Log configuration (redacting secrets)."""
        logger.info(
            "Snapshot service configuration loaded",
            extra={
                "s3_bucket": self.s3.bucket,
                "s3_endpoint": self.s3.endpoint_url,
                "s3_region": self.s3.region,
                "s3_static_credentials": bool(self.s3.access_key_id),
                "data_dir": self.source.data_dir,
                "protocol": self.source.protocol,
                "network": self.source.network,
                "ignore": sorted(self.source.ignore),
                "controller": self.workload.controller,
                "container_name": self.workload.container_name,
                "retention_keep": self.retention.keep if self.retention.enabled else None,
                "cron": self.schedule.cron,
                "log_level": self.observability.log_level,
            },
        )
