"""
Configuration system for ghostsync using Pydantic.
"""

import os
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings

from .exceptions import ConfigurationError


# Columns every catalog-managed table carries.
REQUIRED_COLUMNS = ["cartodb_id", "the_geom"]
GEOMETRY_SUPPORT_COLUMN = "the_geom_webmercator"
QUOTA_TRIGGER_NAME = "test_quota_per_row"


class DatabaseConnection(BaseModel):
    """Database connection configuration."""

    host: str = Field(..., description="Database host")
    port: int = Field(5432, description="Database port")
    database: str = Field(..., description="Database name")
    user: str = Field(..., description="Database user")
    password: str = Field(..., description="Database password")
    ssl_mode: Optional[str] = Field(None, description="SSL mode")
    min_size: int = Field(1, description="Minimum connections in pool")
    max_size: int = Field(5, description="Maximum connections in pool")
    command_timeout: float = Field(60.0, description="Command timeout in seconds")


class DatabaseConfig(BaseModel):
    """A named database holding both the live tables and the catalog."""

    name: str = Field(..., description="Database configuration name")
    connection: DatabaseConnection = Field(..., description="Connection details")


class TenantConfig(BaseModel):
    """A tenant whose catalog is reconciled against its live schema."""

    name: str = Field(..., description="Tenant name, used for lease keys and catalog rows")
    database: str = Field(..., description="Database configuration name")
    database_schema: str = Field("public", description="Schema holding the tenant's tables")
    database_role: str = Field(..., description="Role owning the tenant's tables")

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("Tenant name is required")
        return v


class LeaseConfig(BaseModel):
    """Distributed lease configuration."""

    backend: Literal["redis", "memory"] = Field("redis", description="Lease backend")
    connection: Dict[str, Any] = Field(
        default_factory=lambda: {"host": "localhost", "port": 6379, "db": 0},
        description="Redis connection parameters",
    )
    key_prefix: str = Field("ghostsync:tenants", description="Lease key prefix")
    ttl_ms: int = Field(2000, description="Lease time-to-live in milliseconds")

    @field_validator("ttl_ms")
    @classmethod
    def validate_ttl(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("Lease TTL must be positive")
        return v


class ClassifierConfig(BaseModel):
    """Rules deciding whether a live table is registered in the catalog."""

    required_columns: List[str] = Field(
        default_factory=lambda: list(REQUIRED_COLUMNS),
        description="Columns a table must carry",
    )
    geometry_column: str = Field(
        GEOMETRY_SUPPORT_COLUMN, description="Geometry support column"
    )
    quota_trigger: str = Field(
        QUOTA_TRIGGER_NAME, description="Row quota enforcement trigger"
    )


class CatalogConfig(BaseModel):
    """Catalog store configuration."""

    database: str = Field("catalog", description="Database configuration holding the catalog")
    schema_name: str = Field("ghostsync_catalog", description="Schema holding catalog tables")


class ResolverConfig(BaseModel):
    """Reconciliation behaviour."""

    dry_run: bool = Field(False, description="Report mutations without applying them")
    null_identifier_cleanup: Literal["always", "with_orphans"] = Field(
        "always",
        description="When entries without a table identifier are cleaned up",
    )
    interval_seconds: int = Field(300, description="Interval between passes in watch mode")


class TelemetryConfig(BaseModel):
    """Telemetry sink configuration."""

    sink: Literal["logging", "redis"] = Field("logging", description="Telemetry sink")
    list_name: str = Field("ghostsync:telemetry", description="Redis list for events")
    max_length: int = Field(10000, description="Events kept in the Redis list")


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        "INFO", description="Log level"
    )
    format: str = Field(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log format",
    )
    file: Optional[str] = Field(None, description="Log file path")
    max_size: int = Field(10485760, description="Max log file size in bytes")  # 10MB
    backup_count: int = Field(5, description="Number of backup log files")


class GhostSyncConfig(BaseSettings):
    """Main ghostsync configuration."""

    service_name: str = Field("ghostsync", description="Service name")
    debug: bool = Field(False, description="Enable debug mode")

    databases: List[DatabaseConfig] = Field(
        default_factory=list, description="Database configurations"
    )
    tenants: List[TenantConfig] = Field(
        default_factory=list, description="Tenants to reconcile"
    )

    lease: LeaseConfig = Field(default_factory=LeaseConfig, description="Lease configuration")
    classifier: ClassifierConfig = Field(
        default_factory=ClassifierConfig, description="Catalog-worthiness rules"
    )
    catalog: CatalogConfig = Field(
        default_factory=CatalogConfig, description="Catalog store configuration"
    )
    resolver: ResolverConfig = Field(
        default_factory=ResolverConfig, description="Reconciliation behaviour"
    )
    telemetry: TelemetryConfig = Field(
        default_factory=TelemetryConfig, description="Telemetry configuration"
    )
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig, description="Logging configuration"
    )

    model_config = ConfigDict(
        env_file=".env",
        env_prefix="GHOSTSYNC_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "GhostSyncConfig":
        """Load configuration from a YAML file."""
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}

            data = cls._expand_env_vars(data)

            return cls(**data)
        except FileNotFoundError:
            raise ConfigurationError(f"Configuration file not found: {path}")
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in configuration file: {e}")
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration: {e}")

    @classmethod
    def _expand_env_vars(cls, data: Any) -> Any:
        """Recursively expand environment variables in configuration data."""
        if isinstance(data, dict):
            return {k: cls._expand_env_vars(v) for k, v in data.items()}
        elif isinstance(data, list):
            return [cls._expand_env_vars(item) for item in data]
        elif isinstance(data, str):
            return os.path.expandvars(data)
        else:
            return data

    def get_database(self, name: str) -> DatabaseConfig:
        """Get database configuration by name."""
        for db in self.databases:
            if db.name == name:
                return db
        raise ConfigurationError(f"Database configuration '{name}' not found")

    def get_tenant(self, name: str) -> TenantConfig:
        """Get tenant configuration by name."""
        for tenant in self.tenants:
            if tenant.name == name:
                return tenant
        raise ConfigurationError(f"Tenant '{name}' not found")

    def validate_config(self) -> None:
        """Validate the entire configuration for consistency."""
        database_names = {db.name for db in self.databases}
        if len(database_names) != len(self.databases):
            raise ConfigurationError("Database configuration names must be unique")

        if self.tenants and self.catalog.database not in database_names:
            raise ConfigurationError(
                f"Catalog references unknown database config '{self.catalog.database}'"
            )

        seen = set()
        for tenant in self.tenants:
            if tenant.name in seen:
                raise ConfigurationError(f"Tenant '{tenant.name}' is configured twice")
            seen.add(tenant.name)

            if tenant.database not in database_names:
                raise ConfigurationError(
                    f"Tenant {tenant.name} references unknown "
                    f"database config '{tenant.database}'"
                )

    def to_yaml(self, path: Union[str, Path]) -> None:
        """Save configuration to a YAML file."""
        with open(path, "w", encoding="utf-8") as f:
            yaml.dump(
                self.model_dump(exclude_none=True), f, default_flow_style=False, indent=2
            )
