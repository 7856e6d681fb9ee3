"""Configuration file format for SideORM."""

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, model_validator

DEFAULT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

CONFIG_FILENAMES = ["sideorm.yaml", "sideorm.yml", "sideorm.json"]


class DuckDBConnection(BaseModel):
    """DuckDB connection configuration."""

    type: Literal["duckdb"] = "duckdb"
    path: str = Field(default=":memory:", description="Path to DuckDB database file or :memory:")


Connection = DuckDBConnection


class SideORMConfig(BaseModel):
    """SideORM configuration file format.

    Can be saved as sideorm.yaml or sideorm.json.

    Example YAML:
        default: main
        connections:
          main:
            type: duckdb
            path: data/app.duckdb
          reporting:
            type: duckdb
            path: data/reporting.duckdb
        date_format: "%Y-%m-%d %H:%M:%S"
        dirty_comparison: lenient
        log_queries: false

    Example JSON:
        {
          "default": "main",
          "connections": {
            "main": {"type": "duckdb", "path": "data/app.duckdb"}
          }
        }
    """

    default: str = Field(default="default", description="Name of the default connection")
    connections: dict[str, Connection] = Field(
        default_factory=lambda: {"default": DuckDBConnection()},
        description="Named database connections",
    )
    date_format: str = Field(default=DEFAULT_DATE_FORMAT, description="strftime format used for date columns")
    dirty_comparison: Literal["lenient", "strict"] = Field(
        default="lenient",
        description="lenient treats numerically equal values as clean ('1' == 1); strict compares type and value",
    )
    log_queries: bool = Field(default=False, description="Record executed statements on each connection")

    @model_validator(mode="after")
    def _check_default_connection(self) -> "SideORMConfig":
        if self.default not in self.connections:
            raise ValueError(
                f"Default connection '{self.default}' is not defined. "
                f"Available: {', '.join(sorted(self.connections)) or 'none'}"
            )
        return self

    def resolve_paths(self, base_dir: Path | None = None) -> "SideORMConfig":
        """Resolve relative paths to absolute paths.

        Args:
            base_dir: Base directory for resolving relative paths (defaults to cwd)

        Returns:
            New config with resolved paths
        """
        base = base_dir or Path.cwd()

        connections = {}
        for name, connection in self.connections.items():
            if isinstance(connection, DuckDBConnection) and connection.path != ":memory:":
                db_p = Path(connection.path)
                if not db_p.is_absolute():
                    db_p = (base / db_p).resolve()
                connection = DuckDBConnection(type="duckdb", path=str(db_p))
            connections[name] = connection

        return self.model_copy(update={"connections": connections})


def load_config(config_path: Path) -> SideORMConfig:
    """Load configuration from YAML or JSON file.

    Args:
        config_path: Path to config file (sideorm.yaml or sideorm.json)

    Returns:
        Loaded and validated configuration

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If config file format is invalid
    """
    import json

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    suffix = config_path.suffix.lower()

    if suffix in {".yaml", ".yml"}:
        import yaml

        with open(config_path) as f:
            data = yaml.safe_load(f)
    elif suffix == ".json":
        with open(config_path) as f:
            data = json.load(f)
    else:
        raise ValueError(f"Unsupported config format: {suffix}. Use .yaml, .yml, or .json")

    config = SideORMConfig(**(data or {}))

    # Resolve relative paths relative to config file directory
    return config.resolve_paths(config_path.parent)


def find_config(start_dir: Path | None = None) -> Path | None:
    """Find config file by searching up the directory tree.

    Searches for sideorm.yaml, sideorm.yml, or sideorm.json.

    Args:
        start_dir: Directory to start searching from (defaults to cwd)

    Returns:
        Path to config file if found, None otherwise
    """
    current = (start_dir or Path.cwd()).resolve()

    # Search up to root
    while True:
        for name in CONFIG_FILENAMES:
            config_path = current / name
            if config_path.exists():
                return config_path

        parent = current.parent
        if parent == current:
            # Reached root
            break
        current = parent

    return None


def build_connection_url(connection: Connection) -> str:
    """Build database connection URL from a connection entry.

    Args:
        connection: Connection configuration

    Returns:
        Connection URL understood by the adapter's ``from_url``
    """
    if isinstance(connection, DuckDBConnection):
        if connection.path == ":memory:":
            return "duckdb:///:memory:"
        return f"duckdb://{Path(connection.path).resolve()}"

    raise ValueError(f"Unsupported connection type: {type(connection).__name__}")
