"""Database connection and management utilities."""

import logging
from typing import Dict, Any, List, Optional
from sqlalchemy import create_engine, Engine, text
from sqlalchemy.engine import URL
from sqlalchemy.exc import SQLAlchemyError
from pydantic import BaseModel, Field, validator

from dbfab.core.escaping import SUPPORTED_DIALECTS


logger = logging.getLogger(__name__)


DEFAULT_PORTS = {
    "postgresql": 5432,
    "clickhouse": 8123,
    "trino": 8080,
}

# VACUUM cannot run inside a transaction block on these engines
AUTOCOMMIT_DRIVERS = ("postgresql", "sqlite")


class DatabaseConfig(BaseModel):
    """Configuration model for database connections."""

    driver: str = Field(default="postgresql", description="Database driver")
    host: str = Field(default="localhost", description="Database host")
    port: Optional[int] = Field(default=None, description="Database port (None = driver default)")
    database: str = Field(default="", description="Database name, or file path for SQLite")
    username: str = Field(default="", description="Database username")
    password: str = Field(default="", description="Database password")
    catalog: str = Field(default="iceberg", description="Trino catalog")
    schema_name: str = Field(default="default", description="Trino schema")
    ssl_mode: Optional[str] = Field(default=None, description="SSL mode")

    @validator("driver")
    def validate_driver(cls, v):
        if v not in SUPPORTED_DIALECTS:
            raise ValueError(f"Unsupported driver: {v}. Supported: {list(SUPPORTED_DIALECTS)}")
        return v

    @validator("port")
    def validate_port(cls, v, values):
        driver = values.get("driver", "postgresql")
        if driver == "sqlite" or v is None:
            return v  # SQLite doesn't use ports
        if not 1 <= v <= 65535:
            raise ValueError("Port must be between 1 and 65535")
        return v

    @property
    def effective_port(self) -> Optional[int]:
        if self.port is not None:
            return self.port
        return DEFAULT_PORTS.get(self.driver)


class DatabaseConnection:
    """Manages database connections and provides utilities for database operations."""

    def __init__(self, config: DatabaseConfig):
        """Initialize database connection with configuration."""
        self.config = config
        self._engine: Optional[Engine] = None

    def connect(self) -> None:
        """Establish connection to the database."""
        try:
            connection_url = self._build_connection_url()
            if self.config.driver == "sqlite":
                logger.info(f"Opening sqlite database {self.config.database or ':memory:'}")
            else:
                logger.info(
                    f"Connecting to {self.config.driver} database at "
                    f"{self.config.host}:{self.config.effective_port}"
                )

            engine_kwargs = {
                "echo": False,
                "pool_pre_ping": True,
                "pool_recycle": 3600,
                "connect_args": self._get_connect_args()
            }
            if self.config.driver in AUTOCOMMIT_DRIVERS:
                engine_kwargs["isolation_level"] = "AUTOCOMMIT"

            self._engine = create_engine(connection_url, **engine_kwargs)

            # Test connection
            with self._engine.connect() as conn:
                conn.execute(text("SELECT 1"))
                logger.info("Database connection established successfully")

        except SQLAlchemyError as e:
            logger.error(f"Failed to connect to database: {e}")
            raise ConnectionError(f"Database connection failed: {e}")

    def _build_connection_url(self) -> str:
        """Build SQLAlchemy connection URL from config."""
        config = self.config
        if config.driver == "sqlite":
            if not config.database or config.database == ":memory:":
                return "sqlite://"
            return f"sqlite:///{config.database}"

        if config.driver == "postgresql":
            url = URL.create(
                "postgresql+psycopg2",
                username=config.username or None,
                password=config.password or None,
                host=config.host,
                port=config.effective_port,
                database=config.database or None,
            )
        elif config.driver == "clickhouse":
            url = URL.create(
                "clickhousedb",
                username=config.username or "default",
                password=config.password or None,
                host=config.host,
                port=config.effective_port,
                database=config.database or None,
            )
        elif config.driver == "trino":
            # Trino passwords go through connect_args, never the URL
            url = URL.create(
                "trino",
                username=config.username or "trino",
                host=config.host,
                port=config.effective_port,
                database=f"{config.catalog}/{config.schema_name}",
            )
        else:
            raise ValueError(f"Unsupported driver: {config.driver}")

        return url.render_as_string(hide_password=False)

    def _get_connect_args(self) -> Dict[str, Any]:
        """Get driver-specific connection arguments."""
        args: Dict[str, Any] = {}

        if self.config.driver == "postgresql":
            if self.config.ssl_mode:
                args["sslmode"] = self.config.ssl_mode
        elif self.config.driver == "clickhouse":
            if self.config.ssl_mode:
                args["secure"] = self.config.ssl_mode not in ("disable", "false")
        elif self.config.driver == "trino":
            if self.config.password:
                from trino.auth import BasicAuthentication
                args["auth"] = BasicAuthentication(self.config.username, self.config.password)
                args["http_scheme"] = "https"
        return args

    @property
    def engine(self) -> Engine:
        """Get the SQLAlchemy engine."""
        if self._engine is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._engine

    def execute(self, sql: str) -> None:
        """Execute one generated statement.

        The text is sent to the driver as-is: values are already inlined as
        escaped literals, so no bind-parameter parsing may touch it.
        """
        logger.debug(f"Executing: {sql}")
        try:
            with self.engine.begin() as conn:
                conn.execution_options(no_parameters=True).exec_driver_sql(sql)
        except SQLAlchemyError as e:
            logger.error(f"Statement execution failed: {e}")
            raise

    def fetch_all(self, sql: str) -> List[Any]:
        """Run a generated query and return all rows."""
        logger.debug(f"Querying: {sql}")
        try:
            with self.engine.connect() as conn:
                result = conn.execution_options(no_parameters=True).exec_driver_sql(sql)
                return result.fetchall()
        except SQLAlchemyError as e:
            logger.error(f"Query execution failed: {e}")
            raise

    def fetch_scalar(self, sql: str) -> Any:
        rows = self.fetch_all(sql)
        if not rows:
            return None
        return rows[0][0]

    def execute_query(self, query: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """Execute a parameterized SQL query and return results."""
        try:
            with self.engine.connect() as conn:
                result = conn.execute(text(query), params or {})
                return result.fetchall()
        except SQLAlchemyError as e:
            logger.error(f"Query execution failed: {e}")
            raise

    def close(self) -> None:
        """Close database connection and cleanup resources."""
        if self._engine:
            self._engine.dispose()
            self._engine = None
            logger.info("Database connection closed")

    def __enter__(self):
        """Context manager entry."""
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()


def create_database_connection(
    driver: str = "postgresql",
    host: str = "localhost",
    port: Optional[int] = None,
    database: str = "",
    username: str = "",
    password: str = "",
    **kwargs
) -> DatabaseConnection:
    """Factory function to create a database connection."""
    config = DatabaseConfig(
        driver=driver,
        host=host,
        port=port,
        database=database,
        username=username,
        password=password,
        **kwargs
    )
    return DatabaseConnection(config)
