"""
Shared data models for pgrecord.
These models are used by the connection layer, the query builder and the
data mapper.
"""
from enum import Enum
from typing import Optional, Dict, Any, List, Union

from pydantic import BaseModel, Field, field_validator, model_validator


# ===== Database Connection Models =====

class ConnectionSettings(BaseModel):
    """PostgreSQL connection and pool configuration."""
    host: str = "localhost"
    port: int = Field(default=5432, ge=1, le=65535)
    dbname: str = "postgres"
    user: str = "postgres"
    password: str = ""
    connect_timeout: int = Field(default=10, ge=0)
    min_conn: int = Field(default=1, ge=1)
    max_conn: int = Field(default=10, ge=1)
    dsn: Optional[str] = None

    @model_validator(mode="after")
    def _check_pool_bounds(self) -> "ConnectionSettings":
        if self.max_conn < self.min_conn:
            raise ValueError("max_conn must be greater than or equal to min_conn")
        return self

    def connect_kwargs(self) -> Dict[str, Any]:
        """Keyword arguments for ``psycopg2.connect`` / the pool constructor."""
        if self.dsn:
            return {"dsn": self.dsn}
        return {
            "host": self.host,
            "port": self.port,
            "dbname": self.dbname,
            "user": self.user,
            "password": self.password,
            "connect_timeout": self.connect_timeout,
        }

    def describe(self) -> str:
        """Connection target without the password, for log lines."""
        if self.dsn:
            return "dsn"
        return f"{self.user}@{self.host}:{self.port}/{self.dbname}"


# ===== Query Option Models =====

class SortDirection(str, Enum):
    """ORDER BY direction."""
    ASC = "ASC"
    DESC = "DESC"


class SearchMode(str, Enum):
    """How a search term is matched against the searched fields."""
    LIKE = "like"
    EXACT = "exact"
    FULLTEXT = "fulltext"


class SearchOptions(BaseModel):
    """Multi-field search block; its field conditions are ORed together."""
    fields: List[str] = Field(default_factory=list)
    term: str = ""
    mode: SearchMode = SearchMode.LIKE


class QueryOptions(BaseModel):
    """Options accepted by every read operation of the data mapper."""
    order_by: Dict[str, SortDirection] = Field(default_factory=dict)
    limit: Optional[int] = Field(default=None, ge=0)
    offset: Optional[int] = Field(default=None, ge=0)
    select: List[str] = Field(default_factory=list)
    include: List[str] = Field(default_factory=list)
    search: Optional[SearchOptions] = None
    filter: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("order_by", mode="before")
    @classmethod
    def _upper_directions(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return {k: v.upper() if isinstance(v, str) else v for k, v in value.items()}
        return value


OptionsLike = Union[QueryOptions, Dict[str, Any], None]


def coerce_options(options: OptionsLike = None, **overrides: Any) -> QueryOptions:
    """
    Normalise *options* (model, dict or None) and apply keyword overrides.

    Example::

        coerce_options({"limit": 10}, offset=20)
        # QueryOptions(limit=10, offset=20, ...)
    """
    if options is None:
        data: Dict[str, Any] = {}
    elif isinstance(options, QueryOptions):
        data = options.model_dump(exclude_unset=True)
    else:
        data = dict(options)
    data.update(overrides)
    return QueryOptions.model_validate(data)
