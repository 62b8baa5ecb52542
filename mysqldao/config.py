from __future__ import annotations

import ipaddress
import os
import re
from dataclasses import dataclass, field, replace
from typing import Any, Mapping

from pymysql.constants import CLIENT
from sqlalchemy.engine import URL

from .errors import ConfigurationError

_HOSTNAME_RE = re.compile(
    r"^(?=.{1,253}$)[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?"
    r"(?:\.[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?)*\.?$"
)

# PyMySQL defaults, minus FOUND_ROWS which SQLAlchemy's MySQL dialect would
# otherwise add: affected rows must report changed rows, not matched rows.
_BASE_CLIENT_FLAGS = CLIENT.MULTI_RESULTS

_UTC_ALIASES = {"utc", "z", "+00:00"}


def _is_valid_host(host: Any) -> bool:
    """Hostname, IPv4 or IPv6 address."""
    if not isinstance(host, str):
        return False
    if _HOSTNAME_RE.match(host):
        return True
    try:
        ipaddress.ip_address(host.strip("[]"))
    except ValueError:
        return False
    return True


def _is_positive_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


@dataclass
class PoolConfig:
    """
    Connection settings for one MySQL connection pool.

    ``host`` may be a list of hosts for read replicas; use ``expand_hosts()``
    to get one single-host config per replica.
    """
    host: str | list[str]
    user: str
    password: str
    database: str
    connection_limit: int
    port: int = 3306
    multiple_statements: bool = False
    timezone: str | None = None

    def __post_init__(self) -> None:
        """Validate configuration parameters."""
        hosts = self.host if isinstance(self.host, (list, tuple)) else [self.host]
        if not hosts:
            raise ConfigurationError("host must name at least one host")
        for host in hosts:
            if not _is_valid_host(host):
                raise ConfigurationError(f"host {host!r} is not a valid hostname")
        if isinstance(self.host, tuple):
            self.host = list(self.host)

        if not isinstance(self.user, str) or not self.user:
            raise ConfigurationError("user is required")
        if len(self.user) > 32:
            raise ConfigurationError("user exceeds MySQL's 32-character limit")
        if not isinstance(self.password, str) or not self.password:
            raise ConfigurationError("password is required")
        if not isinstance(self.database, str) or not self.database:
            raise ConfigurationError("database is required")
        if not _is_positive_int(self.connection_limit):
            raise ConfigurationError(
                f"connection_limit must be a positive integer, got {self.connection_limit!r}"
            )
        if not _is_positive_int(self.port):
            raise ConfigurationError(f"port must be a positive integer, got {self.port!r}")

    @classmethod
    def from_mapping(cls, obj: Mapping[str, Any]) -> "PoolConfig":
        """
        Build a config from a plain mapping.

        Accepts both the camelCase keys used by JSON/YAML configuration files
        (``connectionLimit``, ``multipleStatements``) and snake_case keys.
        """
        if not isinstance(obj, Mapping):
            raise ConfigurationError(f"pool config must be a mapping, got {type(obj).__name__}")

        def pick(*keys: str, default: Any = None) -> Any:
            for key in keys:
                if key in obj:
                    return obj[key]
            return default

        kwargs: dict[str, Any] = {
            "host": pick("host"),
            "user": pick("user"),
            "password": pick("password"),
            "database": pick("database"),
            "connection_limit": pick("connection_limit", "connectionLimit"),
        }
        port = pick("port")
        if port is not None:
            kwargs["port"] = port
        multiple_statements = pick("multiple_statements", "multipleStatements")
        if multiple_statements is not None:
            kwargs["multiple_statements"] = bool(multiple_statements)
        timezone = pick("timezone")
        if timezone is not None:
            kwargs["timezone"] = timezone
        return cls(**kwargs)

    @property
    def hosts(self) -> list[str]:
        return list(self.host) if isinstance(self.host, list) else [self.host]

    def expand_hosts(self) -> list["PoolConfig"]:
        """Return one single-host config per configured host."""
        return [replace(self, host=host) for host in self.hosts]

    def engine_url(self) -> URL:
        if isinstance(self.host, list):
            raise ConfigurationError("engine_url() requires a single host; call expand_hosts() first")
        return URL.create(
            "mysql+pymysql",
            username=self.user,
            password=self.password,
            host=self.host.strip("[]"),
            port=self.port,
            database=self.database,
        )

    def engine_kwargs(self) -> dict[str, Any]:
        """Keyword arguments for ``sqlalchemy.create_engine``."""
        client_flag = _BASE_CLIENT_FLAGS
        if self.multiple_statements:
            client_flag |= CLIENT.MULTI_STATEMENTS

        connect_args: dict[str, Any] = {"client_flag": client_flag}
        time_zone = self.session_time_zone()
        if time_zone is not None:
            connect_args["init_command"] = f"SET time_zone = '{time_zone}'"

        return {
            "pool_size": self.connection_limit,
            "max_overflow": 0,
            "pool_pre_ping": True,
            "connect_args": connect_args,
        }

    def session_time_zone(self) -> str | None:
        """MySQL ``time_zone`` value for new sessions, or None to keep the server default."""
        if self.timezone is None:
            return None
        tz = self.timezone.strip()
        if tz.lower() == "local":
            return None
        if tz.lower() in _UTC_ALIASES:
            return "+00:00"
        if "'" in tz:
            raise ConfigurationError(f"timezone {self.timezone!r} is not a valid time zone name")
        return tz


@dataclass
class DbConfig:
    """
    Write pool configuration plus optional read pool configuration.

    A missing read config means reads are served by the write pool.
    """
    write: PoolConfig
    read: PoolConfig | None = field(default=None)

    def __post_init__(self) -> None:
        if not isinstance(self.write, PoolConfig):
            raise ConfigurationError("write pool configuration is required")
        if self.read is not None and not isinstance(self.read, PoolConfig):
            raise ConfigurationError("read pool configuration must be a PoolConfig")
        if isinstance(self.write.host, list):
            if len(self.write.host) != 1:
                raise ConfigurationError("write pool configuration must name exactly one host")
            self.write.host = self.write.host[0]

    @classmethod
    def from_mapping(cls, obj: Mapping[str, Any]) -> "DbConfig":
        if not isinstance(obj, Mapping) or not obj.get("write"):
            raise ConfigurationError("database configuration requires a 'write' section")
        read = obj.get("read")
        return cls(
            write=PoolConfig.from_mapping(obj["write"]),
            read=PoolConfig.from_mapping(read) if read else None,
        )

    @classmethod
    def from_env(
        cls,
        environ: Mapping[str, str] | None = None,
        prefix: str = "MYSQLDAO_DB",
    ) -> "DbConfig":
        """
        Load configuration from environment variables.

        Reads ``<prefix>_WRITE_HOST``, ``_USER``, ``_PASSWORD``, ``_DATABASE``,
        ``_CONNECTION_LIMIT`` and the optional ``_PORT``,
        ``_MULTIPLE_STATEMENTS`` and ``_TIMEZONE``; the same names with
        ``READ`` configure the read pool, whose host may be a comma-separated
        list of replicas.
        """
        env = os.environ if environ is None else environ
        write = _pool_mapping_from_env(env, f"{prefix}_WRITE")
        if write is None:
            raise ConfigurationError(f"{prefix}_WRITE_HOST is not set")
        read = _pool_mapping_from_env(env, f"{prefix}_READ")
        return cls.from_mapping({"write": write, "read": read})


def _pool_mapping_from_env(env: Mapping[str, str], prefix: str) -> dict[str, Any] | None:
    host = env.get(f"{prefix}_HOST")
    if not host:
        return None

    hosts = [h.strip() for h in host.split(",") if h.strip()]
    obj: dict[str, Any] = {
        "host": hosts if len(hosts) > 1 else hosts[0],
        "user": env.get(f"{prefix}_USER"),
        "password": env.get(f"{prefix}_PASSWORD"),
        "database": env.get(f"{prefix}_DATABASE"),
        "connection_limit": _env_int(env, f"{prefix}_CONNECTION_LIMIT"),
    }
    port = _env_int(env, f"{prefix}_PORT")
    if port is not None:
        obj["port"] = port
    multiple_statements = env.get(f"{prefix}_MULTIPLE_STATEMENTS")
    if multiple_statements is not None:
        obj["multiple_statements"] = multiple_statements.strip().lower() in ("1", "true", "yes", "on")
    timezone = env.get(f"{prefix}_TIMEZONE")
    if timezone:
        obj["timezone"] = timezone
    return obj


def _env_int(env: Mapping[str, str], key: str) -> int | None:
    raw = env.get(key)
    if raw is None or raw == "":
        return None
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{key} must be an integer, got {raw!r}") from exc
