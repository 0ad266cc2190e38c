"""Database engine backends."""

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional

from hostforge.utils.commands import CommandRunner, CommandResult
from hostforge.utils.errors import ValidationError, PrereqMissingError, ErrorContext
from hostforge.utils.logging import get_logger

logger = get_logger(__name__)

IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z0-9_]+$")
PASSWORD_PATTERN = re.compile(r"^[A-Za-z0-9]+$")


def quote_identifier(value: str) -> str:
    """Reject anything that is not a plain identifier."""
    if not IDENTIFIER_PATTERN.match(value):
        raise ValidationError(f"Unsafe database identifier: {value!r}")
    return value


def quote_password(value: str) -> str:
    if not PASSWORD_PATTERN.match(value):
        raise ValidationError("Database passwords must be alphanumeric")
    return value


@dataclass
class DatabaseProbe:
    """Backend view of one site database."""
    name: str
    exists: bool
    users: List[str] = field(default_factory=list)


class DatabaseBackend(ABC):
    """Polymorphic database engine interface.

    Every probe returns a typed value; query output parsing stays inside
    the concrete backend.
    """

    engine: str = ""
    client: str = ""
    package: str = ""
    service: str = ""

    def __init__(self, runner: CommandRunner):
        self.runner = runner

    def is_installed(self) -> bool:
        return self.runner.which(self.client) is not None

    def require_installed(self) -> None:
        if not self.is_installed():
            raise PrereqMissingError(
                f"{self.engine} client '{self.client}' is not installed",
                context=ErrorContext(resource_type=self.engine, operation="prereq"),
                suggestions=["Run `hostforge provision` first"],
            )

    @abstractmethod
    def probe_database(self, name: str, user_prefix: str) -> DatabaseProbe:
        """Existence of the database and the prefixed users bound to it.

        Raises ApplyFailedError when the engine cannot be queried; an
        unanswered probe is never reported as a missing database.
        """
        pass

    @abstractmethod
    def user_exists(self, username: str, host: str = "localhost") -> bool:
        pass

    @abstractmethod
    def has_privileges(self, username: str, database: str, host: str = "localhost") -> bool:
        pass

    @abstractmethod
    def create_database(self, name: str) -> None:
        """Create a new database; fails when it already exists."""
        pass

    @abstractmethod
    def create_user(self, username: str, password: str, host: str = "localhost") -> None:
        """Create a new user; fails when the user already exists."""
        pass

    @abstractmethod
    def grant_privileges(self, username: str, database: str, host: str = "localhost") -> None:
        pass

    @abstractmethod
    def drop_database(self, name: str) -> None:
        pass

    @abstractmethod
    def drop_user(self, username: str, host: str = "localhost") -> None:
        pass

    @abstractmethod
    def remediation_commands(self, database: str, users: List[str], host: str = "localhost") -> List[str]:
        """Literal commands an operator runs to drop a conflicting database."""
        pass

    def secure_installation(self) -> None:
        """Harden a fresh server install."""
        return None


class MySQLBackend(DatabaseBackend):
    """MySQL / MariaDB through the `mysql` client (socket auth as root)."""

    engine = "mysql"
    client = "mysql"
    package = "mysql-server"
    service = "mysql"

    def _query(self, sql: str) -> CommandResult:
        return self.runner.check(["mysql", "-N", "-B", "-e", sql])

    def _execute(self, sql: str) -> None:
        self.runner.check(["mysql", "-e", sql])

    def probe_database(self, name: str, user_prefix: str) -> DatabaseProbe:
        db = quote_identifier(name)
        prefix = quote_identifier(user_prefix).replace("_", "\\_")
        exists = self._query(
            f"SELECT SCHEMA_NAME FROM INFORMATION_SCHEMA.SCHEMATA WHERE SCHEMA_NAME='{db}'"
        )
        users = self._query(
            f"SELECT DISTINCT User FROM mysql.db WHERE Db='{db}' "
            f"AND User LIKE '{prefix}%'"
        )
        return DatabaseProbe(
            name=name,
            exists=db in exists.lines(),
            users=users.lines(),
        )

    def user_exists(self, username: str, host: str = "localhost") -> bool:
        result = self._query(
            f"SELECT User FROM mysql.user WHERE User='{quote_identifier(username)}' AND Host='{host}'"
        )
        return username in result.lines()

    def has_privileges(self, username: str, database: str, host: str = "localhost") -> bool:
        result = self._query(
            f"SELECT User FROM mysql.db WHERE Db='{quote_identifier(database)}' "
            f"AND User='{quote_identifier(username)}' AND Host='{host}'"
        )
        return username in result.lines()

    def create_database(self, name: str) -> None:
        self._execute(
            f"CREATE DATABASE {quote_identifier(name)} "
            f"CHARACTER SET utf8mb4 COLLATE utf8mb4_unicode_ci;"
        )

    def create_user(self, username: str, password: str, host: str = "localhost") -> None:
        user = quote_identifier(username)
        secret = quote_password(password)
        self._execute(f"CREATE USER '{user}'@'{host}' IDENTIFIED BY '{secret}';")

    def grant_privileges(self, username: str, database: str, host: str = "localhost") -> None:
        self._execute(
            f"GRANT ALL PRIVILEGES ON {quote_identifier(database)}.* "
            f"TO '{quote_identifier(username)}'@'{host}'; FLUSH PRIVILEGES;"
        )

    def drop_database(self, name: str) -> None:
        self._execute(f"DROP DATABASE IF EXISTS {quote_identifier(name)};")

    def drop_user(self, username: str, host: str = "localhost") -> None:
        self._execute(f"DROP USER IF EXISTS '{quote_identifier(username)}'@'{host}';")

    def remediation_commands(self, database: str, users: List[str], host: str = "localhost") -> List[str]:
        statements = [f"DROP DATABASE {database};"]
        statements += [f"DROP USER '{user}'@'{host}';" for user in users]
        return [f'mysql -e "{" ".join(statements)}"']

    def secure_installation(self) -> None:
        for sql in (
            "DELETE FROM mysql.user WHERE User='';",
            "DELETE FROM mysql.user WHERE User='root' AND Host NOT IN ('localhost', '127.0.0.1', '::1');",
            "DROP DATABASE IF EXISTS test;",
            "DELETE FROM mysql.db WHERE Db='test' OR Db='test\\_%';",
            "FLUSH PRIVILEGES;",
        ):
            self._execute(sql)


class PostgresBackend(DatabaseBackend):
    """PostgreSQL through `psql` as the postgres superuser."""

    engine = "postgresql"
    client = "psql"
    package = "postgresql"
    service = "postgresql"

    def __init__(self, runner: CommandRunner, superuser: str = "postgres"):
        super().__init__(runner)
        self.superuser = superuser

    def _query(self, sql: str) -> CommandResult:
        return self.runner.check(["psql", "-tA", "-c", sql], user=self.superuser)

    def _execute(self, sql: str) -> None:
        self.runner.check(["psql", "-v", "ON_ERROR_STOP=1", "-c", sql], user=self.superuser)

    def probe_database(self, name: str, user_prefix: str) -> DatabaseProbe:
        db = quote_identifier(name)
        exists = self._query(f"SELECT datname FROM pg_database WHERE datname='{db}'")
        users = self._query(
            "SELECT r.rolname FROM pg_database d JOIN pg_roles r ON r.oid = d.datdba "
            f"WHERE d.datname='{db}' AND r.rolname LIKE '{quote_identifier(user_prefix)}%'"
        )
        return DatabaseProbe(
            name=name,
            exists=db in exists.lines(),
            users=users.lines(),
        )

    def user_exists(self, username: str, host: str = "localhost") -> bool:
        result = self._query(
            f"SELECT rolname FROM pg_roles WHERE rolname='{quote_identifier(username)}'"
        )
        return username in result.lines()

    def has_privileges(self, username: str, database: str, host: str = "localhost") -> bool:
        result = self._query(
            "SELECT r.rolname FROM pg_database d JOIN pg_roles r ON r.oid = d.datdba "
            f"WHERE d.datname='{quote_identifier(database)}' AND r.rolname='{quote_identifier(username)}'"
        )
        return username in result.lines()

    def create_database(self, name: str) -> None:
        self._execute(f"CREATE DATABASE {quote_identifier(name)} ENCODING 'UTF8'")

    def create_user(self, username: str, password: str, host: str = "localhost") -> None:
        user = quote_identifier(username)
        secret = quote_password(password)
        self._execute(f"CREATE ROLE {user} WITH LOGIN PASSWORD '{secret}'")

    def grant_privileges(self, username: str, database: str, host: str = "localhost") -> None:
        db = quote_identifier(database)
        user = quote_identifier(username)
        self._execute(f"ALTER DATABASE {db} OWNER TO {user}")
        self._execute(f"GRANT ALL PRIVILEGES ON DATABASE {db} TO {user}")

    def drop_database(self, name: str) -> None:
        self._execute(f"DROP DATABASE IF EXISTS {quote_identifier(name)}")

    def drop_user(self, username: str, host: str = "localhost") -> None:
        self._execute(f"DROP ROLE IF EXISTS {quote_identifier(username)}")

    def remediation_commands(self, database: str, users: List[str], host: str = "localhost") -> List[str]:
        commands = [f'sudo -u {self.superuser} psql -c "DROP DATABASE {database}"']
        commands += [f'sudo -u {self.superuser} psql -c "DROP ROLE {user}"' for user in users]
        return [" && ".join(commands)]


def create_database_backend(engine: str, runner: CommandRunner) -> DatabaseBackend:
    """Backend for a configured engine name."""
    backends = {
        MySQLBackend.engine: MySQLBackend,
        PostgresBackend.engine: PostgresBackend,
    }
    backend_cls: Optional[type] = backends.get(engine)
    if backend_cls is None:
        raise ValidationError(f"Unsupported database engine: {engine}")
    return backend_cls(runner)
