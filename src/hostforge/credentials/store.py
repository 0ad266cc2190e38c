"""Credential record persistence."""

import os
import secrets
import string
from datetime import datetime
from pathlib import Path

from pydantic import ValidationError as PydanticValidationError

from hostforge.credentials.models import Credential, TIMESTAMP_FORMAT
from hostforge.utils.errors import (
    AlreadyPersistedError,
    CorruptRecordError,
    ErrorContext,
    NotFoundError,
)
from hostforge.utils.logging import get_logger

logger = get_logger(__name__)

PASSWORD_ALPHABET = string.ascii_letters + string.digits
RECORD_MODE = 0o600


class CredentialStore:
    """Persists generated database credentials, one flat file per key.

    The record file is the only durable marker that this tool created the
    resource behind the key. Nothing is cached between calls.
    """

    def __init__(
        self,
        directory: str,
        engine: str = "mysql",
        user_prefix: str = "laravel_",
        password_length: int = 24,
        host: str = "localhost",
    ):
        """
        Initialize CredentialStore.

        Args:
            directory: Directory holding credential records
            engine: Database engine name, part of the record file name
            user_prefix: Fixed prefix of generated usernames
            password_length: Length of generated passwords
            host: Database host written to new credentials
        """
        self.directory = Path(directory)
        self.engine = engine
        self.user_prefix = user_prefix
        self.password_length = password_length
        self.host = host

    def path_for(self, key: str) -> Path:
        """Record file path for a resource key."""
        return self.directory / f".{key}_{self.engine}_credentials"

    def exists(self, key: str) -> bool:
        """Check whether a record exists for the key."""
        return self.path_for(key).is_file()

    def generate(self, site: str, resource: str) -> Credential:
        """
        Generate a fresh credential.

        The password only uses [A-Za-z0-9] so it survives unquoted in shell
        commands and .env files.

        Args:
            site: Site identifier
            resource: Database name

        Returns:
            New, not yet persisted Credential
        """
        username = f"{self.user_prefix}{1000 + secrets.randbelow(9000)}"
        password = "".join(
            secrets.choice(PASSWORD_ALPHABET) for _ in range(self.password_length)
        )
        return Credential(
            site=site,
            resource=resource,
            username=username,
            password=password,
            host=self.host,
        )

    def persist(self, key: str, credential: Credential) -> Path:
        """
        Write the record for a key exactly once.

        Args:
            key: Resource key
            credential: Credential to persist

        Returns:
            Path of the written record

        Raises:
            AlreadyPersistedError: If a record already exists for the key
        """
        path = self.path_for(key)
        self.directory.mkdir(parents=True, exist_ok=True)
        try:
            fd = os.open(str(path), os.O_WRONLY | os.O_CREAT | os.O_EXCL, RECORD_MODE)
        except FileExistsError:
            raise AlreadyPersistedError(
                f"Credential record already exists: {path}",
                context=ErrorContext(resource_id=key, operation="persist"),
                suggestions=[f"Load the existing record instead: cat {path}"],
            )

        with os.fdopen(fd, "w") as f:
            f.write(credential.to_record())
        os.chmod(path, RECORD_MODE)

        logger.info(f"Credentials saved to {path}", extra={'resource_id': key})
        return path

    def replace(self, key: str, credential: Credential) -> Path:
        """
        Atomically overwrite a stale record.

        Only called after the resource the credential describes has been
        created, so a failed creation never clobbers the old record.
        """
        path = self.path_for(key)
        self.directory.mkdir(parents=True, exist_ok=True)
        temp_path = path.with_name(path.name + ".tmp")

        fd = os.open(str(temp_path), os.O_WRONLY | os.O_CREAT | os.O_TRUNC, RECORD_MODE)
        with os.fdopen(fd, "w") as f:
            f.write(credential.to_record())
        os.chmod(temp_path, RECORD_MODE)
        temp_path.replace(path)

        logger.warning(f"Replaced stale credentials at {path}", extra={'resource_id': key})
        return path

    def load(self, key: str) -> Credential:
        """
        Load the record for a key.

        Raises:
            NotFoundError: If no record exists
            CorruptRecordError: If required fields are missing or invalid
        """
        path = self.path_for(key)
        try:
            text = path.read_text()
        except FileNotFoundError:
            raise NotFoundError(
                f"No credential record for {key}: {path}",
                context=ErrorContext(resource_id=key, operation="load"),
            )

        values = Credential.parse_record(text)
        missing = Credential.missing_fields(values)
        if missing:
            raise CorruptRecordError(
                f"Credential record {path} is missing: {', '.join(missing)}",
                context=ErrorContext(resource_id=key, operation="load"),
                suggestions=[f"Restore {path} from backup or recreate the site database"],
            )

        try:
            values["created_at"] = datetime.strptime(values["created_at"], TIMESTAMP_FORMAT)
            return Credential(**values)
        except (ValueError, PydanticValidationError) as e:
            raise CorruptRecordError(
                f"Credential record {path} could not be parsed",
                context=ErrorContext(resource_id=key, operation="load"),
                cause=e,
            )
