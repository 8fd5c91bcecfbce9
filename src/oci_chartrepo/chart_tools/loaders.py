"""Loaders for the whitelist and docker credential files."""

from __future__ import annotations

import base64
import binascii
import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

import aiofiles
from pydantic import BaseModel, Field, ValidationError

from .config import RegistryOptions
from .exceptions import ConfigurationError
from .models import WhiteList

logger = logging.getLogger(__name__)


class DockerAuthEntry(BaseModel):
    """One ``auths`` entry of a dockerconfigjson document."""

    username: Optional[str] = None
    password: Optional[str] = None
    email: Optional[str] = None
    auth: Optional[str] = None

    def credentials(self) -> Optional[Tuple[Optional[str], Optional[str]]]:
        """Return (username, password), decoding ``auth`` when they are absent."""
        if self.username or self.password:
            return self.username, self.password
        if not self.auth:
            return None
        try:
            decoded = base64.b64decode(self.auth).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as e:
            raise ConfigurationError(f"Invalid auth value in docker config: {e}") from e
        username, sep, password = decoded.partition(":")
        if not sep:
            raise ConfigurationError("Docker config auth value is not user:password")
        return username, password


class DockerConfig(BaseModel):
    auths: Dict[str, DockerAuthEntry] = Field(default_factory=dict)


async def _read_json(path: Path, what: str) -> Optional[Any]:
    if not path.exists():
        logger.warning(f"{what} file {path} not found")
        return None

    logger.info(f"Loading {what} from {path}")
    async with aiofiles.open(path, "r", encoding="utf-8") as f:
        body = await f.read()
    try:
        return json.loads(body)
    except ValueError as e:
        raise ConfigurationError(f"Invalid JSON in {what} file {path}: {e}") from e


async def load_whitelist(path: Union[str, Path]) -> WhiteList:
    """Load the inclusion policy file.

    Args:
        path: Whitelist JSON file

    Returns:
        The whitelist, empty (open enumeration) when the file does not exist

    Raises:
        ConfigurationError: If the file is not a valid whitelist document
    """
    data = await _read_json(Path(path), "whitelist")
    if data is None:
        return WhiteList()
    try:
        whitelist = WhiteList.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid whitelist {path}: {e}") from e

    logger.info(
        f"Loaded whitelist with {len(whitelist.harbor)} harbor keys, "
        f"{len(whitelist.registry)} registry keys and {len(whitelist.strict)} strict targets"
    )
    return whitelist


async def load_docker_credentials(
    path: Union[str, Path], options: RegistryOptions
) -> RegistryOptions:
    """Fill registry credentials from a dockerconfigjson file.

    The first ``auths`` entry whose host equals the configured registry host
    supplies the credentials. Credentials already present on ``options`` are
    kept.

    Raises:
        ConfigurationError: If the file is not a valid docker config
    """
    if options.has_credentials:
        logger.info("Registry credentials configured explicitly, not reading docker config")
        return options

    data = await _read_json(Path(path), "docker config")
    if data is None:
        return options
    try:
        config = DockerConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid docker config {path}: {e}") from e

    for registry, entry in config.auths.items():
        if not options.matches_host(registry):
            continue
        credentials = entry.credentials()
        if credentials is None:
            continue
        username, password = credentials
        logger.info(f"Using credentials of user {username} for {registry}")
        return options.model_copy(update={"username": username, "password": password})

    logger.warning(f"No credentials for {options.host} in docker config {path}")
    return options
