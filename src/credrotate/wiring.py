"""Builds rotation collaborators from Settings."""

import logging
from pathlib import Path
from typing import Optional

from .config import Settings
from .exceptions import ConfigurationError
from .rotation.confirmation import ClickConfirmation, ConfirmationPort
from .rotation.directory import (AccountDirectory, DirectoryWriter,
                                 FileAccountDirectory, RestDirectoryClient)
from .rotation.orchestrator import BatchOrchestrator
from .rotation.platform import PlatformCredentialStore, RestPlatformClient
from .rotation.propagation import ServiceRestartTrigger
from .rotation.secret_provider import (GeneratedSecretProvider,
                                       PromptSecretProvider, SecretProvider)

logger = logging.getLogger(__name__)

SECRET_SOURCES = ("prompt", "generate")


def _token(value) -> Optional[str]:
    return value.get_secret_value() if value is not None else None


def build_directory(settings: Settings) -> tuple[AccountDirectory, Optional[DirectoryWriter]]:
    """Return the account directory and, if writable, its writer."""
    if settings.directory_url:
        client = RestDirectoryClient(
            settings.directory_url,
            token=_token(settings.directory_token),
            timeout=settings.request_timeout_seconds,
        )
        return client, client
    if settings.directory_inventory_path:
        logger.info(
            f"Using account inventory {settings.directory_inventory_path}; "
            f"set-new mode is unavailable without a directory endpoint"
        )
        return FileAccountDirectory(Path(settings.directory_inventory_path)), None
    raise ConfigurationError(
        "No directory configured: set CREDROTATE_DIRECTORY_URL or CREDROTATE_DIRECTORY_INVENTORY_PATH"
    )


def build_store(settings: Settings, writer: Optional[DirectoryWriter]) -> PlatformCredentialStore:
    if not settings.platform_url:
        raise ConfigurationError("No platform configured: set CREDROTATE_PLATFORM_URL")
    client = RestPlatformClient(
        settings.platform_url,
        token=_token(settings.platform_token),
        timeout=settings.request_timeout_seconds,
    )
    return PlatformCredentialStore(
        client, writer, verification_skew_seconds=settings.verification_skew_seconds
    )


def build_secret_provider(settings: Settings, source: str = "prompt") -> SecretProvider:
    if source == "prompt":
        return PromptSecretProvider(min_length=settings.min_secret_length)
    if source == "generate":
        return GeneratedSecretProvider(
            length=settings.generated_secret_length,
            min_length=settings.min_secret_length,
        )
    raise ConfigurationError(f"Unknown secret source: {source} (expected one of {SECRET_SOURCES})")


def build_propagation(settings: Settings) -> ServiceRestartTrigger:
    return ServiceRestartTrigger(
        settings.propagation_services,
        stop_command=settings.propagation_stop_command,
        start_command=settings.propagation_start_command,
        timeout=settings.propagation_timeout_seconds,
    )


def build_orchestrator(
    settings: Settings,
    secret_source: str = "prompt",
    confirmation: Optional[ConfirmationPort] = None,
    max_concurrency: Optional[int] = None,
) -> BatchOrchestrator:
    """Wire a BatchOrchestrator from settings.

    Args:
        settings: Loaded settings
        secret_source: "prompt" or "generate" for set-new mode
        confirmation: Confirmation port; defaults to an interactive prompt
        max_concurrency: Overrides settings.max_concurrency when given
    """
    directory, writer = build_directory(settings)
    return BatchOrchestrator(
        directory=directory,
        store=build_store(settings, writer),
        secret_provider=build_secret_provider(settings, secret_source),
        confirmation=confirmation or ClickConfirmation(),
        propagation=build_propagation(settings),
        max_concurrency=max_concurrency or settings.max_concurrency,
    )
