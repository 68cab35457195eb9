"""Managed-account rotation: directory, secrets, platform store, orchestration.

Rotates service-account passwords for accounts registered with the platform,
keeping the directory (source of truth) and the platform credential cache in
step, then restarting dependent services once per batch.
"""

from .confirmation import (ClickConfirmation, ConfirmationPort,
                           ScriptedConfirmation)
from .directory import (AccountDirectory, DirectoryWriter,
                        FileAccountDirectory, RestDirectoryClient,
                        StaticAccountDirectory)
from .models import (BatchSummary, ManagedAccount, PropagationStatus,
                     RotationMode, RotationOutcome, RotationRequest,
                     RotationState)
from .orchestrator import BatchOrchestrator
from .platform import (PlatformClient, PlatformCredentialState,
                       PlatformCredentialStore, RestPlatformClient)
from .propagation import PropagationTrigger, ServiceRestartTrigger
from .secret_provider import (GeneratedSecretProvider, PromptSecretProvider,
                              Secret, SecretProvider, StaticSecretProvider)
from .state_machine import RotationStateMachine

__all__ = [
    # Data model
    "ManagedAccount",
    "RotationMode",
    "RotationRequest",
    "RotationState",
    "RotationOutcome",
    "BatchSummary",
    "PropagationStatus",
    # Directory
    "AccountDirectory",
    "DirectoryWriter",
    "StaticAccountDirectory",
    "FileAccountDirectory",
    "RestDirectoryClient",
    # Secrets
    "Secret",
    "SecretProvider",
    "StaticSecretProvider",
    "GeneratedSecretProvider",
    "PromptSecretProvider",
    # Platform
    "PlatformClient",
    "PlatformCredentialState",
    "PlatformCredentialStore",
    "RestPlatformClient",
    # Propagation
    "PropagationTrigger",
    "ServiceRestartTrigger",
    # Confirmation
    "ConfirmationPort",
    "ClickConfirmation",
    "ScriptedConfirmation",
    # Orchestration
    "RotationStateMachine",
    "BatchOrchestrator",
]
