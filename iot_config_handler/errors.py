"""
Error Handling for the Config Handler
=====================================

This module defines the error taxonomy of the tool and the classification
helpers the command line front end uses to report failures. None of these
errors are retried: every failure aborts the run with a descriptive message
and a suggested corrective action.

Features:
- Exception hierarchy for template, transport and local write failures
- Error classification into categories
- Suggested corrective actions per category
- Transport phases so SSH failures name where they happened
"""

from enum import Enum
from pathlib import Path
from typing import Optional, Union


class ErrorCategory(Enum):
    """Error category classification."""
    TEMPLATE = "template"
    NO_TEMPLATES = "no_templates"
    NETWORK = "network"
    AUTHENTICATION = "authentication"
    TIMEOUT = "timeout"
    REMOTE_COMMAND = "remote_command"
    STORAGE = "storage"
    VALIDATION = "validation"
    UNKNOWN = "unknown"


class TransportPhase(Enum):
    """Step of a remote operation during which a transport error happened."""
    CONNECT = "connect"
    AUTHENTICATE = "authenticate"
    UPLOAD = "upload"
    EXECUTE = "execute"
    DOWNLOAD = "download"


class ConfigHandlerError(Exception):
    """Base class for all errors reported to the user."""
    category = ErrorCategory.UNKNOWN


class InvalidTemplate(ConfigHandlerError):
    """A template file is malformed or misses a required field."""
    category = ErrorCategory.TEMPLATE

    def __init__(self, source: Union[str, Path], reason: str):
        self.source = Path(source).name
        self.reason = reason
        super().__init__(f"Invalid template '{self.source}': {reason}")


class NoTemplatesFound(ConfigHandlerError):
    """The template folder is missing or holds no templates."""
    category = ErrorCategory.NO_TEMPLATES

    def __init__(self, folder: Union[str, Path], reason: str = "no XML templates found"):
        self.folder = str(folder)
        self.reason = reason
        super().__init__(f"No templates found in '{self.folder}': {reason}")


class TransportFailure(ConfigHandlerError):
    """An SSH connect, authentication, copy or command failed."""

    def __init__(self, host: str, phase: TransportPhase, message: str,
                 category: Optional[ErrorCategory] = None):
        self.host = host
        self.phase = phase
        self.message = message
        self.category = category or _phase_category(phase)
        super().__init__(f"SSH {phase.value} failed for {host}: {message}")


class WriteFailure(ConfigHandlerError):
    """A local file could not be read or written."""
    category = ErrorCategory.STORAGE

    def __init__(self, path: Union[str, Path], message: str, operation: str = "write"):
        self.path = str(path)
        self.message = message
        self.operation = operation
        super().__init__(f"Cannot {operation} '{self.path}': {message}")


class OptionError(ConfigHandlerError):
    """A command line or settings value is invalid."""
    category = ErrorCategory.VALIDATION


def _phase_category(phase: TransportPhase) -> ErrorCategory:
    if phase == TransportPhase.AUTHENTICATE:
        return ErrorCategory.AUTHENTICATION
    if phase == TransportPhase.EXECUTE:
        return ErrorCategory.REMOTE_COMMAND
    return ErrorCategory.NETWORK


class ErrorClassifier:
    """Classifies errors and suggests corrective actions."""

    SUGGESTIONS = {
        ErrorCategory.TEMPLATE: "Fix the template file named above; see the template schema in the README",
        ErrorCategory.NO_TEMPLATES: "Check the --folder path and that it contains *.xml templates",
        ErrorCategory.NETWORK: "Check network connectivity and that the device is reachable on its SSH port",
        ErrorCategory.AUTHENTICATION: "Verify the IOT2050 username and password",
        ErrorCategory.TIMEOUT: "Check device responsiveness or increase SSH_TIMEOUT",
        ErrorCategory.REMOTE_COMMAND: "Check the remote service and command output on the device",
        ErrorCategory.STORAGE: "Check disk space and file permissions",
        ErrorCategory.VALIDATION: "Verify the command line values and .env settings",
        ErrorCategory.UNKNOWN: "Review the error details and rerun with --verbose",
    }

    @staticmethod
    def classify_error(exception: Exception) -> ErrorCategory:
        """Classify error into a category."""
        if isinstance(exception, ConfigHandlerError):
            return exception.category
        return ErrorCategory.UNKNOWN

    @classmethod
    def suggest_action(cls, exception: Exception) -> str:
        """Suggest corrective action for error."""
        return cls.SUGGESTIONS.get(cls.classify_error(exception), "Contact system administrator")


class OperationAborted(ConfigHandlerError):
    """The user declined to continue at an interactive prompt."""
    category = ErrorCategory.VALIDATION
