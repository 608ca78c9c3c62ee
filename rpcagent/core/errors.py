"""Domain-specific errors for rpcagent."""

from __future__ import annotations


class ExitStatus:
    """Process exit codes reported by the CLI."""

    SUCCESS = 0
    INCORRECT_PERMISSIONS = 1
    AMT_NOT_DETECTED = 3
    MISSING_OR_INCORRECT_URL = 20
    MISSING_OR_INCORRECT_PROFILE = 21
    SERVER_CERTIFICATE_VERIFICATION_FAILED = 22
    MISSING_OR_INCORRECT_PASSWORD = 23
    INCORRECT_COMMAND_LINE_PARAMETERS = 28
    RPS_AUTHENTICATION_FAILED = 70
    AMT_CONNECTION_FAILED = 71
    AMT_AUTHENTICATION_FAILED = 100
    WSMAN_MESSAGE_ERROR = 101
    ACTIVATION_FAILED = 102


class RpcError(Exception):
    """Base error for rpcagent."""

    status = ExitStatus.INCORRECT_COMMAND_LINE_PARAMETERS


class InvalidParametersError(RpcError):
    """Raised when command line flags do not describe a runnable mode."""


class MissingOrIncorrectURLError(RpcError):
    """Raised when remote provisioning has no usable server URL."""

    status = ExitStatus.MISSING_OR_INCORRECT_URL


class MissingOrIncorrectProfileError(RpcError):
    """Raised when remote activation has no profile name."""

    status = ExitStatus.MISSING_OR_INCORRECT_PROFILE


class ConfigLoadError(RpcError):
    """Raised when reading a configuration file fails."""

    status = ExitStatus.MISSING_OR_INCORRECT_PROFILE


class ConfigValidationError(RpcError):
    """Raised when a configuration file does not conform to schema or semantics."""

    status = ExitStatus.MISSING_OR_INCORRECT_PROFILE


class TransportError(RpcError):
    """Base transport error."""

    status = ExitStatus.AMT_CONNECTION_FAILED


class TransportConnectError(TransportError):
    """Raised when the LMS endpoint cannot be resolved or dialed."""


class TransportSendError(TransportError):
    """Raised when writing a payload fails."""


class TransportReceiveError(TransportError):
    """Raised when reading fails for a reason other than the read deadline."""


class NotConnectedError(TransportError):
    """Raised when closing a channel that never connected."""


class CapabilityDecodeError(RpcError):
    """Base for malformed version/SKU input. The message is the display label."""


class InvalidVersionFormatError(CapabilityDecodeError):
    def __init__(self) -> None:
        super().__init__("Invalid AMT version format")


class InvalidVersionError(CapabilityDecodeError):
    def __init__(self) -> None:
        super().__init__("Invalid AMT version")


class InvalidSKUError(CapabilityDecodeError):
    def __init__(self) -> None:
        super().__init__("Invalid SKU")


class AMTNotDetectedError(RpcError):
    """Raised when the management engine device is missing or refuses the client."""

    status = ExitStatus.AMT_NOT_DETECTED


class AMTCommandError(RpcError):
    """Raised when a host interface command returns a non-success status."""

    status = ExitStatus.AMT_CONNECTION_FAILED


class WsmanError(RpcError):
    """Raised on WSMAN HTTP failures and SOAP faults."""

    status = ExitStatus.WSMAN_MESSAGE_ERROR


class ActivationError(RpcError):
    """Raised when local activation is rejected by the device."""

    status = ExitStatus.ACTIVATION_FAILED


class PasswordReadError(RpcError):
    """Raised when the operator declines or fails to enter a password."""

    status = ExitStatus.MISSING_OR_INCORRECT_PASSWORD


class MissingOrIncorrectPasswordError(RpcError):
    """Raised when an operator password is required but unavailable."""

    status = ExitStatus.MISSING_OR_INCORRECT_PASSWORD


class CredentialResolutionError(RpcError):
    """Raised when the device-local system account cannot be fetched."""

    status = ExitStatus.AMT_AUTHENTICATION_FAILED


class ServerCertificateVerificationError(RpcError):
    """Raised when the provisioning server certificate is not trusted."""

    status = ExitStatus.SERVER_CERTIFICATE_VERIFICATION_FAILED


class RemoteExecutionError(RpcError):
    """Raised when the provisioning server session fails or reports an error."""

    status = ExitStatus.RPS_AUTHENTICATION_FAILED


class AccessDeniedError(RpcError):
    """Raised when the management engine device cannot be opened for lack of privileges."""

    status = ExitStatus.INCORRECT_PERMISSIONS
