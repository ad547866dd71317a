"""Exception hierarchy for Drive operations.

Every failure an operation can report inherits from DriveError and carries
the HTTP status and human-readable message returned to the caller. The
exception handler in main turns them into {"success": false, "message": ...}.

Exception Tree:
    DriveError (base)
    +-- ProfileNotFound        (404)
    +-- NotConnected           (400, no refresh token on file)
    +-- NoTargetFolder         (400, upload has nowhere to go)
    +-- TokenRefreshFailed     (500, provider rejected refresh or transport failed)
    +-- ContainmentDenied      (403, target outside the app folder tree)
    +-- RemoteOperationFailed  (500 by default, provider payload attached)
    +-- ConfigurationError     (500, server-side setting missing)
"""

from typing import Any


class DriveError(Exception):
    """Base exception for all Drive operations.

    Attributes:
        message: Text shown to the caller as-is.
        status_code: HTTP status for the response.
        error: Raw provider payload for diagnostics, or None.
    """

    status_code = 500

    def __init__(self, message: str, *, status_code: int | None = None, error: Any = None) -> None:
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.error = error
        super().__init__(message)


class ProfileNotFound(DriveError):
    status_code = 404

    def __init__(self, user_id: str) -> None:
        self.user_id = user_id
        super().__init__("Profile not found")


class NotConnected(DriveError):
    status_code = 400

    def __init__(self, user_id: str) -> None:
        self.user_id = user_id
        super().__init__("User not connected to Google Drive")


class NoTargetFolder(DriveError):
    status_code = 400

    def __init__(self) -> None:
        super().__init__("No target folder available for upload")


class TokenRefreshFailed(DriveError):
    """Raised when the refresh token cannot be exchanged for an access token.

    The connection should be treated as broken; nothing retries.
    """

    def __init__(self, error: Any = None) -> None:
        super().__init__("Failed to refresh token", error=error)


class ContainmentDenied(DriveError):
    """Raised when a file or folder is not provably inside the user's app folder.

    Attributes:
        file_id: The candidate id that was rejected.
    """

    status_code = 403

    def __init__(self, file_id: str, message: str = "file not allowed") -> None:
        self.file_id = file_id
        super().__init__(message)


class RemoteOperationFailed(DriveError):
    """Raised when a Drive API call returns a non-success status."""


class ConfigurationError(DriveError):
    """Raised when a required server-side setting is missing.

    Attributes:
        field: Name of the missing setting (never sent to the caller).
    """

    def __init__(self, field: str) -> None:
        self.field = field
        super().__init__("Server configuration error")
