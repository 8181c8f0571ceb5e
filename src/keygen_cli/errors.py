from __future__ import annotations


class KeygenError(Exception):
    """Base class for every failure raised by keygen-cli."""


class DecodeError(KeygenError):
    """Response envelope has an unusable shape."""


class TransportError(KeygenError):
    """Network, timeout or connection problems. Never retried."""


class SignatureError(TransportError):
    """Signed response failed verification."""


class APIError(KeygenError):
    """The service answered with a 4xx/5xx status."""

    def __init__(
        self,
        status: int,
        *,
        title: str = "",
        detail: str = "",
        code: str = "",
        body: str = "",
    ) -> None:
        self.status = status
        self.title = title
        self.detail = detail
        self.code = code
        self.body = body
        if title or detail or code:
            message = f"API error {status}: {title} - {detail} (code: {code})"
        else:
            message = f"API error {status}: {body}"
        super().__init__(message)

    @property
    def is_auth_error(self) -> bool:
        return self.status in (401, 403)


class ConfigError(KeygenError):
    """Profile store cannot be read or written."""


class Misconfigured(ConfigError):
    """A required credential field is empty."""

    def __init__(self, field: str, profile: str, env_var: str) -> None:
        self.field = field
        self.profile = profile
        self.env_var = env_var
        super().__init__(
            f"{field} not configured (set {env_var} or run "
            f"'keygen profile edit {profile}' / 'keygen login --profile {profile}')"
        )


class NotFound(KeygenError):
    """Named profile (or looked-up record) does not exist."""


class Conflict(KeygenError):
    """Named profile already exists."""


class RefreshFailed(KeygenError):
    """Token had expired and exchanging the stored credentials for a new one failed."""

    def __init__(self, profile: str, cause: Exception) -> None:
        self.profile = profile
        self.cause = cause
        super().__init__(f"token expired and refresh failed for profile {profile!r}: {cause}")
