"""Auth error taxonomy.

Every error the session layer can report is an AuthError carrying a stable
machine code, a human message and the HTTP status the API layer answers with.
Unexpected failures (database down, crypto errors) are not AuthErrors and end
up in the generic 500 handler.
"""

from __future__ import annotations


class AuthError(Exception):
    code = "AUTH_ERROR"
    message = "Authentication error."
    status_code = 400

    def __init__(self, message: str | None = None, *, code: str | None = None, status_code: int | None = None):
        if message is not None:
            self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)


class DuplicateIdentity(AuthError):
    status_code = 409

    @classmethod
    def email(cls) -> "DuplicateIdentity":
        return cls("An account with this email already exists.", code="EMAIL_ALREADY_EXISTS")

    @classmethod
    def username(cls) -> "DuplicateIdentity":
        return cls("This username is already taken.", code="USERNAME_ALREADY_EXISTS")


class InvalidCredentials(AuthError):
    code = "INVALID_CREDENTIALS"
    message = "Invalid email or password."
    status_code = 401


class OAuthAccountConflict(AuthError):
    code = "OAUTH_ACCOUNT"
    status_code = 400

    _LABELS = {"google": "Google", "apple": "Apple"}

    def __init__(self, provider: str):
        self.provider = provider
        label = self._LABELS.get(provider, "social")
        super().__init__(f"This account uses {label} sign-in. Use the matching button to log in.")


class OAuthVerificationFailed(AuthError):
    status_code = 401

    def __init__(self, provider: str):
        self.provider = provider
        super().__init__(
            f"{provider.capitalize()} verification failed. Please try again.",
            code=f"{provider.upper()}_AUTH_FAILED",
        )


class OAuthProviderUnavailable(AuthError):
    code = "PROVIDER_NOT_ENABLED"
    status_code = 404

    def __init__(self, provider: str):
        self.provider = provider
        super().__init__(f"Sign-in with {provider} is not enabled.")


class TokenInvalid(AuthError):
    code = "UNAUTHORIZED"
    message = "Invalid or expired token."
    status_code = 401


class RefreshTokenInvalid(AuthError):
    code = "INVALID_REFRESH_TOKEN"
    message = "Invalid or expired refresh token."
    status_code = 401


class InvalidPassword(AuthError):
    code = "INVALID_PASSWORD"
    message = "Incorrect password."
    status_code = 401


class UserNotFound(AuthError):
    code = "USER_NOT_FOUND"
    message = "User not found."
    status_code = 404


class Forbidden(AuthError):
    code = "FORBIDDEN"
    message = "Administrator access required."
    status_code = 403


class UsernameAllocationError(RuntimeError):
    """No free username could be generated within the allowed attempts."""
