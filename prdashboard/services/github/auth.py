"""Authentication state and resolution of the token and username."""

from collections.abc import Callable
from dataclasses import dataclass
from logging import getLogger

from pydantic import SecretStr

from prdashboard.conf.github import GitHubSettings
from prdashboard.errors import AuthenticationError
from prdashboard.services.events import EventEmitter

from .client import GitHubAPIClient

logger = getLogger(__name__)


@dataclass(frozen=True)
class AuthState:
    """Read-only view of the current credential."""

    access_token: str | None = None
    username: str | None = None

    @property
    def is_authenticated(self) -> bool:
        return bool(self.access_token) and bool(self.username)


class AuthProvider:
    """Holds the current credential and announces sign-in and sign-out.

    Acquiring a credential (OAuth device flow, keychain) happens elsewhere;
    callers hand the result to :meth:`sign_in`.
    """

    def __init__(self, state: AuthState | None = None) -> None:
        self._state = state or AuthState()
        self._changes: EventEmitter[AuthState] = EventEmitter("auth state")

    @property
    def state(self) -> AuthState:
        return self._state

    @property
    def access_token(self) -> str | None:
        return self._state.access_token

    @property
    def username(self) -> str | None:
        return self._state.username

    @property
    def is_authenticated(self) -> bool:
        return self._state.is_authenticated

    def subscribe(self, callback: Callable[[AuthState], None]) -> Callable[[], None]:
        """Register for authentication state transitions."""
        return self._changes.subscribe(callback)

    def sign_in(self, token: SecretStr | str, username: str) -> None:
        """Store a new credential and notify subscribers.

        Raises:
            AuthenticationError: If the token or username is empty
        """
        value = token.get_secret_value() if isinstance(token, SecretStr) else token
        if not value or not username:
            raise AuthenticationError("Cannot sign in without a token and username")
        logger.info(f"Signed in as {username}")
        self._state = AuthState(access_token=value, username=username)
        self._changes.emit(self._state)

    def sign_out(self) -> None:
        if self._state == AuthState():
            return
        logger.info("Signed out")
        self._state = AuthState()
        self._changes.emit(self._state)


async def authenticate_from_settings(
    settings: GitHubSettings,
    client: GitHubAPIClient,
    token_override: str | None = None,
    username_override: str | None = None,
) -> AuthState:
    """Resolve a credential from settings and command-line overrides.

    When no username is configured it is discovered with the ``viewer`` query.

    Args:
        settings: GitHub settings
        client: Entered API client; its token is updated to the resolved one
        token_override: Token taking precedence over settings
        username_override: Username taking precedence over settings

    Returns:
        An authenticated AuthState

    Raises:
        AuthenticationError: If no token is configured or GitHub rejects it
    """
    if token_override:
        logger.info("Using token override for authentication")
        token = token_override
    elif settings.github_token:
        token = settings.github_token.get_secret_value()
    else:
        raise AuthenticationError("GitHub token not configured. Set GITHUB_TOKEN or pass --token.")

    client.update_token(token)

    username = username_override or settings.github_username
    if not username:
        logger.info("No username configured, asking GitHub for the token owner")
        username = await client.get_viewer_login()

    return AuthState(access_token=token, username=username)
