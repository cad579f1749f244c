"""Microsoft authentication for Minecraft and the lifecycle of the resulting credential.

The authentication is a chain of three hops: the Microsoft identity provider (OAuth),
the Xbox Live broker (user token then XSTS token) and finally the Minecraft services
that give the game access token and the player's profile. The `AuthChain` state
machine runs these hops, the `CredentialManager` keeps the resulting `Credential`
valid over time by refreshing it silently and falling back to validation of the
cached token when refreshing is not possible.
"""

from urllib import parse as url_parse
from datetime import datetime, timedelta
from threading import Lock, Event
from uuid import UUID, uuid4, uuid5
from pathlib import Path
import platform
import logging
import base64
import json
import os

from .http import HttpError, RetryPolicy, http_request
from .events import EventChannel, publish
from .util import Result, utc_now, parse_utc_date

from typing import Optional, Dict, List, Tuple, Callable


logger = logging.getLogger(__name__)


MS_AUTHORIZE_URL = "https://login.live.com/oauth20_authorize.srf"
MS_TOKEN_URL = "https://login.live.com/oauth20_token.srf"
MS_SCOPE = "xboxlive.signin offline_access"
XBL_AUTHENTICATE_URL = "https://user.auth.xboxlive.com/user/authenticate"
XSTS_AUTHORIZE_URL = "https://xsts.auth.xboxlive.com/xsts/authorize"
MC_LOGIN_URL = "https://api.minecraftservices.com/authentication/login_with_xbox"
MC_PROFILE_URL = "https://api.minecraftservices.com/minecraft/profile"

# Below this age (since last refresh) the credential is used without network call.
FRESH_DAYS = 30
# From this age the credential is discarded without even trying to refresh it.
EXPIRY_DAYS = 90
# Front ends may suggest a refresh past this age, only informational.
REFRESH_SUGGESTED_MINUTES = 30

CREDENTIAL_FILE_NAME = "mcclient_auth.json"

# Known XSTS error codes, returned when the account cannot be authorized.
XSTS_ERRORS = {
    2148916233: "this Microsoft account has no Xbox account",
    2148916235: "Xbox Live is not available in this account's country",
    2148916236: "this account needs adult verification",
    2148916237: "this account needs adult verification",
    2148916238: "this is a child account that must be added to a family",
}


class Credential:
    """The credential of a Microsoft account, everything needed to launch the game and
    to refresh the access token later.

    Only scalar fields listed in `fields` are persisted, see `to_dict`.
    """

    fields = "access_token", "username", "uuid", "xuid", "client_id", \
        "ms_refresh_token", "ms_access_token", "saved_at", "last_refresh"

    def __init__(self) -> None:
        self.access_token = ""
        self.username = ""
        self.uuid = ""
        self.xuid = ""
        self.client_id = ""
        self.ms_refresh_token: Optional[str] = None
        self.ms_access_token: Optional[str] = None
        self.saved_at: Optional[datetime] = None
        self.last_refresh: Optional[datetime] = None
        self.user_type = "msa"

    @classmethod
    def offline(cls, username: Optional[str] = None, uuid: Optional[str] = None) -> "Credential":
        """Create an offline credential, this is quite contradictory but it's useful to
        launch the game on servers running in offline mode. The UUID is derived from
        the username when not given.
        """

        credential = cls()
        credential.user_type = ""
        now = utc_now()
        credential.saved_at = now
        credential.last_refresh = now

        if uuid is not None and len(uuid) == 32:
            credential.uuid = uuid
            credential.username = uuid[:8] if username is None else username[:16]
        else:
            namespace_hash = UUID("8df5a464-38de-11ec-aa66-3fd636ee2ed7")
            if username is None:
                credential.uuid = uuid5(namespace_hash, platform.node()).hex
                credential.username = credential.uuid[:8]
            else:
                credential.username = username[:16]
                credential.uuid = uuid5(namespace_hash, credential.username).hex

        return credential

    def is_offline(self) -> bool:
        return self.user_type == ""

    def reference_time(self) -> Optional[datetime]:
        """The time from which the age of the access token is computed: the last
        refresh if any, or the time of the first save.
        """
        return self.last_refresh or self.saved_at

    def age(self, now: Optional[datetime] = None) -> Optional[timedelta]:
        """Return the age of the access token, none if it has no reference time, such
        token must not be used.
        """
        reference = self.reference_time()
        if reference is None:
            return None
        return (now or utc_now()) - reference

    def can_refresh(self) -> bool:
        """Return true if any refresh-capable token fragment is present.
        """
        return bool(self.ms_refresh_token) or bool(self.ms_access_token)

    def format_token_argument(self, legacy: bool) -> str:
        """Format the token for the game's command line. Modern versions uses the format
        `{access_token}` and legacy versions uses `token:{access_token}:{uuid}`.
        """
        if self.is_offline():
            return ""
        return f"token:{self.access_token}:{self.uuid}" if legacy else self.access_token

    def to_dict(self) -> dict:
        """Sanitized projection of this credential, only made of scalar values that are
        known to be needed. Dates are ISO-8601 formatted.
        """
        data = {}
        for field in self.fields:
            value = getattr(self, field)
            if isinstance(value, datetime):
                value = value.isoformat()
            if value is not None:
                data[field] = value
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Credential":
        """Restore a credential from its sanitized projection.

        :raises ValueError: If the data is not a valid credential.
        """

        if not isinstance(data, dict):
            raise ValueError("credential: / must be an object")

        credential = cls()
        for field in ("access_token", "username", "uuid"):
            value = data.get(field)
            if not isinstance(value, str) or not len(value):
                raise ValueError(f"credential: /{field} must be a non-empty string")
            setattr(credential, field, value)

        for field in ("xuid", "client_id"):
            value = data.get(field, "")
            if not isinstance(value, str):
                raise ValueError(f"credential: /{field} must be a string")
            setattr(credential, field, value)

        for field in ("ms_refresh_token", "ms_access_token"):
            value = data.get(field)
            if value is not None and not isinstance(value, str):
                raise ValueError(f"credential: /{field} must be a string")
            setattr(credential, field, value or None)

        credential.saved_at = parse_utc_date(data.get("saved_at"))
        credential.last_refresh = parse_utc_date(data.get("last_refresh"))
        return credential

    def __repr__(self) -> str:
        return f"<Credential {self.username} ({self.uuid})>"


class IdentityToken:
    """Tokens given by the identity provider (Microsoft OAuth).
    """
    __slots__ = "access_token", "refresh_token"
    def __init__(self, access_token: str, refresh_token: Optional[str]) -> None:
        self.access_token = access_token
        self.refresh_token = refresh_token


class BrokerToken:
    """XSTS token and user hash given by the authorization broker (Xbox Live).
    """
    __slots__ = "token", "user_hash"
    def __init__(self, token: str, user_hash: str) -> None:
        self.token = token
        self.user_hash = user_hash


class GameToken:
    """Access token and player's profile given by the game service.
    """
    __slots__ = "access_token", "uuid", "username", "xuid"
    def __init__(self, access_token: str, uuid: str, username: str, xuid: str) -> None:
        self.access_token = access_token
        self.uuid = uuid
        self.username = username
        self.xuid = xuid


class AuthService:
    """Remote endpoints involved in the authentication chain. The default
    implementation is `MicrosoftAuthService`, other implementations are mostly useful
    for testing the chain.

    All methods may raise `HttpError` and `KeyError`/`TypeError`/`ValueError` for
    malformed responses, the chain wraps them into `AuthError`.
    """

    def authorization_url(self, state: str) -> str:
        """Return the URL the player must open to authorize this launcher, the given
        state must be sent back with the authorization code.
        """
        raise NotImplementedError

    def request_identity_token(self, grant: Dict[str, str]) -> IdentityToken:
        """Request the identity provider's tokens for the given OAuth grant, either an
        authorization code or a refresh token grant.
        """
        raise NotImplementedError

    def request_broker_token(self, identity_access_token: str) -> BrokerToken:
        raise NotImplementedError

    def request_game_token(self, broker: BrokerToken) -> str:
        raise NotImplementedError

    def request_profile(self, game_access_token: str) -> dict:
        """Request the player's profile, containing at least `id` and `name`.
        """
        raise NotImplementedError

    def validate_token(self, game_access_token: str) -> bool:
        """Return true if the game service still accepts the given access token.

        :raises HttpError: Only for transient errors, where the token validity can't
        be known.
        """
        try:
            self.request_profile(game_access_token)
            return True
        except HttpError as error:
            if error.is_transient():
                raise
            return False


class MicrosoftAuthService(AuthService):
    """Microsoft/Xbox Live/Minecraft services endpoints, the Azure application id and
    redirect URI must be the ones registered for the OAuth authorization code flow.
    """

    def __init__(self, app_id: str, redirect_uri: str, *,
        retry: Optional[RetryPolicy] = None
    ) -> None:
        self.app_id = app_id
        self.redirect_uri = redirect_uri
        self.retry = retry

    def authorization_url(self, state: str) -> str:
        return "{}?{}".format(MS_AUTHORIZE_URL, url_parse.urlencode({
            "client_id": self.app_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "response_mode": "query",
            "scope": MS_SCOPE,
            "state": state,
            "prompt": "select_account"
        }))

    def request_identity_token(self, grant: Dict[str, str]) -> IdentityToken:
        res = self._request(MS_TOKEN_URL, {
            "client_id": self.app_id,
            "redirect_uri": self.redirect_uri,
            "scope": MS_SCOPE,
            **grant
        }, payload_url_encoded=True)
        return IdentityToken(res["access_token"], res.get("refresh_token"))

    def request_broker_token(self, identity_access_token: str) -> BrokerToken:

        res = self._request(XBL_AUTHENTICATE_URL, {
            "Properties": {
                "AuthMethod": "RPS",
                "SiteName": "user.auth.xboxlive.com",
                "RpsTicket": f"d={identity_access_token}"
            },
            "RelyingParty": "http://auth.xboxlive.com",
            "TokenType": "JWT"
        })

        xbl_token = res["Token"]
        xbl_user_hash = res["DisplayClaims"]["xui"][0]["uhs"]

        try:
            res = self._request(XSTS_AUTHORIZE_URL, {
                "Properties": {
                    "SandboxId": "RETAIL",
                    "UserTokens": [xbl_token]
                },
                "RelyingParty": "rp://api.minecraftservices.com/",
                "TokenType": "JWT"
            })
        except HttpError as error:
            if error.res.status == 401:
                xerr = _json_or_empty(error).get("XErr")
                raise AuthError(XSTS_ERRORS.get(xerr, f"xsts authorization refused ({xerr})"))
            raise

        if xbl_user_hash != res["DisplayClaims"]["xui"][0]["uhs"]:
            raise AuthError("inconsistent user hash")

        return BrokerToken(res["Token"], xbl_user_hash)

    def request_game_token(self, broker: BrokerToken) -> str:
        res = self._request(MC_LOGIN_URL, {
            "identityToken": f"XBL3.0 x={broker.user_hash};{broker.token}"
        })
        return res["access_token"]

    def request_profile(self, game_access_token: str) -> dict:
        return http_request("GET", MC_PROFILE_URL,
            headers={"Authorization": f"Bearer {game_access_token}"},
            accept="application/json",
            retry=self.retry).json()

    def _request(self, url: str, payload: dict, *, payload_url_encoded: bool = False) -> dict:
        data = (url_parse.urlencode(payload) if payload_url_encoded else json.dumps(payload)).encode("ascii")
        content_type = "application/x-www-form-urlencoded" if payload_url_encoded else "application/json"
        return http_request("POST", url, data=data,
            content_type=content_type,
            accept="application/json",
            retry=self.retry).json()


class IdentityPrompt:
    """Interactive part of the identity hop: the player opens the authorization URL,
    signs in, and the authorization code is given back.
    """

    def prompt(self, url: str, state: str) -> Optional[str]:
        """Show the authorization URL to the player and wait for the authorization
        code. The state sent back by the identity provider must be equal to the given
        one, implementations must return none if it's not the case.

        :return: The authorization code, or none if the player cancelled.
        """
        raise NotImplementedError


class AuthState:
    """States of the authentication chain, each hop requires the previous state.
    """
    NOT_AUTHENTICATED = "not_authenticated"
    IDENTITY_OK = "identity_ok"
    BROKER_OK = "broker_ok"
    GAME_SERVICE_OK = "game_service_ok"


class AuthChain:
    """Linear state machine running the three hops of the authentication. Any hop
    failure raises an `AuthError` and leaves the chain in its previous state.
    """

    def __init__(self, service: AuthService, *, events: Optional[EventChannel] = None) -> None:
        self.service = service
        self.events = events
        self.state = AuthState.NOT_AUTHENTICATED
        self.identity: Optional[IdentityToken] = None
        self.broker: Optional[BrokerToken] = None
        self.game: Optional[GameToken] = None

    def identity_from_code(self, code: str) -> None:
        """First hop, from an authorization code given by the interactive prompt.
        """
        self._require(AuthState.NOT_AUTHENTICATED)
        self.identity = self._identity_grant({"code": code, "grant_type": "authorization_code"})
        self._advance(AuthState.IDENTITY_OK)

    def identity_from_refresh_token(self, refresh_token: str) -> None:
        """First hop, silently from a refresh token previously given by the identity
        provider.
        """
        self._require(AuthState.NOT_AUTHENTICATED)
        identity = self._identity_grant({"refresh_token": refresh_token, "grant_type": "refresh_token"})
        # The provider may not rotate the refresh token, keep the previous one.
        if identity.refresh_token is None:
            identity.refresh_token = refresh_token
        self.identity = identity
        self._advance(AuthState.IDENTITY_OK)

    def identity_from_access_token(self, access_token: str) -> None:
        """First hop, skipped because an identity access token is already known. The
        following hops will fail if the provider no longer accepts it.
        """
        self._require(AuthState.NOT_AUTHENTICATED)
        self.identity = IdentityToken(access_token, None)
        self._advance(AuthState.IDENTITY_OK)

    def authorize_broker(self) -> None:
        """Second hop, Xbox Live user token and XSTS token.
        """
        self._require(AuthState.IDENTITY_OK)
        assert self.identity is not None
        try:
            self.broker = self.service.request_broker_token(self.identity.access_token)
        except HttpError as error:
            raise AuthError(f"broker authorization failed: {error}") from error
        except (KeyError, IndexError, TypeError, ValueError) as error:
            raise AuthError(f"broker authorization failed, invalid response: {error!r}") from error
        self._advance(AuthState.BROKER_OK)

    def login_game_service(self) -> None:
        """Third hop, game service login and profile.
        """

        self._require(AuthState.BROKER_OK)
        assert self.broker is not None

        try:
            access_token = self.service.request_game_token(self.broker)
        except HttpError as error:
            raise AuthError(f"game service login failed: {error}") from error
        except (KeyError, TypeError, ValueError) as error:
            raise AuthError(f"game service login failed, invalid response: {error!r}") from error

        try:
            profile = self.service.request_profile(access_token)
            uuid, username = profile["id"], profile["name"]
        except HttpError as error:
            if error.res.status == 404:
                raise DoesNotOwnGameError("this account does not own the game") from error
            elif error.res.status == 401:
                raise OutdatedTokenError("the token has been rejected, authentication required") from error
            raise AuthError(f"game service profile failed: {error}") from error
        except (KeyError, TypeError, ValueError) as error:
            raise AuthError(f"game service profile failed, invalid response: {error!r}") from error

        xuid = decode_jwt_payload(access_token).get("xuid", "")
        self.game = GameToken(access_token, uuid, username, str(xuid))
        self._advance(AuthState.GAME_SERVICE_OK)

    def run(self) -> None:
        """Run the remaining broker and game service hops.
        """
        self.authorize_broker()
        self.login_game_service()

    def apply(self, credential: Credential, now: datetime) -> None:
        """Write the result of a complete chain into the given credential.
        """
        self._require(AuthState.GAME_SERVICE_OK)
        assert self.identity is not None and self.game is not None
        credential.access_token = self.game.access_token
        credential.uuid = self.game.uuid
        credential.username = self.game.username
        credential.xuid = self.game.xuid
        credential.ms_access_token = self.identity.access_token
        if self.identity.refresh_token is not None:
            credential.ms_refresh_token = self.identity.refresh_token
        credential.last_refresh = now

    def _identity_grant(self, grant: Dict[str, str]) -> IdentityToken:
        try:
            return self.service.request_identity_token(grant)
        except HttpError as error:
            if error.is_transient():
                raise AuthError(f"identity provider unreachable: {error}") from error
            raise OutdatedTokenError("the token has been rejected, authentication required") from error
        except (KeyError, TypeError, ValueError) as error:
            raise AuthError(f"identity provider invalid response: {error!r}") from error

    def _require(self, state: str) -> None:
        if self.state != state:
            raise AuthError(f"authentication chain is in state {self.state}, expected {state}")

    def _advance(self, state: str) -> None:
        logger.debug("authentication chain: %s -> %s", self.state, state)
        self.state = state
        publish(self.events, AuthStateEvent(state))


class _RefreshFlight:
    """An in-flight refresh, shared by all callers that arrive while it runs.
    """
    __slots__ = "done", "result"
    def __init__(self) -> None:
        self.done = Event()
        self.result: Optional[Result] = None


class CredentialManager:
    """Owner of the current credential, responsible for interactive authentication,
    persistence and keeping the credential valid.

    The age of the credential (since its last refresh, or its first save) determines
    what `ensure_valid` does:

    - below `fresh_days`, the credential is used as-is;
    - below `expiry_days`, a single-flight silent refresh is attempted, falling back to
      validation of the cached access token;
    - from `expiry_days`, the credential is discarded.
    """

    def __init__(self, file: Path, service: AuthService, *,
        events: Optional[EventChannel] = None,
        fresh_days: int = FRESH_DAYS,
        expiry_days: int = EXPIRY_DAYS,
        clock: Callable[[], datetime] = utc_now
    ) -> None:
        self.file = file
        self.service = service
        self.events = events
        self.fresh_days = fresh_days
        self.expiry_days = expiry_days
        self.clock = clock
        self.credential: Optional[Credential] = None
        self._lock = Lock()
        self._flight: Optional[_RefreshFlight] = None

    def authenticate(self, prompt: IdentityPrompt) -> Credential:
        """Interactive authentication through the whole chain. The new credential
        replaces the current one but is not persisted, see `persist`.

        :raises AuthError: If the player cancelled or any hop failed.
        """

        state = uuid4().hex
        code = prompt.prompt(self.service.authorization_url(state), state)
        if code is None:
            raise AuthError("authentication cancelled")

        chain = AuthChain(self.service, events=self.events)
        chain.identity_from_code(code)
        chain.run()

        now = self.clock()
        credential = Credential()
        credential.client_id = str(uuid4())
        credential.saved_at = now
        chain.apply(credential, now)

        logger.info("authenticated as %s", credential.username)
        self.credential = credential
        return credential

    def persist(self, path: Optional[Path] = None) -> None:
        """Write the sanitized credential to the given file, or the default one.

        :raises AuthRequiredError: If there is no credential to persist.
        """

        credential = self.credential
        if credential is None:
            raise AuthRequiredError("no credential to persist")

        if credential.saved_at is None:
            credential.saved_at = self.clock()

        path = path or self.file
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("wt") as fp:
            json.dump(credential.to_dict(), fp, indent=2)

        if os.name == "posix":
            path.chmod(0o600)

        logger.debug("credential persisted to %s", path)

    def load(self, path: Optional[Path] = None) -> Result:
        """Load the credential from the given file, or the default one. A missing file
        gives a failed result with `not_found` set, never an exception.
        """

        path = path or self.file

        try:
            with path.open("rt") as fp:
                data = json.load(fp)
        except FileNotFoundError:
            return Result.failure("no saved credential", not_found=True)
        except (OSError, json.JSONDecodeError) as error:
            logger.warning("unreadable credential file %s: %s", path, error)
            return Result.failure(f"unreadable credential file: {error}", not_found=False)

        try:
            credential = Credential.from_dict(data)
        except ValueError as error:
            logger.warning("invalid credential file %s: %s", path, error)
            return Result.failure(f"invalid credential file: {error}", not_found=False)

        self.credential = credential
        return Result.ok(not_found=False, credential=credential)

    def ensure_valid(self, force_refresh: bool = False) -> Result:
        """Ensure that the current credential can be used to launch the game.

        The result has `refreshed` set when the token was refreshed, `used_cache` when
        the cached token was kept after a failed refresh, and `requires_auth` when the
        player must authenticate interactively again.
        """

        credential = self.credential
        if credential is None:
            return Result.failure("not authenticated", requires_auth=True)

        age = credential.age(self.clock())
        if age is None or age >= timedelta(days=self.expiry_days):
            logger.info("credential of %s expired (age: %s), discarding it", credential.username, age)
            self._discard(credential, "expired")
            return Result.failure("credential expired", requires_auth=True)

        if not force_refresh and age < timedelta(days=self.fresh_days):
            return Result.ok(refreshed=False, used_cache=False)

        return self._refresh_single_flight(credential)

    def logout(self) -> None:
        """Forget the current credential and remove the persisted file.
        """
        credential = self.credential
        self.credential = None
        self._remove_file()
        if credential is not None:
            logger.info("logged out %s", credential.username)
            publish(self.events, CredentialDiscardedEvent(credential, "logout"))

    def status(self) -> Result:
        """Describe the current credential, without any network call.
        """

        credential = self.credential
        if credential is None:
            return Result.ok(authenticated=False)

        age = credential.age(self.clock())
        return Result.ok(
            authenticated=True,
            username=credential.username,
            uuid=credential.uuid,
            last_refresh=credential.reference_time(),
            refresh_suggested=age is None or age >= timedelta(minutes=REFRESH_SUGGESTED_MINUTES))

    def _refresh_single_flight(self, credential: Credential) -> Result:

        with self._lock:
            flight = self._flight
            leader = flight is None
            if flight is None:
                flight = self._flight = _RefreshFlight()

        if not leader:
            flight.done.wait()
            assert flight.result is not None
            return flight.result

        try:
            flight.result = self._refresh(credential)
            return flight.result
        finally:
            with self._lock:
                self._flight = None
            if flight.result is None:
                flight.result = Result.failure("credential refresh failed unexpectedly")
            flight.done.set()

    def _refresh(self, credential: Credential) -> Result:

        strategies: List[Tuple[str, Callable[[AuthChain], None]]] = []
        if credential.ms_refresh_token:
            token = credential.ms_refresh_token
            strategies.append(("refresh token", lambda chain: chain.identity_from_refresh_token(token)))
        if credential.ms_access_token:
            access_token = credential.ms_access_token
            strategies.append(("identity access token", lambda chain: chain.identity_from_access_token(access_token)))

        if not len(strategies):
            logger.info("credential of %s can't be refreshed, validating it", credential.username)

        for name, start in strategies:
            chain = AuthChain(self.service, events=self.events)
            try:
                start(chain)
                chain.run()
            except AuthError as error:
                logger.warning("silent refresh from %s failed: %s", name, error)
                continue
            chain.apply(credential, self.clock())
            logger.info("credential of %s refreshed", credential.username)
            publish(self.events, CredentialRefreshedEvent(credential))
            return Result.ok(refreshed=True, used_cache=False)

        try:
            valid = self.service.validate_token(credential.access_token)
        except HttpError as error:
            logger.warning("cached token of %s could not be validated, keeping it: %s", credential.username, error)
            return Result.ok(refreshed=False, used_cache=True, network_error=True)

        if valid:
            logger.info("cached token of %s is still valid", credential.username)
            return Result.ok(refreshed=False, used_cache=True)

        logger.info("cached token of %s has been rejected, discarding it", credential.username)
        self._discard(credential, "rejected")
        return Result.failure("credential rejected", requires_auth=True)

    def _discard(self, credential: Credential, reason: str) -> None:
        if self.credential is credential:
            self.credential = None
        self._remove_file()
        publish(self.events, CredentialDiscardedEvent(credential, reason))

    def _remove_file(self) -> None:
        try:
            self.file.unlink()
        except FileNotFoundError:
            pass


def base64url_decode(s: str) -> bytes:
    rem = len(s) % 4
    if rem > 0:
        s += "=" * (4 - rem)
    return base64.urlsafe_b64decode(s)


def decode_jwt_payload(jwt: str) -> dict:
    """Decode the payload of a JWT without checking its signature, an invalid token
    gives an empty payload.
    """
    try:
        payload = json.loads(base64url_decode(jwt.split(".")[1]))
    except (IndexError, ValueError):
        return {}
    return payload if isinstance(payload, dict) else {}


def _json_or_empty(error: HttpError) -> dict:
    try:
        data = error.res.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


class AuthStateEvent:
    """Event triggered when the authentication chain reaches a new state.
    """
    __slots__ = "state",
    def __init__(self, state: str) -> None:
        self.state = state


class CredentialRefreshedEvent:
    __slots__ = "credential",
    def __init__(self, credential: Credential) -> None:
        self.credential = credential


class CredentialDiscardedEvent:
    """Event triggered when the credential is forgotten, the reason is `logout`,
    `expired` or `rejected`.
    """
    __slots__ = "credential", "reason"
    def __init__(self, credential: Credential, reason: str) -> None:
        self.credential = credential
        self.reason = reason


class AuthError(Exception):
    pass

class AuthRequiredError(AuthError):
    """Raised when an operation needs a credential but the player must authenticate
    interactively first.
    """

class DoesNotOwnGameError(AuthError):
    pass

class OutdatedTokenError(AuthError):
    pass
