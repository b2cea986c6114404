# Delegated authorization server: authorization-code grant only.
# Created: 2026-10-12
#
# Flow: authorize -> (login) -> (consent) -> code -> token exchange ->
# bearer-gated resource calls. Codes and tokens are signed self-contained
# values (see tokens.py); codes are single-use through an in-memory ledger
# and tokens are recorded by id so they can be revoked.
#
# Every decision, success or failure, is written to the audit log.

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from contextgate.auth import tokens
from contextgate.auth.clients import ClientRegistry, validate_scopes
from contextgate.auth.errors import (
    AccessDenied,
    AccessNotGranted,
    ClientMismatch,
    CodeAlreadyUsed,
    CodeExpired,
    InternalFailure,
    InvalidCode,
    OAuthError,
    RateLimited,
    RedirectMismatch,
    StorageError,
    Unauthenticated,
    UnknownClient,
    UnsupportedGrant,
)
from contextgate.auth.models import (
    GRANT_TYPE_AUTHORIZATION_CODE,
    AuthorizeResult,
    AuthorizeStep,
    Client,
    GrantFilters,
    PermissionGrant,
    RequestContext,
    TokenRecord,
    parse_scopes,
)
from contextgate.auth.permissions import PermissionStore, ScopeEvaluator
from contextgate.auth.storage import CodeLedger, TokenStore
from contextgate.security.audit import AuditLogger
from contextgate.security.rate_limiter import WindowRateLimiter
from contextgate.security.session_tokens import create_session_token, verify_session_token

logger = logging.getLogger(__name__)

# Credential lifetimes
CODE_TTL = timedelta(minutes=5)
ACCESS_TOKEN_TTL = timedelta(hours=1)


def _with_query(url: str, params: dict[str, str]) -> str:
    """Append *params* to *url*, keeping any query it already has."""
    parts = urlsplit(url)
    query = parse_qsl(parts.query, keep_blank_values=True)
    query.extend(params.items())
    return urlunsplit(parts._replace(query=urlencode(query)))


class AuthorizationServer:
    """Authorization-code issuer/validator and bearer-token issuer/validator."""

    def __init__(
        self,
        registry: ClientRegistry,
        permissions: PermissionStore,
        token_store: TokenStore,
        audit: AuditLogger,
        limiter: WindowRateLimiter,
        secret: str,
        *,
        code_ttl: timedelta = CODE_TTL,
        access_token_ttl: timedelta = ACCESS_TOKEN_TTL,
        login_url: str = "/auth/login",
        consent_url: str = "/dashboard/cli-consent",
        clock: Callable[[], datetime] | None = None,
    ):
        self.registry = registry
        self.permissions = permissions
        self.token_store = token_store
        self.audit = audit
        self.limiter = limiter
        self.evaluator = ScopeEvaluator(permissions)
        self.code_ledger = CodeLedger()
        self.code_ttl = code_ttl
        self.access_token_ttl = access_token_ttl
        self.login_url = login_url
        self.consent_url = consent_url
        self.clock = clock or permissions.clock
        self._secret = secret

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register_client(
        self,
        user_id: str,
        name: str,
        redirect_uri: str,
        scopes: list[str],
        ctx: RequestContext,
        description: str = "",
    ) -> tuple[Client, str]:
        """Register a client owned by *user_id*. Returns (client, secret)."""
        try:
            client, secret = self.registry.register(
                name=name,
                redirect_uri=redirect_uri,
                scopes=scopes,
                description=description,
                created_by=user_id,
            )
        except (OAuthError, StorageError) as exc:
            self._audit(ctx, "register_denied", "cli_client", False, user_id, None, exc)
            raise
        self._audit(
            ctx, "register", "cli_client", True, user_id, client.client_id, resource_id=client.id
        )
        return client, secret

    # ------------------------------------------------------------------
    # Authorization endpoint
    # ------------------------------------------------------------------

    def authorize(
        self,
        client_id: str,
        redirect_uri: str,
        scope: str,
        state: str | None,
        user_id: str | None,
        ctx: RequestContext,
        return_to: str = "",
    ) -> AuthorizeResult:
        """Advance an authorize request as far as current state allows.

        Raises UnknownClient, RedirectMismatch, InvalidScope or AccessDenied.
        A redirect mismatch is never answered with a redirect.
        """
        try:
            client = self._check_client(client_id, redirect_uri)
            validate_scopes(parse_scopes(scope))
            if user_id is None:
                self._audit(ctx, "authorize_login", "authorization_code", True, None, client_id)
                login = _with_query(self.login_url, {"return_to": return_to})
                return AuthorizeResult(AuthorizeStep.LOGIN, login)

            grant = self.permissions.find(user_id, client_id)
            if grant is not None and not grant.granted:
                raise AccessDenied()
        except (OAuthError, StorageError) as exc:
            self._audit(
                ctx, "authorize_denied", "authorization_code", False, user_id, client_id, exc
            )
            raise

        if grant is None:
            params = {"client_id": client_id, "redirect_uri": redirect_uri, "scope": scope}
            if state:
                params["state"] = state
            self._audit(ctx, "authorize_consent", "authorization_code", True, user_id, client_id)
            return AuthorizeResult(AuthorizeStep.CONSENT, _with_query(self.consent_url, params))

        code = self._issue_code(user_id, client, ctx)
        params = {"code": code}
        if state:
            params["state"] = state
        return AuthorizeResult(AuthorizeStep.CODE, _with_query(client.redirect_uri, params), code)

    def consent(
        self,
        user_id: str,
        client_id: str,
        redirect_uri: str,
        scope: str,
        decision: bool,
        ctx: RequestContext,
    ) -> str:
        """Record the user's decision. Returns a code, or raises AccessDenied."""
        try:
            client = self._check_client(client_id, redirect_uri)
            scopes = parse_scopes(scope)
            validate_scopes(scopes)
            grant = self.permissions.upsert(user_id, client_id, scopes, granted=decision)
        except (OAuthError, StorageError) as exc:
            self._audit(ctx, "consent_denied", "user_permission", False, user_id, client_id, exc)
            raise

        action = "grant_permission" if decision else "deny_permission"
        self._audit(
            ctx, action, "user_permission", True, user_id, client_id, resource_id=grant.id
        )
        if not decision:
            raise AccessDenied()
        return self._issue_code(user_id, client, ctx)

    # ------------------------------------------------------------------
    # Token endpoint
    # ------------------------------------------------------------------

    def exchange(
        self,
        client_id: str,
        client_secret: str,
        code: str,
        grant_type: str,
        ctx: RequestContext,
    ) -> dict:
        """Exchange an authorization code for a bearer token.

        Checks run in a fixed order and the first failure wins.
        """
        user_id = None
        try:
            if grant_type != GRANT_TYPE_AUTHORIZATION_CODE:
                raise UnsupportedGrant()

            client = self.registry.authenticate(client_id, client_secret)

            try:
                claims = tokens.decode(code, self._secret, tokens.CODE_PREFIX)
            except tokens.MalformedCredential as exc:
                logger.debug("Rejected code: %s", exc)
                raise InvalidCode() from None

            now = self.clock()
            if int(now.timestamp()) - claims.iat > self.code_ttl.total_seconds():
                raise CodeExpired()

            if claims.cid != client_id:
                raise ClientMismatch()
            user_id = claims.sub

            expires = datetime.fromtimestamp(claims.iat, UTC) + self.code_ttl
            if not self.code_ledger.consume(claims.jti, expires):
                raise CodeAlreadyUsed()

            # Read current grant state; a revoke after issuance must win
            grant = self.permissions.find(user_id, client_id)
            if grant is None or not grant.granted:
                raise AccessNotGranted()

            record, access_token = self._issue_token(user_id, client, now)
        except (OAuthError, StorageError) as exc:
            self._audit(
                ctx, "token_request_denied", "access_token", False, user_id, client_id, exc
            )
            raise

        self._audit(
            ctx, "token_request", "access_token", True, user_id, client_id, resource_id=record.jti
        )
        logger.info("Access token issued for client %s", client.name)

        return {
            "access_token": access_token,
            "token_type": "Bearer",
            "expires_in": int(self.access_token_ttl.total_seconds()),
            "scope": " ".join(record.scopes),
        }

    def verify_access_token(self, access_token: str) -> TokenRecord:
        """Return the token record for a valid bearer token.

        Raises Unauthenticated for bad signatures, expiry or revocation.
        """
        try:
            claims = tokens.decode(access_token, self._secret, tokens.TOKEN_PREFIX)
        except tokens.MalformedCredential:
            raise Unauthenticated("Invalid access token") from None

        record = self.token_store.get(claims.jti)
        if record is None or record.revoked:
            raise Unauthenticated("Invalid access token")
        if self.clock() >= record.expires_at:
            raise Unauthenticated("Access token expired")
        return record

    def revoke_token(self, access_token: str) -> bool:
        """Revoke an access token by id. Unknown or malformed tokens return False."""
        try:
            claims = tokens.decode(access_token, self._secret, tokens.TOKEN_PREFIX)
        except tokens.MalformedCredential:
            return False
        return self.token_store.revoke(claims.jti)

    # ------------------------------------------------------------------
    # Permission API
    # ------------------------------------------------------------------

    def grant_permission(
        self,
        user_id: str,
        client_id: str,
        scopes: list[str],
        ctx: RequestContext,
        filters: GrantFilters | None = None,
        ttl: timedelta | None = None,
    ) -> PermissionGrant:
        try:
            grant = self.permissions.upsert(user_id, client_id, scopes, filters=filters, ttl=ttl)
        except (OAuthError, StorageError) as exc:
            self._audit(
                ctx, "grant_permission_denied", "user_permission", False, user_id, client_id, exc
            )
            raise
        self._audit(
            ctx,
            "grant_permission",
            "user_permission",
            True,
            user_id,
            client_id,
            resource_id=grant.id,
        )
        return grant

    def revoke_permission(
        self,
        user_id: str,
        ctx: RequestContext,
        client_id: str | None = None,
        grant_id: str | None = None,
    ) -> int:
        """Deactivate matching grants and the tokens issued under them.

        One audit record per revoked grant; a revoke that matches nothing is
        still recorded once.
        """
        try:
            revoked = self.permissions.revoke(user_id, client_id=client_id, grant_id=grant_id)
            for grant in revoked:
                self.token_store.revoke_for(user_id, grant.client_id)
        except (OAuthError, StorageError) as exc:
            self._audit(
                ctx,
                "revoke_permission_denied",
                "user_permission",
                False,
                user_id,
                client_id,
                exc,
                grant_id,
            )
            raise

        for grant in revoked:
            self._audit(
                ctx,
                "revoke_permission",
                "user_permission",
                True,
                user_id,
                grant.client_id,
                resource_id=grant.id,
            )
        if not revoked:
            self._audit(
                ctx,
                "revoke_permission",
                "user_permission",
                True,
                user_id,
                client_id,
                resource_id=grant_id,
            )
        return len(revoked)

    # ------------------------------------------------------------------
    # Protected resources
    # ------------------------------------------------------------------

    def authorize_resource(
        self,
        access_token: str | None,
        operation: str,
        required_scope: str,
        resource_type: str,
        ctx: RequestContext,
        resource_id: str | None = None,
    ) -> TokenRecord:
        """Gate a resource call: bearer token, then rate limit, then scope.

        Denials are audited as ``<operation>_denied`` before raising.
        """
        denied = f"{operation}_denied"
        try:
            if not access_token:
                raise Unauthenticated()
            record = self.verify_access_token(access_token)
        except (Unauthenticated, StorageError) as exc:
            self._audit(ctx, denied, resource_type, False, None, None, exc, resource_id)
            raise

        user_id, client_id = record.user_id, record.client_id
        try:
            info = self.limiter.check(client_id, user_id, ctx.endpoint)
        except Exception:
            logger.exception("Rate limiter failed for %s", ctx.endpoint)
            info = None
        if info is None or not info.allowed:
            exc = RateLimited(headers=info.headers() if info else None)
            self._audit(ctx, denied, resource_type, False, user_id, client_id, exc, resource_id)
            raise exc

        if not self.evaluator.permits(user_id, client_id, required_scope):
            exc = AccessNotGranted(f"Insufficient permissions: {required_scope} required")
            self._audit(ctx, denied, resource_type, False, user_id, client_id, exc, resource_id)
            raise exc

        try:
            self.permissions.touch(user_id, client_id)
        except Exception:
            logger.warning("Could not update last_used for client %s", client_id, exc_info=True)
        return record

    def grant_filters(self, record: TokenRecord) -> GrantFilters:
        """Filters attached to the grant behind *record*."""
        grant = self.permissions.find(record.user_id, record.client_id)
        return grant.filters if grant else GrantFilters()

    def record_access(
        self,
        record: TokenRecord,
        operation: str,
        resource_type: str,
        ctx: RequestContext,
        resource_id: str | None = None,
        error_message: str | None = None,
    ) -> None:
        """Audit the outcome of a resource call that passed the gate."""
        self.audit.log_access(
            ctx,
            action=operation,
            resource_type=resource_type,
            success=error_message is None,
            user_id=record.user_id,
            client_id=record.client_id,
            resource_id=resource_id,
            error_message=error_message,
        )

    def create_session(self, user_id: str, ttl_hours: int = 24) -> str:
        """Mint a user session token (called by the login collaborator)."""
        return create_session_token(user_id, self._secret, ttl_hours=ttl_hours)

    def user_from_session(self, token: str | None) -> str | None:
        if not token:
            return None
        return verify_session_token(token, self._secret)

    def cleanup_expired(self) -> None:
        """Drop expired tokens and consumed code ids."""
        now = self.clock()
        self.token_store.cleanup_expired(now)
        self.code_ledger.cleanup(now)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _check_client(self, client_id: str, redirect_uri: str) -> Client:
        client = self.registry.lookup(client_id)
        if client is None:
            raise UnknownClient()
        if client.redirect_uri != redirect_uri:
            raise RedirectMismatch()
        return client

    def _issue_code(self, user_id: str, client: Client, ctx: RequestContext) -> str:
        claims = tokens.new_claims(user_id, client.client_id, int(self.clock().timestamp()))
        code = tokens.encode(claims, self._secret, tokens.CODE_PREFIX)
        self._audit(
            ctx,
            "authorize",
            "authorization_code",
            True,
            user_id,
            client.client_id,
            resource_id=claims.jti,
        )
        return code

    def _issue_token(
        self, user_id: str, client: Client, now: datetime
    ) -> tuple[TokenRecord, str]:
        issued_at = int(now.timestamp())
        claims = tokens.new_claims(user_id, client.client_id, issued_at, scope=client.scopes)
        record = TokenRecord(
            jti=claims.jti,
            user_id=user_id,
            client_id=client.client_id,
            scopes=list(client.scopes),
            issued_at=datetime.fromtimestamp(issued_at, UTC),
            expires_at=datetime.fromtimestamp(issued_at, UTC) + self.access_token_ttl,
        )
        self.token_store.add(record)
        return record, tokens.encode(claims, self._secret, tokens.TOKEN_PREFIX)

    def _audit(
        self,
        ctx: RequestContext,
        action: str,
        resource_type: str,
        success: bool,
        user_id: str | None = None,
        client_id: str | None = None,
        error: Exception | None = None,
        resource_id: str | None = None,
    ) -> None:
        if error is not None and not isinstance(error, OAuthError):
            # Storage detail stays in the server log
            error = InternalFailure()
        self.audit.log_access(
            ctx,
            action=action,
            resource_type=resource_type,
            success=success,
            user_id=user_id,
            client_id=client_id,
            resource_id=resource_id,
            error_message=error.message if error else None,
        )


# Singleton
_server: AuthorizationServer | None = None


def build_server(data_dir: Path | None = None) -> AuthorizationServer:
    """Assemble a server from settings, storing state under *data_dir*."""
    from contextgate.config import get_config_dir, get_settings, get_signing_secret
    from contextgate.security.rate_limiter import get_window_limiter

    settings = get_settings()
    base = data_dir or get_config_dir()
    registry = ClientRegistry(base / "clients.json")
    permissions = PermissionStore(
        registry,
        base / "permissions.json",
        default_ttl=timedelta(days=settings.permission_ttl_days),
    )
    return AuthorizationServer(
        registry=registry,
        permissions=permissions,
        token_store=TokenStore(base / "tokens.json"),
        audit=AuditLogger(base / "audit.jsonl"),
        limiter=get_window_limiter(),
        secret=get_signing_secret(settings),
        code_ttl=timedelta(seconds=settings.code_ttl_seconds),
        access_token_ttl=timedelta(seconds=settings.access_token_ttl_seconds),
        login_url=settings.login_url,
        consent_url=settings.consent_url,
    )


def get_auth_server() -> AuthorizationServer:
    global _server
    if _server is None:
        _server = build_server()
    return _server


def reset_auth_server() -> None:
    """Reset singleton (for testing)."""
    global _server
    _server = None
