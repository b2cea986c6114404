"""contextgate entry point.

Commands:
  serve      run the API server
  session    mint a user session token (for the login collaborator / testing)
  register   register a CLI client locally and print its one-time secret
  clients    list registered clients
  audit      show recent audit records
  cleanup    drop expired tokens and consumed codes
  exchange   trade an authorization code for an access token against a server
  status     show the saved client config
  logout     revoke the saved access token and forget the config
  permissions  list or revoke grants for the saved client
"""

import argparse
import asyncio
import json
import logging
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as get_version

import httpx

from contextgate.logging_setup import setup_logging

logger = logging.getLogger(__name__)


def _version() -> str:
    try:
        return get_version("contextgate")
    except PackageNotFoundError:
        from contextgate import __version__

        return __version__


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, default=str))


def cmd_serve(args: argparse.Namespace) -> int:
    from contextgate.api.serve import run_api_server
    from contextgate.config import get_settings

    settings = get_settings()
    run_api_server(
        host=args.host or settings.api_host, port=args.port or settings.api_port, dev=args.dev
    )
    return 0


def cmd_session(args: argparse.Namespace) -> int:
    from contextgate.auth.server import get_auth_server
    from contextgate.config import get_settings

    ttl = args.ttl_hours or get_settings().session_token_ttl_hours
    print(get_auth_server().create_session(args.user_id, ttl_hours=ttl))
    return 0


def cmd_register(args: argparse.Namespace) -> int:
    from contextgate.auth.errors import OAuthError
    from contextgate.auth.models import RequestContext, parse_scopes
    from contextgate.auth.server import get_auth_server

    try:
        client, secret = get_auth_server().register_client(
            user_id=args.user_id,
            name=args.name,
            redirect_uri=args.redirect_uri,
            scopes=parse_scopes(args.scopes),
            description=args.description,
            ctx=RequestContext(endpoint="cli:register"),
        )
    except OAuthError as exc:
        logger.error("Registration failed: %s", exc.message)
        return 1
    except ValueError as exc:
        logger.error("Registration failed: %s", exc)
        return 1
    _print_json(
        {
            "client_id": client.client_id,
            "client_secret": secret,
            "name": client.name,
            "redirect_uri": client.redirect_uri,
            "scopes": client.scopes,
        }
    )
    return 0


def cmd_clients(args: argparse.Namespace) -> int:
    from contextgate.auth.server import get_auth_server

    clients = get_auth_server().registry.list_clients(created_by=args.user_id)
    _print_json([c.model_dump(mode="json", exclude={"secret_hash"}) for c in clients])
    return 0


def cmd_audit(args: argparse.Namespace) -> int:
    from contextgate.security.audit import get_audit_logger

    records = get_audit_logger().read(
        limit=args.limit, user_id=args.user_id, client_id=args.client_id
    )
    _print_json([r.model_dump(mode="json") for r in records])
    return 0


def cmd_cleanup(args: argparse.Namespace) -> int:
    from contextgate.auth.server import get_auth_server
    from contextgate.security.rate_limiter import cleanup_all

    get_auth_server().cleanup_expired()
    removed = cleanup_all()
    logger.info("Cleanup done (%d idle rate-limit entries removed)", removed)
    return 0


def cmd_exchange(args: argparse.Namespace) -> int:
    from dataclasses import replace

    from contextgate.client import ApiError, ClientConfig, ContextGateClient

    config = ClientConfig(
        base_url=args.server, client_id=args.client_id, client_secret=args.client_secret
    )
    try:
        data = asyncio.run(ContextGateClient(config).exchange_code(args.code))
    except ApiError as exc:
        logger.error("Token exchange failed: %s", exc)
        return 1
    if args.save:
        path = replace(config, access_token=data["access_token"]).save()
        logger.info("Client config saved to %s", path)
    _print_json(data)
    return 0


def cmd_status(args: argparse.Namespace) -> int:
    from contextgate.client import ClientConfig

    config = ClientConfig.load()
    if config is None:
        print("Not logged in")
        return 1
    _print_json(
        {
            "server": config.base_url,
            "client_id": config.client_id,
            "logged_in": bool(config.access_token),
        }
    )
    return 0


def cmd_logout(args: argparse.Namespace) -> int:
    from contextgate.client import ApiError, ClientConfig, ContextGateClient

    config = ClientConfig.load()
    if config is None:
        print("Not logged in")
        return 0
    try:
        asyncio.run(ContextGateClient(config).revoke())
    except (ApiError, httpx.HTTPError) as exc:
        logger.warning("Could not revoke token on %s: %s", config.base_url, exc)
    ClientConfig.clear()
    print("Logged out")
    return 0


def cmd_permissions(args: argparse.Namespace) -> int:
    from contextgate.client import ApiError, ClientConfig, ContextGateClient

    config = ClientConfig.load()
    if config is None:
        logger.error("No saved client config; run 'contextgate exchange --save' first")
        return 1
    client = ContextGateClient(config)
    try:
        if args.revoke:
            revoked = asyncio.run(client.revoke_permission(args.session, permission_id=args.revoke))
            _print_json({"revoked": revoked})
        else:
            _print_json(asyncio.run(client.list_permissions(args.session)))
    except ApiError as exc:
        logger.error("Permission request failed: %s", exc)
        return 1
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="contextgate",
        description="Delegated authorization for CLI clients",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  contextgate serve                          Start the API server
  contextgate session alice                  Mint a session token for alice
  contextgate register alice my-cli http://localhost:8765/callback read:projects
  contextgate audit --limit 20               Show recent audit records
""",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {_version()}")
    parser.add_argument("--log-level", default="INFO", help="Logging level (default: INFO)")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("serve", help="Run the API server")
    p.add_argument("--host", default=None, help="Bind address (default: from settings)")
    p.add_argument("--port", type=int, default=None, help="Port (default: from settings)")
    p.add_argument("--dev", action="store_true", help="Auto-reload on code changes")
    p.set_defaults(func=cmd_serve)

    p = sub.add_parser("session", help="Mint a user session token")
    p.add_argument("user_id")
    p.add_argument("--ttl-hours", type=int, default=None)
    p.set_defaults(func=cmd_session)

    p = sub.add_parser("register", help="Register a CLI client")
    p.add_argument("user_id", help="Owner of the client")
    p.add_argument("name")
    p.add_argument("redirect_uri")
    p.add_argument("scopes", help="Comma- or space-separated scopes")
    p.add_argument("--description", default="")
    p.set_defaults(func=cmd_register)

    p = sub.add_parser("clients", help="List registered clients")
    p.add_argument("--user-id", default=None, help="Only clients created by this user")
    p.set_defaults(func=cmd_clients)

    p = sub.add_parser("audit", help="Show recent audit records")
    p.add_argument("--limit", type=int, default=50)
    p.add_argument("--user-id", default=None)
    p.add_argument("--client-id", default=None)
    p.set_defaults(func=cmd_audit)

    p = sub.add_parser("cleanup", help="Drop expired tokens and consumed codes")
    p.set_defaults(func=cmd_cleanup)

    p = sub.add_parser("exchange", help="Exchange an authorization code for a token")
    p.add_argument("--server", required=True, help="Server base URL")
    p.add_argument("--client-id", required=True)
    p.add_argument("--client-secret", required=True)
    p.add_argument("code")
    p.add_argument("--save", action="store_true", help="Remember server, client and token")
    p.set_defaults(func=cmd_exchange)

    p = sub.add_parser("status", help="Show the saved client config")
    p.set_defaults(func=cmd_status)

    p = sub.add_parser("logout", help="Revoke the saved token and forget the config")
    p.set_defaults(func=cmd_logout)

    p = sub.add_parser("permissions", help="List or revoke grants for the saved client")
    p.add_argument("--session", required=True, help="User session token")
    p.add_argument("--revoke", metavar="PERMISSION_ID", default=None)
    p.set_defaults(func=cmd_permissions)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    setup_logging(level=args.log_level)
    try:
        return args.func(args)
    except KeyboardInterrupt:
        logger.info("contextgate stopped.")
        return 0


if __name__ == "__main__":
    raise SystemExit(main())
