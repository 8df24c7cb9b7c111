#!/usr/bin/env python3
"""
Auth Service -- registration, login and bearer-token profile API.

Usage:
  python main.py                        # serve on 0.0.0.0:8080
  python main.py serve --port 9000 --reload
  python main.py check-db               # connect, create the users table, report
  python main.py verify-token <TOKEN>   # decode and check a token with SECRET_KEY

Configuration is read from the environment and .env (see core/config.py):
  SECRET_KEY        signing key, >= 32 chars (or DEBUG=true to auto-generate)
  DATABASE_URL      SQLAlchemy URL (default: sqlite file next to the code)
  SMTP_HOST ...     welcome-mail delivery; leave SMTP_HOST empty to disable
"""

import argparse
import sys
from datetime import timedelta

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from auth.errors import TokenInvalid
from auth.store import UserStore
from auth.tokens import TokenService
from core.config import get_settings, mask_db_url


def _serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("asgi:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def _check_db(args: argparse.Namespace) -> int:
    settings = get_settings()
    print(f"  Testing connection to: {mask_db_url(settings.database_url)}")
    try:
        store = UserStore(settings.database_url)
    except SQLAlchemyError as e:
        print(f"  [!] Could not connect: {e}")
        return 1
    try:
        store.ping()
    except SQLAlchemyError as e:
        print(f"  [!] Database did not answer: {e}")
        return 1
    finally:
        store.close()
    print("  Connected; table 'users' is present.")
    return 0


def _verify_token(args: argparse.Namespace) -> int:
    settings = get_settings()
    tokens = TokenService(
        settings.secret_key,
        timedelta(seconds=settings.token_expire_seconds),
        issuer=settings.token_issuer,
    )
    try:
        claims = tokens.validate(args.token)
    except TokenInvalid as e:
        print(f"  [!] {e.code}: {e.message}")
        return 1
    print(f"  user_id:    {claims.user_id}")
    print(f"  email:      {claims.email}")
    print(f"  issuer:     {claims.issuer}")
    print(f"  issued_at:  {claims.issued_at.isoformat()}")
    print(f"  expires_at: {claims.expires_at.isoformat()}")
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="auth-service",
        description="Registration, login and bearer-token profile API.",
    )
    sub = parser.add_subparsers(dest="command")

    serve = sub.add_parser("serve", help="Run the HTTP API (default)")
    serve.add_argument("--host", default="0.0.0.0", help="Bind address (default: 0.0.0.0)")
    serve.add_argument("--port", type=int, default=8080, help="Port (default: 8080)")
    serve.add_argument("--reload", action="store_true", help="Restart on code changes (development)")
    serve.set_defaults(func=_serve)

    check = sub.add_parser("check-db", help="Verify DATABASE_URL is reachable and the schema exists")
    check.set_defaults(func=_check_db)

    verify = sub.add_parser("verify-token", help="Validate an access token and print its claims")
    verify.add_argument("token", help="Encoded access token")
    verify.set_defaults(func=_verify_token)

    args = parser.parse_args()
    if args.command is None:
        args = parser.parse_args(["serve"])

    try:
        sys.exit(args.func(args))
    except ValidationError as e:
        print(f"  [!] Invalid configuration:\n{e}")
        sys.exit(2)


if __name__ == "__main__":
    main()
