# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/funid_identity

"""Command-line entry point: ``python -m funid_identity <command>``."""

import argparse
import asyncio
import getpass
import sys

from authlib.jose import JsonWebKey
from pydantic import ValidationError

from funid_identity import __version__
from funid_identity.config import DEFAULT_KID, FunIDConfig
from funid_identity.crypto import hash_client_secret
from funid_identity.exceptions import FunIDError
from funid_identity.maintenance import purge_expired_oauth_data
from funid_identity.provider import IdentityProvider
from funid_identity.utils.logger import logger


def _load_config() -> FunIDConfig:
    try:
        return FunIDConfig()  # type: ignore[call-arg]
    except ValidationError as e:
        logger.error(f"Invalid configuration: {e}")
        raise SystemExit(2) from e


def cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    from funid_identity.server import create_app

    app = create_app(IdentityProvider(_load_config()))
    # log_config=None keeps uvicorn's records flowing through the intercepted root logger.
    uvicorn.run(app, host=args.host, port=args.port, log_config=None)
    return 0


def cmd_generate_key(args: argparse.Namespace) -> int:
    key = JsonWebKey.generate_key("RSA", args.bits, is_private=True)
    private_pem = key.as_pem(is_private=True).decode("ascii")
    public_pem = key.as_pem(is_private=False).decode("ascii")

    print(f"# kid: {args.kid}")
    print(f"# Set FUNID_RSA_PRIVATE_KEY, FUNID_RSA_PUBLIC_KEY and FUNID_RSA_KID={args.kid}")
    print(private_pem.strip())
    print(public_pem.strip())
    return 0


def cmd_hash_secret(args: argparse.Namespace) -> int:
    secret = args.secret or getpass.getpass("Client secret: ")
    if not secret:
        logger.error("Client secret must not be empty")
        return 1
    print(hash_client_secret(secret))
    return 0


async def _purge(config: FunIDConfig) -> int:
    async with IdentityProvider(config) as provider:
        result = await purge_expired_oauth_data(provider.codes, provider.refresh_tokens)
    print(result.model_dump_json())
    return 0


def cmd_purge_expired(args: argparse.Namespace) -> int:
    config = _load_config()
    try:
        return asyncio.run(_purge(config))
    except FunIDError as e:
        logger.error(f"Purge failed: {e}")
        return 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="funid_identity",
        description="FUN-ID OAuth 2.0 / OpenID Connect identity provider",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run the HTTP server")
    serve.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    serve.add_argument("--port", type=int, default=8000, help="Port (default: 8000)")
    serve.set_defaults(func=cmd_serve)

    generate = subparsers.add_parser("generate-key", help="Generate an RSA signing key pair as PEM")
    generate.add_argument("--bits", type=int, default=2048, choices=[2048, 3072, 4096])
    generate.add_argument("--kid", default=DEFAULT_KID, help="Key identifier to configure with the pair")
    generate.set_defaults(func=cmd_generate_key)

    hash_secret = subparsers.add_parser("hash-secret", help="Hash a client secret for the oauth_clients table")
    hash_secret.add_argument("secret", nargs="?", help="The secret (prompted for when omitted)")
    hash_secret.set_defaults(func=cmd_hash_secret)

    purge = subparsers.add_parser("purge-expired", help="Delete expired or spent codes and refresh tokens")
    purge.set_defaults(func=cmd_purge_expired)

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    exit_code: int = args.func(args)
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
