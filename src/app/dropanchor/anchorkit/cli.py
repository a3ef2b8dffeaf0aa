import argparse
import asyncio
import json
import logging
import os
from logging.config import dictConfig
from typing import Any, Dict, List, Optional, Tuple

import aiohttp
import sentry_sdk

from app.dropanchor.anchorkit.atproto.chain import ChainMiddlewareClient
from app.dropanchor.anchorkit.atproto.client import ATProtoClient
from app.dropanchor.anchorkit.atproto.discovery import (
    AtprotoIdentityResolver,
    PDSDiscovery,
)
from app.dropanchor.anchorkit.atproto.errors import AnchorKitException
from app.dropanchor.anchorkit.config import Settings
from app.dropanchor.anchorkit.metrics import MetricsClient, create_metrics_client
from app.dropanchor.anchorkit.model.credentials import Credentials
from app.dropanchor.anchorkit.model.records import AddressRecord, StrongRef

logger = logging.getLogger(__name__)


def configure_logging():
    logging_config_file = os.getenv("LOGGING_CONFIG_FILE", "")

    if len(logging_config_file) > 0:
        with open(logging_config_file) as fl:
            dictConfig(json.load(fl))
        return

    logging.basicConfig()
    logging.getLogger().setLevel(logging.DEBUG)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="anchorkit", description="Anchor check-in record utilities"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    resolve_pds = subparsers.add_parser(
        "resolve-pds", help="Resolve handles or DIDs to their PDS"
    )
    resolve_pds.add_argument("identifier", nargs="+", help="Handle or DID.")
    resolve_pds.add_argument(
        "--guess",
        action="store_true",
        help="Guess from the handle's domain when resolution fails.",
    )

    login = subparsers.add_parser("login", help="Create a session")
    _add_auth_arguments(login)

    checkin = subparsers.add_parser("checkin", help="Create a check-in")
    _add_auth_arguments(checkin)
    checkin.add_argument("text", help="The check-in message.")
    checkin.add_argument("latitude", type=float, help="Latitude in degrees.")
    checkin.add_argument("longitude", type=float, help="Longitude in degrees.")
    checkin.add_argument("--name", help="Venue name.")
    checkin.add_argument("--street", help="Street address.")
    checkin.add_argument("--locality", help="City or town.")
    checkin.add_argument("--region", help="State or region.")
    checkin.add_argument("--country", help="ISO 3166-1 alpha-2 country code.")
    checkin.add_argument("--postal-code", help="Postal code.")
    checkin.add_argument("--category", help="Place category, e.g. climbing.")
    checkin.add_argument("--category-group", help="Category group.")
    checkin.add_argument("--category-icon", help="Category icon.")

    resolve_checkin = subparsers.add_parser(
        "resolve-checkin", help="Fetch a check-in with its address"
    )
    _add_auth_arguments(resolve_checkin)
    resolve_checkin.add_argument("uri", help="AT-URI of the check-in.")

    verify = subparsers.add_parser("verify", help="Verify a StrongRef")
    _add_auth_arguments(verify)
    verify.add_argument("uri", help="AT-URI of the referenced record.")
    verify.add_argument("cid", help="CID the reference expects.")

    return parser


def _add_auth_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("handle", help="The handle to authenticate with.")
    parser.add_argument("password", help="The (app) password to authenticate with.")


async def resolvePds(
    settings: Settings, identifiers: List[str], guess: bool
) -> None:
    async with aiohttp.ClientSession() as http_session:
        discovery = PDSDiscovery(
            AtprotoIdentityResolver(http_session, settings.plc_hostname), settings
        )
        for identifier in identifiers:
            if guess:
                pds = await discovery.resolve_pds_or_guess(identifier)
            else:
                pds = await discovery.resolve_pds(identifier)
            print(f"{identifier}: {pds if pds is not None else 'not found'}")


async def authenticate(
    settings: Settings,
    http_session: aiohttp.ClientSession,
    metrics_client: MetricsClient,
    handle: str,
    password: str,
) -> Tuple[ATProtoClient, Credentials]:
    discovery = PDSDiscovery(
        AtprotoIdentityResolver(http_session, settings.plc_hostname), settings
    )
    pds = await discovery.resolve_pds_or_guess(handle)
    if pds is None:
        logger.warning(f"No PDS found for {handle}, using {settings.pds_url}")

    transport = ChainMiddlewareClient.from_settings(
        settings, metrics_client, http_session
    )
    client = ATProtoClient.from_settings(
        settings, transport, metrics_client, base_url=pds
    )

    session = await client.login(handle, password)
    return client, session.to_credentials(settings.access_token_expiry)


async def runRecordCommand(settings: Settings, args: Dict[str, Any]) -> None:
    command = args["command"]
    metrics_client = await create_metrics_client(
        settings.metrics_backend,
        host=settings.statsd_host,
        port=settings.statsd_port,
        debug=settings.debug,
    )
    timeout = aiohttp.ClientTimeout(total=settings.request_timeout)

    try:
        async with aiohttp.ClientSession(timeout=timeout) as http_session:
            client, credentials = await authenticate(
                settings, http_session, metrics_client, args["handle"], args["password"]
            )

            if command == "login":
                print(f"{credentials.handle} {credentials.did} {client.base_url}")

            elif command == "checkin":
                address = AddressRecord(
                    name=args.get("name"),
                    street=args.get("street"),
                    locality=args.get("locality"),
                    region=args.get("region"),
                    country=args.get("country"),
                    postal_code=args.get("postal_code"),
                )
                uri = await client.create_checkin_with_address(
                    args["text"],
                    address,
                    (args["latitude"], args["longitude"]),
                    credentials,
                    category=args.get("category"),
                    category_group=args.get("category_group"),
                    category_icon=args.get("category_icon"),
                )
                print(uri)

            elif command == "resolve-checkin":
                resolved = await client.resolve_checkin(args["uri"], credentials)
                print(resolved.model_dump_json(by_alias=True, indent=2))

            elif command == "verify":
                ref = StrongRef(uri=args["uri"], cid=args["cid"])
                verified = await client.verify_strong_ref(ref, credentials)
                print("verified" if verified else "not verified")
    finally:
        await metrics_client.close()


async def realMain(argv: Optional[List[str]] = None) -> int:
    args = vars(build_parser().parse_args(argv))
    settings = Settings()  # type: ignore

    if settings.sentry_dsn:
        sentry_sdk.init(dsn=settings.sentry_dsn)

    try:
        if args["command"] == "resolve-pds":
            await resolvePds(settings, args["identifier"], args.get("guess", False))
        else:
            await runRecordCommand(settings, args)
    except (AnchorKitException, aiohttp.ClientError, TimeoutError) as e:
        logger.error(f"{args['command']} failed: {e}")
        return 1
    return 0


def main() -> None:
    configure_logging()
    raise SystemExit(asyncio.run(realMain()))


if __name__ == "__main__":
    main()
