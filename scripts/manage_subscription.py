"""
Manage the Strava push subscription for this app.

Strava allows one subscription per application. Creating it triggers the
GET handshake against CALLBACK_URL, so the API must be reachable first.

Usage:
    python scripts/manage_subscription.py list
    python scripts/manage_subscription.py create
    python scripts/manage_subscription.py create --callback-url https://example.com/api/v1/webhook/strava
    python scripts/manage_subscription.py delete 12345
"""
import argparse
import asyncio
import logging
import sys

from pacefund.config import get_settings
from pacefund.services.strava import get_strava_client
from pacefund.utils.errors import TransportError, UpstreamRejected

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

CALLBACK_PATH = "/api/v1/webhook/strava"


async def create(callback_url: str) -> None:
    settings = get_settings()
    if not settings.strava_webhook_verify_token:
        logger.error("STRAVA_WEBHOOK_VERIFY_TOKEN must be set before creating a subscription")
        sys.exit(1)
    result = await get_strava_client().create_subscription(
        callback_url, settings.strava_webhook_verify_token,
    )
    logger.info("Subscription created: id=%s callback=%s", result.get("id"), callback_url)


async def list_all() -> None:
    subscriptions = await get_strava_client().list_subscriptions()
    if not subscriptions:
        logger.info("No active subscriptions")
        return
    for sub in subscriptions:
        logger.info(
            "Subscription id=%s callback=%s created=%s",
            sub.get("id"), sub.get("callback_url"), sub.get("created_at"),
        )


async def delete(subscription_id: int) -> None:
    await get_strava_client().delete_subscription(subscription_id)
    logger.info("Subscription %s deleted", subscription_id)


async def main():
    parser = argparse.ArgumentParser(description="Manage the Strava push subscription")
    commands = parser.add_subparsers(dest="command", required=True)

    create_cmd = commands.add_parser("create", help="Create the subscription")
    create_cmd.add_argument("--callback-url", default=None)
    commands.add_parser("list", help="Show the current subscription")
    delete_cmd = commands.add_parser("delete", help="Delete a subscription")
    delete_cmd.add_argument("subscription_id", type=int)
    args = parser.parse_args()

    try:
        if args.command == "create":
            callback = args.callback_url or get_settings().app_base_url.rstrip("/") + CALLBACK_PATH
            await create(callback)
        elif args.command == "list":
            await list_all()
        elif args.command == "delete":
            await delete(args.subscription_id)
    except UpstreamRejected as e:
        logger.error("Strava rejected the request: HTTP %s %s", e.status_code, e.body)
        sys.exit(1)
    except TransportError as e:
        logger.error("Could not reach Strava: %s", str(e))
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
