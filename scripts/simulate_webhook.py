"""
Send a Strava-shaped webhook event to a running local API.

Usage:
    python scripts/simulate_webhook.py
    python scripts/simulate_webhook.py --aspect update --activity 555 --athlete 42
    python scripts/simulate_webhook.py --deauthorize --athlete 42
"""
import argparse
import asyncio
import logging
import time

import httpx

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

BASE_URL = "http://localhost:8000"


async def send_event(payload: dict):
    async with httpx.AsyncClient(timeout=30) as client:
        resp = await client.post(f"{BASE_URL}/api/v1/webhook/strava", json=payload)
        logger.info("Webhook response: %s %s", resp.status_code, resp.text)
        return resp


async def main():
    parser = argparse.ArgumentParser(description="Simulate Strava webhook events")
    parser.add_argument("--aspect", default="create", choices=["create", "update", "delete"])
    parser.add_argument("--activity", type=int, default=555)
    parser.add_argument("--athlete", type=int, default=42)
    parser.add_argument("--deauthorize", action="store_true")
    args = parser.parse_args()

    if args.deauthorize:
        payload = {
            "object_type": "athlete",
            "object_id": args.athlete,
            "aspect_type": "update",
            "owner_id": args.athlete,
            "event_time": int(time.time()),
            "updates": {"authorized": "false"},
        }
    else:
        payload = {
            "object_type": "activity",
            "object_id": args.activity,
            "aspect_type": args.aspect,
            "owner_id": args.athlete,
            "event_time": int(time.time()),
            "updates": {},
        }

    logger.info("Sending %s/%s event...", payload["object_type"], payload["aspect_type"])
    await send_event(payload)


if __name__ == "__main__":
    asyncio.run(main())
