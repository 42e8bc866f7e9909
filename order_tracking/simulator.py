"""
simulator.py — Delivery Simulator

Development tool that walks an order through its delivery pipeline over the
REST API, so the live tracking page can be watched without a real bar or
driver. Each stage waits a few seconds to mimic real preparation and travel
times.

Usage:
    python -m order_tracking.simulator ORDER_ID [--step-seconds 3] [--cancel]
"""

import argparse
import logging
import sys
import time

import httpx

from .config import load_settings
from .logging_config import setup_logging

log = logging.getLogger(__name__)

DELIVERY_STEPS = ("confirmed", "preparing", "in_transit", "delivered")


class OrderApiClient:
    """
    Client for the order REST API.
    Handles status changes and order lookups.
    """
    def __init__(self, base_url: str, transport: httpx.BaseTransport = None):
        """
        Initializes the HTTP client with timeout configuration.

        Args:
            base_url (str): Root URL of the order API.
            transport (httpx.BaseTransport): Optional transport, used by tests.
        """
        timeout_config = httpx.Timeout(5.0, read=8.0)
        self.client = httpx.Client(base_url=base_url, timeout=timeout_config, transport=transport)

    def close(self):
        self.client.close()

    def get_order(self, order_id: int) -> dict:
        response = self.client.get(f"/api/orders/{order_id}")
        response.raise_for_status()
        return response.json()

    def update_status(self, order_id: int, status: str) -> dict:
        """
        Requests a status change.

        Returns:
            dict: The updated order.

        Raises:
            httpx.HTTPStatusError: On 4xx/5xx, e.g. 409 for a rejected transition.
            httpx.TransportError: If the API cannot be reached.
        """
        try:
            response = self.client.patch(f"/api/orders/{order_id}/status", json={"status": status})
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            log.error(f"[Order: {order_id}] Status '{status}' rejected (HTTP {e.response.status_code}): {e.response.text}")
            raise


def run_delivery(client: OrderApiClient, order_id: int, step_seconds: float = 3.0, cancel: bool = False, sleep=time.sleep) -> list:
    """
    Drives one order through the pipeline, or confirms and cancels it.

    Starts from the order's current status, so a partially progressed order
    continues where it is.

    Returns:
        list[str]: Statuses that were applied, in order.
    """
    log_prefix = f"[Order: {order_id}]"
    current = client.get_order(order_id)["status"]
    log.info(f"{log_prefix} Simulation starts at status '{current}'.")

    if cancel:
        plan = ["canceled"]
    elif current in DELIVERY_STEPS:
        plan = list(DELIVERY_STEPS[DELIVERY_STEPS.index(current) + 1:])
    elif current == "pending":
        plan = list(DELIVERY_STEPS)
    else:
        log.info(f"{log_prefix} Nothing to do for status '{current}'.")
        return []

    applied = []
    for status in plan:
        sleep(step_seconds)
        client.update_status(order_id, status)
        applied.append(status)
        log.info(f"{log_prefix} Status sent: {status}")
    return applied


def main(argv=None) -> int:
    settings = load_settings()
    parser = argparse.ArgumentParser(description="Walk an order through its delivery pipeline.")
    parser.add_argument("order_id", type=int)
    parser.add_argument("--step-seconds", type=float, default=3.0)
    parser.add_argument("--cancel", action="store_true", help="cancel the order instead of delivering it")
    parser.add_argument("--api-url", default=settings.order_api_url)
    args = parser.parse_args(argv)

    setup_logging(settings.log_level, settings.log_file)
    client = OrderApiClient(args.api_url)
    try:
        run_delivery(client, args.order_id, args.step_seconds, args.cancel)
    except httpx.HTTPStatusError:
        return 1
    except httpx.TransportError as e:
        log.error(f"[Order: {args.order_id}] Order API unreachable: {e}")
        return 2
    finally:
        client.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
