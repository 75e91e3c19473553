"""Low-stock notifications sent to a Slack-style webhook."""

from __future__ import annotations

import json
import logging
import os
import time
from datetime import datetime
from typing import Any

import requests

logger = logging.getLogger(__name__)

LOW_STOCK_THRESHOLD = 10
DEFAULT_TIMEOUT = 5.0
URL_VARIABLE = "SLACK_WEBHOOK_URL"


class WebhookError(Exception):
    """A notification could not be delivered."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def build_low_stock_message(
    sku: str, warehouse_id: int, stock: int, timestamp: datetime | None = None
) -> dict[str, Any]:
    """Build the Slack message body for a low-stock alert."""
    ts = int(timestamp.timestamp()) if timestamp is not None else int(time.time())
    return {
        "text": "⚠️ Low Stock Alert",
        "attachments": [
            {
                "color": "danger",
                "title": "Low Stock Alert",
                "text": "Stock level has fallen below threshold",
                "fields": [
                    {"title": "SKU", "value": sku, "short": True},
                    {"title": "Warehouse ID", "value": str(warehouse_id), "short": True},
                    {"title": "Current Stock", "value": str(stock), "short": True},
                    {"title": "Threshold", "value": str(LOW_STOCK_THRESHOLD), "short": True},
                ],
                "ts": ts,
            }
        ],
    }


def notify_low_stock(
    sku: str,
    warehouse_id: int,
    stock: int,
    url: str | None = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> None:
    """Post a low-stock alert; the URL defaults to SLACK_WEBHOOK_URL."""
    if url is None:
        url = os.environ.get(URL_VARIABLE, "")
    if not url:
        logger.warning("%s not set in environment variables", URL_VARIABLE)
        raise WebhookError(f"{URL_VARIABLE} not set")

    body = json.dumps(
        build_low_stock_message(sku, warehouse_id, stock),
        separators=(",", ":"),
        ensure_ascii=False,
    )
    logger.info("Sending low stock notification to %s: %s", url, body)
    try:
        response = requests.post(
            url,
            data=body.encode("utf-8"),
            headers={"Content-Type": "application/json"},
            timeout=timeout,
        )
    except requests.RequestException as exc:
        raise WebhookError(f"error sending request: {exc}") from exc

    logger.info(
        "Slack webhook response - Status: %d, Body: %s", response.status_code, response.text
    )
    if response.status_code != 200:
        raise WebhookError(
            f"slack notification failed with status {response.status_code}: {response.text}",
            status_code=response.status_code,
        )
    logger.info("Slack notification sent successfully")