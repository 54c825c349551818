"""Webhook notifications of run results (generic JSON, Discord, Slack)."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import requests

from geosync import __version__
from geosync.config import Config

if TYPE_CHECKING:
    from geosync.run import RunReport


def send_webhook(config: Config, report: "RunReport", logger: logging.Logger) -> None:
    """Send run results to a webhook (Discord, Slack, or generic)."""
    if not config.webhook_url:
        return

    try:
        if config.webhook_type == "discord":
            payload = _format_discord_webhook(report)
        elif config.webhook_type == "slack":
            payload = _format_slack_webhook(report)
        else:
            payload = _format_generic_webhook(report)

        response = requests.post(
            config.webhook_url,
            json=payload,
            timeout=10,
            headers={"Content-Type": "application/json"},
        )
        if response.status_code < 300:
            logger.debug(f"Webhook sent ({config.webhook_type})")
        else:
            logger.warning(f"Webhook returned {response.status_code}: {response.text[:200]}")

    except requests.RequestException as e:
        logger.warning(f"Webhook failed: {e}")


def _dataset_summary(report: "RunReport") -> str:
    update = report.update
    if update is None:
        return "skipped"
    if update.failed:
        return "failed"
    if update.status_saved:
        return "refreshed"
    return "up to date"


def _format_discord_webhook(report: "RunReport") -> dict:
    """Format the report as a Discord embed."""
    sync = report.sync
    color = 0x2ECC71 if report.ok else 0xE74C3C
    fields = [
        {"name": "Dataset", "value": _dataset_summary(report), "inline": True},
        {"name": "Duration", "value": f"{report.duration_seconds:.1f}s", "inline": True},
    ]
    if sync is not None:
        fields.extend([
            {"name": "Added", "value": str(sync.added), "inline": True},
            {"name": "Deleted", "value": str(sync.deleted), "inline": True},
        ])
        if sync.failed > 0:
            fields.append({"name": "Failed", "value": str(sync.failed), "inline": True})

    return {
        "embeds": [{
            "title": "GeoLite2 MikroTik Sync",
            "color": color,
            "fields": fields,
            "footer": {"text": f"v{__version__}"},
        }]
    }


def _format_slack_webhook(report: "RunReport") -> dict:
    """Format the report as a Slack message."""
    sync = report.sync
    emoji = ":white_check_mark:" if report.ok else ":warning:"
    text = (
        f"{emoji} *GeoLite2 MikroTik Sync*\n"
        f"Dataset: {_dataset_summary(report)}\n"
    )
    if sync is not None:
        text += f"Added: {sync.added} | Deleted: {sync.deleted}\n"
    text += f"Duration: {report.duration_seconds:.1f}s"
    if sync is not None and sync.failed > 0:
        text += f"\nFailed: {sync.failed}"
    return {"text": text}


def _format_generic_webhook(report: "RunReport") -> dict:
    """Format the report as a generic JSON payload."""
    sync = report.sync
    return {
        "event": "geosync_run_complete",
        "version": __version__,
        "ok": report.ok,
        "dataset": _dataset_summary(report),
        "countries_synced": sync.countries_synced if sync else 0,
        "countries_skipped": sync.countries_skipped if sync else 0,
        "added": sync.added if sync else 0,
        "deleted": sync.deleted if sync else 0,
        "failed": sync.failed if sync else 0,
        "duration_seconds": round(report.duration_seconds, 1),
    }
