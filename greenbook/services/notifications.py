"""
Notifications — Slack webhook alert when a top-level sync run errors.

Notification failure never affects the sync.
"""
import logging
import requests

from greenbook.config import SLACK_WEBHOOK_URL

logger = logging.getLogger('services.notifications')

_KIND_LABELS = {
    'full_sync': 'Full sync',
    'selective_sync': 'Selective sync',
    'incremental_sync': 'Incremental sync',
}


def notify_sync_failed(results):
    """Post a failure alert for a SyncResults whose status is 'error'."""
    if not SLACK_WEBHOOK_URL:
        return

    try:
        label = _KIND_LABELS.get(results.kind, results.kind)
        phase_lines = [
            f"{name}: {phase.status} ({phase.records_processed} ok / {phase.records_failed} failed)"
            for name, phase in results.phases.items()
        ]

        blocks = [
            {
                "type": "header",
                "text": {"type": "plain_text", "text": f"Greenbook {label} FAILED"},
            },
            {
                "type": "section",
                "fields": [
                    {"type": "mrkdwn", "text": f"*Run:* `{results.run_id}`"},
                    {"type": "mrkdwn", "text": f"*Processed:* {results.total_processed}"},
                    {"type": "mrkdwn", "text": f"*Failed:* {results.total_failed}"},
                ],
            },
        ]

        if phase_lines:
            blocks.append({
                "type": "section",
                "text": {"type": "mrkdwn", "text": "\n".join(phase_lines)},
            })

        if results.message:
            blocks.append({
                "type": "section",
                "text": {"type": "mrkdwn", "text": f"*Error:* ```{results.message[:500]}```"},
            })

        requests.post(SLACK_WEBHOOK_URL, json={"blocks": blocks}, timeout=10)
        logger.info("Run %s failure notification sent", results.run_id[:8])

    except Exception:
        logger.error("Failed to send failure notification for run %s", results.run_id[:8], exc_info=True)
