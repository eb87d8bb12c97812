"""Slack Web API integration: tell humans when their tasks are unblocked."""

import logging
from dataclasses import dataclass

from task_relay.db.models import Task

logger = logging.getLogger(__name__)


class SlackError(Exception):
    """Raised when a Slack operation fails."""


@dataclass
class SlackMessage:
    channel: str
    ts: str
    text: str


def get_client(token: str | None):
    """Get a Slack WebClient. Returns None if no token provided."""
    if not token:
        return None
    from slack_sdk import WebClient
    return WebClient(token=token)


def send_message(
    token: str | None,
    channel: str,
    text: str,
    blocks: list[dict] | None = None,
) -> SlackMessage:
    """Send a message to a Slack channel."""
    client = get_client(token)
    if not client:
        raise SlackError("Slack not configured: SLACK_BOT_TOKEN not set")

    response = client.chat_postMessage(
        channel=channel,
        text=text,
        blocks=blocks,
    )

    return SlackMessage(
        channel=response["channel"],
        ts=response["ts"],
        text=text,
    )


def format_awaiting_human(task: Task, upstream_id: str | None = None) -> list[dict]:
    """Format an 'awaiting human' notice as Slack blocks."""
    source = f"\nUnblocked by `{upstream_id}`" if upstream_id else ""
    criteria = "\n".join(f"• {c}" for c in task.acceptance_criteria)
    return [
        {
            "type": "section",
            "text": {
                "type": "mrkdwn",
                "text": (
                    f":raising_hand: *Waiting on a human*\n*{task.title}* (`{task.id}`)\n"
                    f"Type: {task.task_type} | Project: {task.project_id}{source}"
                ),
            },
        },
        {
            "type": "section",
            "text": {"type": "mrkdwn", "text": f"*Done when:*\n{criteria}"},
        },
    ]


def notify_awaiting_human(
    token: str | None,
    channel: str | None,
    tasks: list[Task],
    upstream_id: str | None = None,
) -> int:
    """Post one notice per task. Failures are logged, never raised."""
    if not token or not channel:
        return 0
    sent = 0
    for task in tasks:
        try:
            send_message(
                token,
                channel,
                f"Task ready for a human: {task.title} ({task.id})",
                format_awaiting_human(task, upstream_id),
            )
            sent += 1
        except Exception:
            logger.exception("Failed to send Slack notification for task %s", task.id)
    return sent
