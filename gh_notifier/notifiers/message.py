from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from ..feeds.base import FeedItem


# https://docs.github.com/en/rest/activity/notifications#about-notification-reasons
REASON_LABELS = {
    "approval_requested": "Approval requested",
    "assign": "Assigned",
    "author": "Author",
    "ci_activity": "CI activity",
    "comment": "Comment",
    "invitation": "Invitation",
    "manual": "Subscribed",
    "member_feature_requested": "Feature requested",
    "mention": "Mention",
    "review_requested": "Review requested",
    "security_advisory_credit": "Advisory credit",
    "security_alert": "Security alert",
    "state_change": "State change",
    "subscribed": "Watching",
    "team_mention": "Team mention",
}

MAX_TITLE_LENGTH = 120


@dataclass
class NotificationMessage:
    title: str
    body: str
    url: str | None
    item_id: str
    published: datetime


def reason_label(reason: str) -> str:
    label = REASON_LABELS.get(reason)
    if label:
        return label
    return reason.replace("_", " ").strip().capitalize() or "Notification"


def build_notification_message(item: FeedItem) -> NotificationMessage:
    title = f"{reason_label(item.reason)}: {item.title}" if item.title else reason_label(item.reason)
    if len(title) > MAX_TITLE_LENGTH:
        title = title[: MAX_TITLE_LENGTH - 3] + "..."
    body = item.subtitle
    if item.subject_type:
        body = f"{body} ({item.subject_type})" if body else item.subject_type
    return NotificationMessage(
        title=title,
        body=body,
        url=item.target_url,
        item_id=item.id,
        published=item.updated_at,
    )
