from __future__ import annotations

import html
import re
from datetime import datetime, timezone
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from ..config import settings
from ..constants import DEFAULT_MESSAGE_TEMPLATES
from ..models.models import MessageTemplate

# Message-wide tags only: every recipient of a send gets identical content.
MERGE_TAGS: List[Dict[str, str]] = [
    {
        "key": "community_name",
        "label": "Community name",
        "description": "Name of the community association.",
        "sample": "Sandpiper Run HOA",
    },
    {
        "key": "sender_name",
        "label": "Sender name",
        "description": "Display name used for administrator messages.",
        "sample": "SPR Admin",
    },
    {
        "key": "current_date",
        "label": "Current date",
        "description": "Date the message is composed (UTC).",
        "sample": "2025-11-08",
    },
    {
        "key": "current_datetime",
        "label": "Current date & time",
        "description": "Date/time the message is composed.",
        "sample": "2025-11-08 12:00 UTC",
    },
]

TAG_PATTERN = re.compile(r"{{\s*([a-zA-Z0-9_]+)\s*}}")


def merge_tag_definitions() -> List[Dict[str, str]]:
    return MERGE_TAGS


def build_merge_context(now: Optional[datetime] = None) -> Dict[str, str]:
    now = now or datetime.now(timezone.utc)
    return {
        "community_name": settings.community_name,
        "sender_name": settings.sender_display_name,
        "current_date": now.date().isoformat(),
        "current_datetime": now.strftime("%Y-%m-%d %H:%M UTC"),
    }


def render_merge_tags(text: str, context: Dict[str, str]) -> str:
    if not text:
        return text

    def _replace(match: re.Match[str]) -> str:
        key = match.group(1)
        return str(context.get(key, match.group(0)))

    return TAG_PATTERN.sub(_replace, text)


def render_template(template: MessageTemplate, context: Optional[Dict[str, str]] = None) -> Dict[str, str]:
    context = context or build_merge_context()
    return {
        "subject": render_merge_tags(template.subject_template, context),
        "body": render_merge_tags(template.content_template, context),
    }


def list_templates(session: Session) -> List[MessageTemplate]:
    return (
        session.query(MessageTemplate)
        .order_by(MessageTemplate.is_default.desc(), MessageTemplate.template_name.asc())
        .all()
    )


def ensure_default_templates(session: Session) -> int:
    existing = {template.template_name for template in session.query(MessageTemplate).all()}
    created = 0
    for entry in DEFAULT_MESSAGE_TEMPLATES:
        if entry["template_name"] in existing:
            continue
        session.add(MessageTemplate(**entry))
        created += 1
    if created:
        session.commit()
    return created


def body_to_html(body: str) -> str:
    """Escape ``body`` and turn newlines into ``<br>``."""
    escaped = html.escape(body or "")
    return escaped.replace("\r\n", "\n").replace("\n", "<br>")


def render_email_html(
    *,
    subject: str,
    body: str,
    sender_name: str,
    sender_email: Optional[str],
    priority: str,
    sent_at: datetime,
) -> str:
    community = html.escape(settings.community_name)
    safe_subject = html.escape(subject)
    safe_sender = html.escape(sender_name)
    contact = ""
    if sender_email:
        safe_email = html.escape(sender_email)
        contact = f'<br><a href="mailto:{safe_email}" style="color: #2953A6;">{safe_email}</a>'
    timestamp = sent_at.strftime("%Y-%m-%d %H:%M UTC")
    return f"""
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">
  <div style="background: #2953A6; color: white; padding: 30px; text-align: center; border-radius: 10px 10px 0 0;">
    <h1>{community}</h1>
    <p>Message from {safe_sender}</p>
  </div>
  <div style="background: white; padding: 30px; border-radius: 0 0 10px 10px; color: #333;">
    <h2 style="color: #2953A6; margin-bottom: 20px;">{safe_subject}</h2>
    <div style="line-height: 1.6; margin: 20px 0; font-size: 16px;">
      {body_to_html(body)}
    </div>
    <hr style="border: none; border-top: 1px solid #eee; margin: 30px 0;">
    <div style="color: #666; font-size: 14px;">
      <p><strong>Best regards,</strong><br>{safe_sender}<br>{community}{contact}</p>
      <p style="margin-top: 20px; font-size: 12px; opacity: 0.8;">
        This email was sent via the {community} portal.<br>
        Sent on: {timestamp}<br>
        Priority: {html.escape(priority.upper())}
      </p>
    </div>
  </div>
</div>
""".strip()
