import html
import re
from datetime import datetime, timezone
from typing import List, Optional, Dict, Any

from pydantic import BaseModel

from notification.models import AggregatedContent, RenderedContent

SUMMARY_MAX_LENGTH = 200
DEFAULT_TITLE = "New notification"
_OLDEST = datetime.min.replace(tzinfo=timezone.utc)


class ActionLink(BaseModel):
    action_type: str
    label: str
    url: Optional[str] = None


class DigestItem(BaseModel):
    notification_id: str
    title: str
    summary: str = ""
    metadata: Dict[str, Any] = {}
    created_at: Optional[str] = None


def _escape_html(text: str) -> str:
    """Escape HTML special characters to prevent injection."""
    return html.escape(text or '', quote=True)


class NotificationMessageBuilder:
    @staticmethod
    def summarize(body: Optional[str], limit: int = SUMMARY_MAX_LENGTH) -> str:
        """First line of the body, trimmed to ``limit`` characters."""
        if not body:
            return ""
        first_line = body.strip().splitlines()[0] if body.strip() else ""
        if len(first_line) <= limit:
            return first_line
        return first_line[:limit - 1].rstrip() + "…"

    @staticmethod
    def action_links(action_items: Optional[List[Dict[str, Any]]]) -> List[ActionLink]:
        links = []
        for item in action_items or []:
            if not isinstance(item, dict) or not item.get('action_type'):
                continue
            links.append(ActionLink(
                action_type=item['action_type'],
                label=item.get('label') or item['action_type'].replace('_', ' ').title(),
                url=item.get('url'),
            ))
        return links

    @staticmethod
    def to_html(text: str, links: Optional[List[ActionLink]] = None) -> str:
        """Paragraph-per-block HTML with **bold** support and action buttons."""
        paragraphs = []
        for block in re.split(r'\n\s*\n', text or ''):
            if not block.strip():
                continue
            escaped = _escape_html(block.strip())
            escaped = re.sub(r'\*\*(.+?)\*\*', r'<b>\1</b>', escaped)
            paragraphs.append(f"<p>{escaped.replace(chr(10), '<br/>')}</p>")
        for link in links or []:
            if link.url:
                paragraphs.append(
                    f'<p><a href="{_escape_html(link.url)}">{_escape_html(link.label)}</a></p>'
                )
        return "\n".join(paragraphs)

    @staticmethod
    def build_minimal_content(
        title: Optional[str],
        body: Optional[str],
        action_items: Optional[List[Dict[str, Any]]] = None
    ) -> RenderedContent:
        """Plain title/body message used when no template applies."""
        title = (title or '').strip() or DEFAULT_TITLE
        text = (body or '').strip()
        links = NotificationMessageBuilder.action_links(action_items)

        lines = [text] if text else []
        for link in links:
            if link.url:
                lines.append(f"{link.label}: {link.url}")
        text = "\n\n".join(lines) or title

        return RenderedContent(
            title=title,
            text=text,
            html=NotificationMessageBuilder.to_html(body or title, links),
        )

    @staticmethod
    def build_aggregated_content(notifications: List[Any]) -> AggregatedContent:
        """Digest payload for the notifications of one batch, oldest first."""
        ordered = sorted(notifications, key=lambda n: n.created_at or _OLDEST)
        items = []
        for notification in ordered:
            created_at = notification.created_at.isoformat() if notification.created_at else None
            item = DigestItem(
                notification_id=str(notification.id),
                title=notification.title or DEFAULT_TITLE,
                summary=NotificationMessageBuilder.summarize(notification.body),
                metadata=dict(notification.payload or {}),
                created_at=created_at,
            )
            items.append(item.model_dump())

        count = len(items)
        noun = "notification" if count == 1 else "notifications"
        title = f"You have {count} {noun}"
        if count:
            latest = items[-1]['title']
            summary = latest if count == 1 else f"{latest} and {count - 1} more"
        else:
            summary = ""
        return AggregatedContent(title=title, summary=summary, items=items)

    @staticmethod
    def build_digest_content(aggregated: AggregatedContent) -> RenderedContent:
        """Rendered digest used when the type has no digest template."""
        text_lines = []
        for item in aggregated.items:
            line = f"- {item['title']}"
            if item.get('summary'):
                line += f": {item['summary']}"
            text_lines.append(line)

        html_items = "".join(
            f"<li><b>{_escape_html(item['title'])}</b>"
            + (f"<br/>{_escape_html(item['summary'])}" if item.get('summary') else "")
            + "</li>"
            for item in aggregated.items
        )
        return RenderedContent(
            title=aggregated.title,
            text="\n".join(text_lines) or aggregated.title,
            html=f"<p>{_escape_html(aggregated.title)}</p><ul>{html_items}</ul>",
        )
