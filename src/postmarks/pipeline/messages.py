"""Notification templates sent to owners.

Every message the pipeline or the service sends is built here, so the
wording stays in one place.
"""

from __future__ import annotations

from dataclasses import dataclass
from html import escape
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from postmarks.store.models import Link


@dataclass(frozen=True)
class Message:
    subject: str
    text: str
    html: str


def _anchor(url: str) -> str:
    return f'<a href="{escape(url, quote=True)}">{escape(url)}</a>'


def _added(link: Link) -> tuple[str, str]:
    stamp = link.created_at.isoformat(sep=" ")
    return f"{link.url} - Added {stamp}", f"{_anchor(link.url)} - Added {escape(stamp)}"


# ── Ingestion ─────────────────────────────────────────────────────────


def build_link_added_message(link: Link) -> Message:
    text, html = _added(link)
    return Message(subject="Link added", text=text, html=html)


def build_link_failed_message(url: str) -> Message:
    return Message(
        subject="Could not add link",
        text=f"Failed to get content for {url}",
        html=f"Failed to get content for {_anchor(url)}",
    )


def build_link_exists_message(url: str) -> Message:
    return Message(
        subject="Link already saved",
        text=f"{url} is already in your links",
        html=f"{_anchor(url)} is already in your links",
    )


# ── Queries ───────────────────────────────────────────────────────────


def build_links_list_message(links: list[Link]) -> Message:
    if not links:
        return Message(subject="Your links", text="You have no saved links.", html="<p>You have no saved links.</p>")
    lines = [_added(link) for link in links]
    return Message(
        subject="Your links",
        text="\n".join(text for text, _ in lines),
        html="<ul>" + "".join(f"<li>{html}</li>" for _, html in lines) + "</ul>",
    )


def build_query_result_message(query: str, link: Link | None) -> Message:
    if link is None:
        return Message(
            subject="No link found",
            text=f'No link found for "{query}"',
            html=f"No link found for <em>{escape(query)}</em>",
        )
    text, html = _added(link)
    return Message(subject="Link found", text=text, html=html)
