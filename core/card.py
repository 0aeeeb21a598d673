from __future__ import annotations

import json

from core.renderer import DisplaySections, split_sections
from shared.models import JSONValue

STATUS_NOTE_MAX_CHARS = 100
PLACEHOLDER_TEXT = "Allocating resources..."

_DONE_MARKERS = ("done", "stop", "finish", "idle", "completed")
_FAILURE_MARKERS = ("aborted", "error")


def _lark_md(content: str) -> dict[str, JSONValue]:
    return {"tag": "div", "text": {"tag": "lark_md", "content": content}}


def _collapsible_panel(
    title: str,
    content: str,
    *,
    expanded: bool = False,
) -> dict[str, JSONValue] | None:
    body = content.strip()
    if not body:
        return None
    return {
        "tag": "collapsible_panel",
        "expanded": expanded,
        "background_style": "grey",
        "header": {"title": {"tag": "plain_text", "content": title}},
        "border": {"top": True, "bottom": True},
        "elements": [_lark_md(body)],
    }


def status_line(status: str) -> str:
    lowered = status.lower()
    if any(marker in lowered for marker in _FAILURE_MARKERS):
        marker = "⚠️"
    elif any(marker in lowered for marker in _DONE_MARKERS):
        marker = "✅"
    else:
        marker = "⏳"
    flat = status.replace("\n", " | ")[:STATUS_NOTE_MAX_CHARS]
    return f"{marker} {flat}"


def choose_header(sections: DisplaySections) -> tuple[str, str]:
    if sections.answer.strip():
        return "Answer", "blue"
    if sections.tools.strip():
        return "Tools / Steps", "wathet"
    if sections.thinking.strip():
        return "Thinking", "turquoise"
    return "AI Assistant", "blue"


def build_card(sections: DisplaySections) -> dict[str, JSONValue]:
    """Lay sections out as a card: process panels, then answer, then status note."""
    title, template = choose_header(sections)
    elements: list[dict[str, JSONValue]] = []

    thinking_panel = _collapsible_panel("Thinking", sections.thinking)
    if thinking_panel is not None:
        elements.append(thinking_panel)

    tools_panel = _collapsible_panel("Execution", sections.tools)
    if tools_panel is not None:
        if elements:
            elements.append(_lark_md(" "))
        elements.append(tools_panel)

    answer = sections.answer.strip()
    if answer:
        if elements:
            elements.append({"tag": "hr"})
        elements.append(_lark_md(answer))
    elif not elements:
        elements.append(_lark_md(PLACEHOLDER_TEXT))

    status = sections.status.strip()
    if status:
        elements.append({"tag": "hr"})
        elements.append(
            {"tag": "note", "elements": [{"tag": "plain_text", "content": status_line(status)}]}
        )

    return {
        "config": {"wide_screen_mode": True},
        "header": {
            "template": template,
            "title": {"tag": "plain_text", "content": title},
        },
        "elements": elements,
    }


def render_card(sections: DisplaySections) -> str:
    return json.dumps(build_card(sections), ensure_ascii=False)


def markdown_card(markdown: str) -> str:
    """Card for free-form markdown such as command replies, split on its headings."""
    return render_card(split_sections(markdown))
