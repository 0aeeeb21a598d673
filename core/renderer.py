from __future__ import annotations

import hashlib
import json
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Literal

from shared.models import JSONValue, MessageBuffer, ToolStatus, ToolView

MAX_TEXT_CHARS = 16000
MAX_REASONING_CHARS = 4000
MAX_TOOL_OUTPUT_CHARS = 4000
MAX_TOOL_INPUT_CHARS = 2000

ANSWER_PLACEHOLDER = "_Waiting for response..._"

SectionName = Literal["answer", "thinking", "tools", "status"]

SECTION_TITLES: dict[SectionName, str] = {
    "answer": "Answer",
    "thinking": "Thinking",
    "tools": "Tools",
    "status": "Status",
}
# Checked in order; the first keyword contained in a heading wins.
_HEADING_KEYWORDS: tuple[tuple[SectionName, tuple[str, ...]], ...] = (
    ("thinking", ("think", "思")),
    ("tools", ("tool", "step", "工具")),
    ("status", ("status", "状态")),
    ("answer", ("answer", "回答")),
)


@dataclass(frozen=True)
class DisplaySections:
    answer: str = ""
    thinking: str = ""
    tools: str = ""
    status: str = ""


def clip_tail(text: str, max_chars: int) -> str:
    if not text:
        return ""
    if len(text) <= max_chars:
        return text
    return text[-max_chars:]


def safe_json_dumps(value: JSONValue | object, max_chars: int) -> str:
    try:
        dumped = json.dumps(value, indent=2, ensure_ascii=False)
    except (TypeError, ValueError):
        dumped = str(value)
    return clip_tail(dumped, max_chars)


def content_hash(content: str) -> str:
    return hashlib.sha256(content.encode("utf-8", errors="replace")).hexdigest()


def close_open_fence(text: str) -> str:
    """Close a code fence left open by a stream cut mid-block."""
    fences = sum(1 for line in text.split("\n") if line.lstrip().startswith("```"))
    if fences % 2:
        return text + "\n```"
    return text


def _indented_block(label: str, body: str, fence: str = "```") -> list[str]:
    lines = [f"  {label}:", f"  {fence}"]
    lines.extend(f"  {line}" for line in body.split("\n"))
    lines.append("  ```")
    return lines


def _render_tool(view: ToolView) -> list[str]:
    head = f"- {view.tool_name or 'tool'} ({view.status.value})"
    if view.title:
        head += f" {view.title}"
    lines = [head]
    if view.status in (ToolStatus.COMPLETED, ToolStatus.ERROR):
        if view.input_snapshot is not None:
            lines.extend(
                _indented_block(
                    "input",
                    safe_json_dumps(view.input_snapshot, MAX_TOOL_INPUT_CHARS),
                    fence="```json",
                )
            )
        if view.output:
            lines.extend(_indented_block("output", clip_tail(view.output, MAX_TOOL_OUTPUT_CHARS)))
        if view.error_message:
            lines.extend(
                _indented_block("error", clip_tail(view.error_message, MAX_TOOL_OUTPUT_CHARS))
            )
    if view.start_time or view.end_time:
        timing = f"  time: {view.start_time or ''}"
        if view.end_time:
            timing += f" -> {view.end_time}"
        lines.append(timing)
    return lines


def render_sections(buffer: MessageBuffer) -> DisplaySections:
    """Project a buffer onto the four display sections, clipped to budget."""
    tools: list[str] = []
    for view in buffer.tool_views.values():
        tools.extend(_render_tool(view))
    status = buffer.status.value
    if buffer.status_note:
        status += f": {buffer.status_note}"
    thinking = buffer.reasoning_text if buffer.reasoning_text.strip() else ""
    return DisplaySections(
        answer=close_open_fence(clip_tail(buffer.answer_text, MAX_TEXT_CHARS)),
        thinking=close_open_fence(clip_tail(thinking, MAX_REASONING_CHARS)),
        tools="\n".join(tools),
        status=status,
    )


def render(buffer: MessageBuffer) -> str:
    sections = render_sections(buffer)
    out: list[str] = [f"## {SECTION_TITLES['answer']}", sections.answer or ANSWER_PLACEHOLDER, ""]
    if sections.thinking:
        out.extend([f"## {SECTION_TITLES['thinking']}", sections.thinking, ""])
    if sections.tools:
        out.extend([f"## {SECTION_TITLES['tools']}", sections.tools, ""])
    out.extend([f"## {SECTION_TITLES['status']}", sections.status])
    return "\n".join(out)


def classify_heading(line: str) -> SectionName | None:
    stripped = line.strip()
    if not stripped.startswith("## "):
        return None
    title = stripped[3:].strip().lower()
    if not title:
        return None
    for section, keywords in _HEADING_KEYWORDS:
        if any(keyword in title for keyword in keywords):
            return section
    return None


Token = tuple[Literal["heading", "line"], str]


def _tokenize(markdown: str) -> Iterator[Token]:
    in_fence = False
    for line in markdown.split("\n"):
        if line.lstrip().startswith("```"):
            in_fence = not in_fence
            yield ("line", line)
            continue
        if not in_fence:
            section = classify_heading(line)
            if section is not None:
                yield ("heading", section)
                continue
        yield ("line", line)


def split_sections(markdown: str) -> DisplaySections:
    """Recover display sections from rendered markdown.

    Known ``##`` headings switch sections; anything else, including headings
    that sit inside fenced code or carry an unknown title, stays in the
    current section. A leading ``>`` quote block counts as thinking when the
    text has no explicit thinking heading.
    """
    tokens = list(_tokenize(markdown))
    buckets: dict[SectionName, list[str]] = {name: [] for name in SECTION_TITLES}
    has_thinking_heading = ("heading", "thinking") in tokens

    index = 0
    if not has_thinking_heading:
        while index < len(tokens) and tokens[index] == ("line", ""):
            index += 1
        while index < len(tokens):
            kind, text = tokens[index]
            if kind != "line" or not text.lstrip().startswith(">"):
                break
            quoted = text.lstrip()[1:]
            buckets["thinking"].append(quoted[1:] if quoted.startswith(" ") else quoted)
            index += 1

    current: SectionName = "answer"
    for kind, text in tokens[index:]:
        if kind == "heading":
            current = text  # type: ignore[assignment]
            continue
        buckets[current].append(text)

    answer = "\n".join(buckets["answer"]).strip()
    if answer == ANSWER_PLACEHOLDER:
        answer = ""
    return DisplaySections(
        answer=answer,
        thinking="\n".join(buckets["thinking"]).strip(),
        tools="\n".join(buckets["tools"]).strip("\n"),
        status="\n".join(buckets["status"]).strip(),
    )
