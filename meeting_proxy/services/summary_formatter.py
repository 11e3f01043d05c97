from typing import Any


def summary_to_transcript(summary: dict[str, Any]) -> str:
    """Renders an AI meeting summary as transcript-like markdown.

    Best-effort only: section labels and field presence vary between
    platform versions, so missing sections are skipped rather than rejected.
    """
    parts: list[str] = []

    overview = _clean_text(summary.get("summary_overview"))
    if overview:
        parts.append(f"## Overview\n{overview}")

    details = _summary_details(summary.get("summary_details"))
    if details:
        parts.append("\n## Discussion Topics")
        parts.extend(f"\n### {label}\n{text}" for label, text in details)

    next_steps = _next_steps(summary.get("next_steps"))
    if next_steps:
        parts.append("\n## Next Steps")
        parts.extend(f"- {step}" for step in next_steps)

    edited = summary.get("edited_summary")
    if isinstance(edited, dict) and edited:
        parts.append(_render_edited_summary(edited))

    return "\n".join(parts)


def _render_edited_summary(edited: dict[str, Any]) -> str:
    edited_parts = ["\n---\n## Edited Summary"]

    overview = _clean_text(edited.get("summary_overview"))
    if overview:
        edited_parts.append(f"\n### Overview\n{overview}")

    details = _summary_details(edited.get("summary_details"))
    if details:
        edited_parts.append("\n### Discussion Topics")
        edited_parts.extend(f"\n#### {label}\n{text}" for label, text in details)

    next_steps = _next_steps(edited.get("next_steps"))
    if next_steps:
        edited_parts.append("\n### Next Steps")
        edited_parts.extend(f"- {step}" for step in next_steps)

    return "\n".join(edited_parts)


def _summary_details(raw_details: Any) -> list[tuple[str, str]]:
    if not isinstance(raw_details, list):
        return []
    details: list[tuple[str, str]] = []
    for item in raw_details:
        if not isinstance(item, dict):
            continue
        label = _clean_text(item.get("label")) or "Topic"
        text = _clean_text(item.get("summary"))
        if text:
            details.append((label, text))
    return details


def _next_steps(raw_steps: Any) -> list[str]:
    if isinstance(raw_steps, str):
        raw_steps = [raw_steps]
    if not isinstance(raw_steps, list):
        return []
    return [step for step in (_clean_text(item) for item in raw_steps) if step]


def _clean_text(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    cleaned = value.strip()
    return cleaned or None
