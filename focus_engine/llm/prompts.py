"""Prompt builders for the reasoning capability."""

from typing import List

from focus_engine.models.task import Message, PrioritySet, Task

SUMMARY_SYSTEM = "You summarize email threads for a busy professional. Be concise and factual."

EXTRACTION_SYSTEM = (
    "You extract the action items a user personally needs to do from a conversation "
    "summary. Respond with JSON only."
)

ALIGNMENT_SYSTEM = (
    "You evaluate how well a task serves a user's strategic priorities. "
    "Be conservative and respond with JSON only."
)


def build_thread_summary(messages: List[Message]) -> str:
    lines = [
        "Summarize this email thread concisely. Focus on:",
        "1. Main topic/issue",
        "2. Key decisions or action items",
        "3. Who needs to do what",
        "4. Deadlines mentioned",
        "5. Any risks or blockers",
        "",
        "Thread:",
    ]
    # Oldest first reads like the conversation did
    for msg in sorted(messages, key=lambda m: m.timestamp):
        lines.append(f"From: {msg.sender}")
        lines.append(f"Date: {msg.timestamp:%b %d, %H:%M}")
        lines.append(f"Subject: {msg.subject}")
        lines.append(f"Content: {msg.body}")
        lines.append("")
    lines.append("Summary (be concise, max 200 words):")
    return "\n".join(lines)


def build_task_extraction(content: str, user: str = "") -> str:
    owner = f"I ({user})" if user else "I"
    return f"""Extract action items from this content that {owner} need to do or respond to.

Return ZERO tasks for automated senders (noreply, notifications, receipts,
newsletters) and purely informational content. At most 1-2 tasks per thread;
consolidate duplicates. Skip meeting invitations, social events, and things
I asked someone else to do ("Follow up with X" is still mine).

For each task return:
- title: action verb + object, 20-60 characters
- description: one sentence of context
- due_date: ISO 8601 date or datetime if any deadline is mentioned, else null
- impact: 1 (nice to have) .. 5 (critical, company-wide)
- urgency: 1 (no deadline) .. 5 (today, overdue or blocking)
- effort: "S" (< 1h), "M" (1-4h), "L" (> 4h)
- stakeholder: "none", "internal", "external" or "executive"
- project: related project if mentioned, else ""

Content:
{content}

Respond as {{"tasks": [...]}}. Use an empty list when nothing is actionable."""


def build_strategic_alignment(task: Task, priorities: PrioritySet) -> str:
    lines = ["Evaluate how well this task aligns with the following strategic priorities.", ""]
    lines.append("TASK:")
    lines.append(f"Title: {task.title}")
    if task.description:
        lines.append(f"Description: {task.description}")
    if task.project:
        lines.append(f"Project: {task.project}")
    if task.source_id:
        lines.append(f"From: {task.source_id}")
    lines.append("")

    lines.append("STRATEGIC PRIORITIES:")
    sections = (
        ("OKRs (Objectives & Key Results):", priorities.okrs),
        ("Focus Areas:", priorities.focus_areas),
        ("Key Projects:", priorities.key_projects),
        ("Key Stakeholders (tasks from these people are high priority):", priorities.key_stakeholders),
    )
    for heading, items in sections:
        if items:
            lines.append(heading)
            lines.extend(f"  - {item}" for item in items)
            lines.append("")

    lines.extend(
        [
            "RULES:",
            "1. Only match if the task DIRECTLY advances or relates to the priority.",
            "2. Shared keywords alone are NOT sufficient.",
            "3. Generic administrative tasks (scheduling, coordinating, reporting) do not match",
            "   unless they specifically implement or advance that priority.",
            "4. When in doubt, do not match.",
            "",
            "Return a JSON object with:",
            "- score: 0.0 (no alignment) to 5.0 (perfect alignment)",
            "- okrs: OKR names that genuinely align (empty array if none)",
            "- focus_areas: focus area names that align (empty array if none)",
            "- projects: project names that align (empty array if none)",
            "- key_stakeholder: true if the task comes from a key stakeholder",
            "- reasoning: brief explanation of the evaluation",
        ]
    )
    return "\n".join(lines)
