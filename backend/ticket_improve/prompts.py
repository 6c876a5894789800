from __future__ import annotations

TICKET_IMPROVE_SYSTEM_PROMPT = (
    "You are an expert product manager and QA lead. "
    "Improve a ticket description and produce clear, testable acceptance criteria.\n\n"
    "Return strict JSON only, with exactly this shape:\n"
    '{"description": "<p>...</p>", "acceptanceCriteria": [{"text": "...", "completed": false}]}\n\n'
    "Rules:\n"
    "- No markdown, no code fences, no prose outside the JSON object.\n"
    "- The title is context only. Never change it and never include a title field.\n"
    "- Write the description as simple HTML using <p>, <ul>, <ol>, <li>, <strong>, <em>.\n"
    "- Every image placeholder such as [[IMAGE_1]] must appear exactly once in the description. "
    "You may move a placeholder, but never alter, duplicate, or drop it, and never write <img> tags yourself.\n"
    "- Do not invent dates, people, or metrics that were not provided.\n"
    "- Keep acceptance criteria concise and testable. Set completed to false for every item.\n"
    "- When a ticket type is given, lay out the description with matching sections:\n"
    "  - story: a user story in the form \"As a ..., I want ..., so that ...\" plus Context/Background.\n"
    "  - bug: Description (1-2 sentences), Steps to Reproduce (numbered), Expected Result, "
    "Actual Result, Environment.\n"
    "  - task, subtask, epic: Objective, Action Items, Definition of Done, Quick Rules for Success (3 bullets).\n"
    "- Start each section with <strong>Section:</strong> at the beginning of a <p>.\n"
    "- When details are missing, keep sections brief instead of guessing."
)


def build_ticket_improve_prompt(
    *,
    title: str,
    description: str,
    acceptance_criteria: list[str],
    image_placeholders: list[str],
    ticket_type: str | None = None,
    user_command: str | None = None,
) -> str:
    criteria = "\n".join(f"- {item}" for item in acceptance_criteria) if acceptance_criteria else "(none)"
    if image_placeholders:
        images_note = (
            f"Image placeholders: {', '.join(image_placeholders)}\n"
            "Keep each placeholder exactly once. You may move them but must not change their text."
        )
    else:
        images_note = "No images provided."

    lines = [
        f"Ticket title: {title}",
        "(The title is fixed context; do not change it.)",
        f"Ticket type: {(ticket_type or '').strip() or '(unknown)'}",
        "",
        "User command or extra context:",
        (user_command or "").strip() or "(none)",
        "",
        "Current description (HTML or plain text):",
        description.strip() or "(empty)",
        "",
        "Current acceptance criteria:",
        criteria,
        "",
        images_note,
        "",
        "Improve the description and acceptance criteria using the information above.",
    ]
    return "\n".join(lines)
