"""Fixed prompt texts and the markers used to frame document content."""

from __future__ import annotations

DEFAULT_SYSTEM_MESSAGE = (
    "Format your answer as markdown. If you include a markdown code block, "
    "specify the language. All the functions or tools you can call are "
    "operating within the context of the user's workspace."
)

DECLINED_TOOL_CALL = "The user declined the execution of this tool call"

REPAIR_SYSTEM_PROMPT = "You transform every user message into a valid JSON document."

# (user, assistant) pairs shown before the text to repair.
REPAIR_EXAMPLES: list[tuple[str, str]] = [
    ("{include:**/*.*}", '{"include":"**/*.*"}'),
]


# ---------------------------------------------------------------------------
# Content markers
# ---------------------------------------------------------------------------
# Messages built from a document are wrapped in one of these tags so token
# reduction strategies can find them again by substring match.

CODE_CELL = "CodeCell"
CODE_CELL_PROBLEMS = "CodeCellProblems"
CODE_CELL_OUTPUT = "CodeCellOutput"


def open_tag(tag: str) -> str:
    return f"<{tag}>"


def close_tag(tag: str) -> str:
    return f"</{tag}>"


def wrap(tag: str, body: str) -> str:
    return f"{open_tag(tag)}\n{body}\n{close_tag(tag)}"


def wrap_code(body: str, language: str) -> str:
    return f"{open_tag(CODE_CELL)}```{language}\n{body}\n```{close_tag(CODE_CELL)}"


def is_wrapped(content: str | None, tag: str) -> bool:
    return bool(content) and open_tag(tag) in content
