"""
Task Markup — objective state encoded inside a quest's markdown body.

The quest document is the source of truth for objective progress. Its
task list looks like this:

    **Tasks:**
    - Find the smuggler's ledger ||it is under the bar|| ((Ledger Key))
    - ~~Talk to the harbourmaster~~
    - `Save the lighthouse keeper`
    - *Meet the contact at midnight*

Exactly one wrapper around the whole item gives its state:
``~~...~~`` completed, ``` `...` ``` failed, ``*...*`` (or ``_..._``) hidden,
no wrapper active. ``||...||`` carries the GM hint and each ``((...))`` a
treasure unlock; both are stripped from the decoded text.

Objective text may carry its own markup. Failed items use a longer code
fence when the text contains backticks, hidden items fall back to ``_`` when
``*`` would be ambiguous, and as a last resort markup characters in the text
are backslash-escaped. An active item that looks wrapped gets a leading
backslash.

Objectives are identified only by their position in the list, so every list
item counts, including empty ones.

Pure string transforms. Callers persist the returned text.
"""

import re
from typing import List, Optional, Tuple

from models.quests import Objective, ObjectiveState
from tools.quest_errors import TaskListNotFoundError, ObjectiveIndexError

_TASKS_ANCHOR_RE = re.compile(
    r"^[ \t]*(?:#{1,6}[ \t]+)?(?:\*\*|__)?Tasks:(?:\*\*|__)?[ \t\r]*$",
    re.IGNORECASE,
)
_LIST_ITEM_RE = re.compile(r"^([ \t]*[-*+](?:[ \t]+|$))(.*?)([ \t\r]*)$")
_BLANK_RE = re.compile(r"^[ \t\r]*$")

_HINT_RE = re.compile(r"\|\|(.+?)\|\|")
_UNLOCK_RE = re.compile(r"\(\((.+?)\)\)")
_ESCAPABLE_RE = re.compile(r"([\\`*_~])")
_ESCAPED_RE = re.compile(r"\\([\\`*_~])")

# Emphasis-style wrappers: (state, delimiter character, run width).
# Failed uses a code span and is handled separately.
_EMPHASIS = (
    (ObjectiveState.COMPLETED, "~", 2),
    (ObjectiveState.HIDDEN, "*", 1),
    (ObjectiveState.HIDDEN, "_", 1),
)

_MARKERS = {
    ObjectiveState.COMPLETED: ("~~",),
    ObjectiveState.HIDDEN: ("*", "_"),
}

# When more than one wrapper is layered on an item, the state comes from the
# first of these that is present.
_PRECEDENCE = (ObjectiveState.COMPLETED, ObjectiveState.FAILED, ObjectiveState.HIDDEN)


# ---------------------------------------------------------------------------
# Wrapper helpers
# ---------------------------------------------------------------------------

def _runs(text: str, ch: str):
    """Yield (start, length) of every unescaped run of ``ch``."""
    i = 0
    while i < len(text):
        if text[i] == "\\":
            i += 2
            continue
        if text[i] != ch:
            i += 1
            continue
        j = i
        while j < len(text) and text[j] == ch:
            j += 1
        yield i, j - i
        i = j


def _balanced(inner: str, ch: str, width: int) -> bool:
    """True when every ``width``-long run of ``ch`` inside ``inner`` pairs up.

    A run followed by text opens, a run preceded by text closes. A closer
    with nothing open means the outer delimiters are two separate spans.
    """
    depth = 0
    for start, length in _runs(inner, ch):
        if length != width:
            continue
        before = inner[start - 1] if start > 0 else " "
        after = inner[start + length] if start + length < len(inner) else " "
        opens, closes = not after.isspace(), not before.isspace()
        if opens and closes:
            if ch == "_" or depth == 0:
                continue  # intraword
            depth -= 1
        elif closes:
            if depth == 0:
                return False
            depth -= 1
        elif opens:
            depth += 1
    return depth == 0


def _escaped_at(text: str, pos: int) -> bool:
    backslashes = 0
    while pos - backslashes - 1 >= 0 and text[pos - backslashes - 1] == "\\":
        backslashes += 1
    return backslashes % 2 == 1


def _runs_raw(text: str, ch: str):
    """Runs of ``ch`` with no escape handling (code spans are literal)."""
    for match in re.finditer(re.escape(ch) + "+", text):
        yield match.start(), len(match.group(0))


def _code_span(stripped: str) -> Optional[str]:
    """Inner text if ``stripped`` is exactly one code span, else None."""
    fence = len(stripped) - len(stripped.lstrip("`"))
    if fence == 0 or len(stripped) < 2 * fence + 1:
        return None
    closing = len(stripped) - len(stripped.rstrip("`"))
    if closing != fence:
        return None
    inner = stripped[fence:-fence]
    if any(length == fence for _start, length in _runs_raw(inner, "`")):
        return None
    if len(inner) > 1 and inner[0] == " " and inner[-1] == " " and inner.strip():
        inner = inner[1:-1]
    return inner


def _outer_wrapper(content: str) -> Optional[Tuple[ObjectiveState, str]]:
    """Return (state, inner) if the whole content sits inside one wrapper."""
    stripped = content.strip()
    if stripped.startswith("`"):
        inner = _code_span(stripped)
        return None if inner is None else (ObjectiveState.FAILED, inner)
    for state, ch, width in _EMPHASIS:
        marker = ch * width
        if len(stripped) < 2 * width:
            continue
        if not (stripped.startswith(marker) and stripped.endswith(marker)):
            continue
        if _escaped_at(stripped, len(stripped) - width):
            continue
        # **bold** is not emphasis, ***x*** is emphasis around bold
        if width == 1 and len(stripped) > 2 and stripped[1] == ch and not stripped.startswith(ch * 3):
            continue
        inner = stripped[width:-width]
        if not _balanced(inner, ch, width):
            continue
        return state, inner
    return None


def _unwrap(content: str) -> Tuple[List[ObjectiveState], str]:
    """Strip every wrapper layer. Returns (layers outermost-first, inner)."""
    layers: List[ObjectiveState] = []
    current = content.strip()
    while True:
        found = _outer_wrapper(current)
        if found is None:
            return layers, current.strip()
        state, current = found
        layers.append(state)


def _code_fence(content: str) -> str:
    used = {length for _start, length in _runs_raw(content, "`")}
    width = 1
    while width in used:
        width += 1
    fence = "`" * width
    if not content or content.startswith("`") or content.endswith("`"):
        return f"{fence} {content} {fence}"
    return f"{fence}{content}{fence}"


def _wrap(content: str, state: ObjectiveState) -> str:
    """Wrap ``content`` so that it decodes back to ``state`` and ``content``.

    The plain form is tried first. When the content's own markup would make
    it ambiguous, the other emphasis delimiter is used, and as a last resort
    the markup characters in the content are backslash-escaped.
    """
    if state == ObjectiveState.ACTIVE:
        if _outer_wrapper(content) is not None:
            return "\\" + content
        return content
    if state == ObjectiveState.FAILED:
        return _code_fence(content)

    markers = _MARKERS[state]
    if state == ObjectiveState.HIDDEN and not content:
        markers = ("_",)  # "**" would read as empty bold
    for marker in markers:
        candidate = f"{marker}{content}{marker}"
        if _unwrap(candidate) == ([state], content):
            return candidate
    escaped = _ESCAPABLE_RE.sub(r"\\\1", content)
    return f"{markers[0]}{escaped}{markers[0]}"


def _state_from_layers(layers: List[ObjectiveState]) -> ObjectiveState:
    for state in _PRECEDENCE:
        if state in layers:
            return state
    return ObjectiveState.ACTIVE


# ---------------------------------------------------------------------------
# Block location
# ---------------------------------------------------------------------------

def _locate_task_items(lines: List[str]) -> Optional[List[int]]:
    """Line numbers of the task-list items, or None when there is no block."""
    anchor = None
    for i, line in enumerate(lines):
        if _TASKS_ANCHOR_RE.match(line):
            anchor = i
            break
    if anchor is None:
        return None

    i = anchor + 1
    while i < len(lines) and _BLANK_RE.match(lines[i]):
        i += 1

    items: List[int] = []
    while i < len(lines) and _LIST_ITEM_RE.match(lines[i]):
        items.append(i)
        i += 1
    return items or None


def _parse_item(index: int, content: str) -> Objective:
    layers, inner = _unwrap(content)
    hints = [h.strip() for h in _HINT_RE.findall(inner) if h.strip()]
    unlocks = [u.strip() for u in _UNLOCK_RE.findall(inner) if u.strip()]
    text = _ESCAPED_RE.sub(r"\1", _UNLOCK_RE.sub(" ", _HINT_RE.sub(" ", inner)))
    return Objective(
        index=index,
        text=" ".join(text.split()),
        state=_state_from_layers(layers),
        hint=" ".join(hints) or None,
        unlocks=unlocks,
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def decode_objectives(document_text: str) -> Optional[List[Objective]]:
    """Parse the task list. Returns None when the document has no Tasks: block."""
    lines = (document_text or "").split("\n")
    items = _locate_task_items(lines)
    if items is None:
        return None
    objectives = []
    for index, line_no in enumerate(items):
        match = _LIST_ITEM_RE.match(lines[line_no])
        objectives.append(_parse_item(index, match.group(2)))
    return objectives


def encode_objective_state(document_text: str, index: int, new_state: ObjectiveState) -> str:
    """Return the document with objective ``index`` set to ``new_state``.

    Unwrap-then-rewrap: any existing wrapper is removed before the new one is
    applied, so the item never carries two states. Only that one line changes.

    Raises:
        TaskListNotFoundError: the document has no task list.
        ObjectiveIndexError: ``index`` is outside the list.
    """
    new_state = ObjectiveState(new_state)
    lines = (document_text or "").split("\n")
    items = _locate_task_items(lines)
    if items is None:
        raise TaskListNotFoundError("Quest document has no Tasks: list.")
    if not 0 <= index < len(items):
        raise ObjectiveIndexError(f"Objective index {index} out of range (0..{len(items) - 1}).")

    line_no = items[index]
    prefix, content, trailing = _LIST_ITEM_RE.match(lines[line_no]).groups()
    _, inner = _unwrap(content)
    wrapped = _wrap(inner, new_state)
    if wrapped and not prefix.endswith((" ", "\t")):
        prefix += " "
    lines[line_no] = f"{prefix}{wrapped}{trailing}"
    return "\n".join(lines)


def render_objective(objective: Objective) -> str:
    """Canonical markup for one objective (list marker not included)."""
    parts = [objective.text]
    if objective.hint:
        parts.append(f"||{objective.hint}||")
    parts.extend(f"(({name}))" for name in objective.unlocks)
    content = " ".join(p for p in parts if p)
    return _wrap(content, objective.state)


def build_task_list(objectives: List[Objective]) -> str:
    lines = ["**Tasks:**"]
    lines.extend(f"- {render_objective(o)}" for o in objectives)
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Labeled lines (Status:, Category:)
# ---------------------------------------------------------------------------

def _label_re(label: str) -> "re.Pattern":
    return re.compile(
        rf"^([ \t]*(?:\*\*|__)?{re.escape(label)}:(?:\*\*|__)?)[ \t]*(.*?)[ \t\r]*$",
        re.IGNORECASE | re.MULTILINE,
    )


def read_label(document_text: str, label: str) -> Optional[str]:
    """Value of the first ``**Label:** value`` line, matched by label text."""
    match = _label_re(label).search(document_text or "")
    if not match:
        return None
    return match.group(2).strip()


def write_label(document_text: str, label: str, value: str) -> str:
    """Set a labeled line's value, appending the line if it is missing."""
    text = document_text or ""
    match = _label_re(label).search(text)
    if match:
        return f"{text[:match.start()]}{match.group(1)} {value}{text[match.end():]}"
    if not text.strip():
        return f"**{label}:** {value}"
    return f"{text.rstrip()}\n\n**{label}:** {value}"
