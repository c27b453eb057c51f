"""
Quest error types raised by the document-side helpers.

All of them are "not found" flavoured and non-fatal: a service boundary
catches them, logs, and short-circuits the single operation.
"""


class QuestPinError(Exception):
    """Base class for quest/objective errors."""
    pass


class QuestNotFoundError(QuestPinError):
    """No quest document with the given id."""
    pass


class TaskListNotFoundError(QuestPinError):
    """The quest document has no Tasks: block."""
    pass


class ObjectiveIndexError(QuestPinError, IndexError):
    """Objective index is outside the task list."""
    pass
