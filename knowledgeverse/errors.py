"""Exception types raised by the entry store, search engine and services."""


class KnowledgeError(Exception):
    """Base class for errors surfaced to callers."""

    code = "KNOWLEDGE_ERROR"

    def to_dict(self) -> dict:
        return {"error": self.code, "message": str(self)}


class NotFoundOrForbidden(KnowledgeError):
    """
    The entry does not exist, or it belongs to another owner.

    Both cases share one error so that non-owners cannot learn whether an id exists.
    """

    code = "NOT_FOUND"

    def __init__(self, entry_id: str):
        self.entry_id = entry_id
        super().__init__(f"Knowledge entry not found or access denied: {entry_id}")


class EntryValidationError(KnowledgeError, ValueError):
    """Input rejected before any store was touched."""

    code = "INVALID_INPUT"
