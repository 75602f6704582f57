# slack_bot.py
import logging
import re
from typing import NamedTuple, Optional

from store import MAX_ID

logger = logging.getLogger(__name__)

USAGE_LINES = [
    "*Did someone leave their screen unlocked? Usage:*",
    "`/icecream add <username>` to add a user to the owing backlog",
    "`/icecream del <id>` to delete a user by id, use `list` to find id",
    "`/icecream list` to list owing users",
    "`/icecream help` to display this usage information",
]
EMPTY_BACKLOG = "The icecream backlog is empty. Tread lightly."

PUBLIC = "in_channel"
PRIVATE = "ephemeral"

_DIGITS = re.compile(r"[0-9]+")


class InvalidArgument(Exception):
    """A command argument could not be parsed."""


# ---------- Messages ----------
class Message(NamedTuple):
    response_type: str
    text: str

    def to_dict(self):
        return {"response_type": self.response_type, "text": self.text}


def public_message(text):
    return Message(PUBLIC, text)


def private_message(text):
    return Message(PRIVATE, text)


def parse_id(raw):
    """Parse an unsigned 64-bit decimal id; no sign, spaces or other bases."""
    if not _DIGITS.fullmatch(raw):
        raise InvalidArgument(f"invalid id {raw!r}")
    n = int(raw)
    if n > MAX_ID:
        raise InvalidArgument(f"id {raw!r} out of range")
    return n


# ---------- Dispatcher ----------
class CommandDispatcher:
    """Maps one slash-command text to a store call and a reply Message."""

    def __init__(self, store):
        self.store = store

    def dispatch(self, text) -> Optional[Message]:
        """
        Run the command in text and return its reply.

        Returns None for text that isn't a known command. StorageError and
        InvalidArgument propagate to the caller.
        """
        text = text.strip()
        if text == "help":
            return self.help()
        if text == "list":
            return self.list()
        if text.startswith("add "):
            return self.add(text[4:])
        if text.startswith("del "):
            return self.delete(text[4:])

        logger.info("Ignoring unrecognised command: '%s'", text)
        return None

    def help(self):
        logger.info("=== help command ===")
        return private_message("\n".join(USAGE_LINES))

    def list(self):
        logger.info("=== list command ===")
        records = self.store.list()
        logger.info("Backlog has %d entries", len(records))

        lines = [f"{r.id}. {r.name}" for r in records]
        return public_message("\n".join(lines) or EMPTY_BACKLOG)

    def add(self, name):
        logger.info("=== add command ===")
        id = self.store.add(name)
        logger.info("Added '%s' as %d", name, id)
        return public_message(f"Added {name} to the queue.")

    def delete(self, raw_id):
        logger.info("=== del command ===")
        id = parse_id(raw_id)
        name = self.store.delete(id)
        logger.info("Deleted %d ('%s')", id, name)
        return public_message(f"Deleted {name} ({id}) from the queue.")
