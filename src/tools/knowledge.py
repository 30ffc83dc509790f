"""Knowledge base lookup for caller questions.

The dispatcher only depends on the ``KnowledgeLookup`` protocol.  The
bundled implementation, ``MarkdownKnowledgeBase``, reads KNOWLEDGE_BASE.md
(``### Question`` headings followed by answer bodies) and ranks sections by
keyword overlap with the query.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)

DEFAULT_KB_PATH = Path(__file__).resolve().parent.parent.parent / "KNOWLEDGE_BASE.md"
MAX_ANSWERS = 3


class KnowledgeLookupError(Exception):
    """The knowledge backend could not answer (unavailable, timed out)."""


@dataclass(frozen=True)
class Answer:
    q: str
    a: str


class KnowledgeLookup(Protocol):
    def search(self, query: str) -> list[Answer]:
        """Return zero or more question/answer pairs relevant to *query*.

        Raises ``KnowledgeLookupError`` when the backend is unavailable.
        """
        ...


def split_into_sections(content: str) -> list[Answer]:
    """Split a markdown FAQ into question/answer pairs.

    Everything before the first ``###`` heading is treated as preamble and
    dropped; an answer ends at the first ``---`` separator, so group
    headings that follow it are not part of the answer.
    """
    parts = re.split(r"###\s+(.+?)(?=\n)", content)
    answers: list[Answer] = []
    for i in range(1, len(parts), 2):
        heading = parts[i].strip()
        body = parts[i + 1] if i + 1 < len(parts) else ""
        body = re.split(r"\n---", body, maxsplit=1)[0].strip()
        answers.append(Answer(q=heading, a=body))
    return answers


class MarkdownKnowledgeBase:
    """Keyword search over a markdown FAQ file, loaded once."""

    def __init__(self, path: Path = DEFAULT_KB_PATH) -> None:
        try:
            content = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.error("Knowledge base not found at %s", path)
            content = ""
        self._sections = split_into_sections(content)
        logger.debug("Loaded %d knowledge base entries from %s", len(self._sections), path)

    def __len__(self) -> int:
        return len(self._sections)

    def search(self, query: str) -> list[Answer]:
        words = {w for w in query.lower().split() if len(w) > 2}
        if not words:
            return []

        scored: list[tuple[int, int, Answer]] = []
        for index, section in enumerate(self._sections):
            text = f"{section.q} {section.a}".lower()
            score = sum(1 for w in words if w in text)
            # Heading hits weigh more than body hits
            question = section.q.lower()
            if any(w in question for w in words if len(w) > 3):
                score += 2
            if score:
                scored.append((score, index, section))

        # Highest score first; file order breaks ties
        scored.sort(key=lambda item: (-item[0], item[1]))
        return [section for _, _, section in scored[:MAX_ANSWERS]]
