"""Prompt assembly from a question, retrieved snippets and a prompt template."""

from collections.abc import Iterable
from typing import Final

from .config import PROMPT_PLACEHOLDER

QUESTION_PREFIX: Final[str] = "###Question: "
ANSWER_PREFIX: Final[str] = " ###Answer: "
SNIPPET_SEPARATOR: Final[str] = ". "


class PromptBuilder:
    """Builds the retrieval-augmented question sent to the model."""

    def build(self, question: str, snippets: Iterable[str]) -> str:
        """
        Join a question with ranked snippet texts.

        With no snippets the result is ``"###Question: {question}"``; otherwise
        the snippets follow an ``###Answer:`` marker in ranked order.
        """
        texts = list(snippets)
        if not texts:
            return f"{QUESTION_PREFIX}{question}"
        return f"{QUESTION_PREFIX}{question}{ANSWER_PREFIX}{SNIPPET_SEPARATOR.join(texts)}"


def format_prompt(template: str, question: str) -> str:
    """Substitute the question into ``template`` and turn literal ``\\n`` escapes into newlines."""
    return template.replace(PROMPT_PLACEHOLDER, question).replace("\\n", "\n")
