"""Unit tests for prompt assembly."""

from pocketllm import PromptBuilder
from pocketllm.config import DEFAULT_PROMPT_TEMPLATE
from pocketllm.prompt import format_prompt


def test_prompt_without_snippets():
    """No snippets leave only the question."""
    assert PromptBuilder().build("Test question", []) == "###Question: Test question"


def test_prompt_with_one_snippet():
    """A single snippet follows the answer marker."""
    prompt = PromptBuilder().build("What is eating your dog?", ["My dog is eating the shoes"])
    assert prompt == "###Question: What is eating your dog? ###Answer: My dog is eating the shoes"


def test_prompt_joins_snippets_in_order():
    """Several snippets are joined with '. ' in the given order."""
    prompt = PromptBuilder().build(
        "What is eating your dog?",
        ["My dog is eating everything", "My dog is called Freja and is eating your shoes"],
    )
    assert prompt == (
        "###Question: What is eating your dog? ###Answer: My dog is eating everything. "
        "My dog is called Freja and is eating your shoes"
    )


def test_format_prompt_substitutes_question():
    """The placeholder receives the raw question."""
    assert format_prompt(DEFAULT_PROMPT_TEMPLATE, "hi") == "USER: hi\n\nAssistant:"


def test_format_prompt_unescapes_newlines():
    """Literal \\n sequences become newlines."""
    assert format_prompt("Q: {{prompt}}\\nA:", "hi") == "Q: hi\nA:"
