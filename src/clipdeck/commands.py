"""Slash-command matching for the assistant input box."""

from collections.abc import Iterable
from dataclasses import dataclass, field

from clipdeck.config import SHORTCUT_MARKER
from clipdeck.models import AssistantWorkflow, Item
from clipdeck.utils import item_text

DEFAULT_ASSISTANT_WORKFLOWS: tuple[AssistantWorkflow, ...] = (
    AssistantWorkflow("w1", "/summarize", "Summarize", "Summarize this content concisely"),
    AssistantWorkflow("w2", "/improve", "Improve Writing", "Improve the writing quality of this text"),
    AssistantWorkflow("w3", "/tags", "Suggest Tags", "Suggest relevant tags for this content"),
    AssistantWorkflow("w4", "/code", "Code Review", "Review this code for issues"),
    AssistantWorkflow("w5", "/email", "Draft Email", "Draft a professional email"),
    AssistantWorkflow("w6", "/ideas", "Brainstorm", "Generate ideas related to this topic"),
)


@dataclass
class MatchResult:
    candidates: list[AssistantWorkflow] = field(default_factory=list)
    exact_selection: AssistantWorkflow | None = None

    @property
    def matched(self) -> bool:
        return bool(self.candidates)


@dataclass
class AssistantRequest:
    """What the conversational collaborator is asked to answer."""

    text: str
    workflow: AssistantWorkflow | None = None
    context: str = ""

    @property
    def prompt(self) -> str:
        base = self.workflow.prompt if self.workflow else self.text
        return base + self.context

    @property
    def display(self) -> str:
        # Shown as the user's message in the conversation.
        if self.workflow:
            return f"{self.workflow.command} - {self.workflow.name}"
        return self.text


def item_context(item: Item | None) -> str:
    if item is None:
        return ""
    return f'\n\nContext from "{item.title}":\n{item_text(item)}'


class CommandMatcher:
    """Resolve ``/``-prefixed input against a fixed list of assistant workflows.

    The list is small, so every call is a linear prefix scan in declared
    order. Ambiguous input resolves to the first candidate, not the closest.
    """

    def __init__(self, workflows: Iterable[AssistantWorkflow] = DEFAULT_ASSISTANT_WORKFLOWS, marker: str = SHORTCUT_MARKER):
        self._workflows = list(workflows)
        self._marker = marker

    @property
    def workflows(self) -> list[AssistantWorkflow]:
        return list(self._workflows)

    def match(self, text: str) -> MatchResult:
        if not text.startswith(self._marker):
            return MatchResult()
        needle = text.lower()
        candidates = [w for w in self._workflows if w.command.lower().startswith(needle)]
        exact = next((w for w in candidates if w.command.lower() == needle), None)
        return MatchResult(candidates, exact)

    def submit(self, text: str, item: Item | None = None) -> AssistantRequest | None:
        """Turn submitted input into a request, or None for blank input."""
        if not text.strip():
            return None
        result = self.match(text)
        if result.matched:
            return AssistantRequest(text=text, workflow=result.candidates[0], context=item_context(item))
        return AssistantRequest(text=text)
