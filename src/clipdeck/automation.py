import logging
import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from clipdeck.errors import ClipdeckError, InvalidState, NotFound, ValidationError
from clipdeck.highlight import add_language, format_as_code
from clipdeck.models import (
    ActivityKind,
    ActivityStep,
    Category,
    EffectCommand,
    EffectKind,
    Scope,
    TriggerKind,
    Workflow,
)
from clipdeck.storage import ItemStore
from clipdeck.utils import item_text, short_id

logger = logging.getLogger(__name__)

ITEM_ACTIVITIES = frozenset({
    ActivityKind.ADD_TAGS,
    ActivityKind.FORMAT_AS_CODE,
    ActivityKind.ADD_SYNTAX_HIGHLIGHTING,
    ActivityKind.COPY_TO_CLIPBOARD,
    ActivityKind.PASTE_CONTENT,
    ActivityKind.SYNC_TO_CLOUD,
})


@dataclass
class ActivityFailure:
    workflow_id: str
    index: int
    activity: ActivityKind
    error: ClipdeckError

    def to_dict(self) -> dict[str, Any]:
        return {
            "workflow_id": self.workflow_id,
            "index": self.index,
            "activity": self.activity.value,
            "error": str(self.error),
        }


@dataclass
class SkippedActivity:
    workflow_id: str
    index: int
    activity: ActivityKind


@dataclass
class FiringResult:
    """Outcome of one trigger firing across every matching workflow."""

    effects: list[EffectCommand] = field(default_factory=list)
    failures: list[ActivityFailure] = field(default_factory=list)
    skipped: list[SkippedActivity] = field(default_factory=list)
    workflow_ids: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    def to_dict(self) -> dict[str, Any]:
        return {
            "workflows": list(self.workflow_ids),
            "effects": [e.to_dict() for e in self.effects],
            "failures": [f.to_dict() for f in self.failures],
            "skipped": [{"workflow_id": s.workflow_id, "index": s.index, "activity": s.activity.value} for s in self.skipped],
        }


def coerce_step(step: "ActivityStep | ActivityKind | str") -> ActivityStep:
    if isinstance(step, ActivityStep):
        return ActivityStep(ActivityKind(step.kind), dict(step.params))
    return ActivityStep(ActivityKind(step))


def validate_step(step: ActivityStep) -> None:
    if step.kind == ActivityKind.ADD_TAGS:
        tags = step.params.get("tags") or []
        if isinstance(tags, str) or not any(str(t).strip() for t in tags):
            raise ValidationError("add_tags needs a non-empty list of tags")
    elif step.kind == ActivityKind.RUN_SCRIPT:
        if not str(step.params.get("script", "")).strip():
            raise ValidationError("run_script needs a script")


def default_workflows() -> list[Workflow]:
    # Off by default: enabled, every captured clip would be moved to snippets and fenced.
    return [
        Workflow(
            id="wf1",
            name="Auto-format code snippets",
            triggers={TriggerKind.ON_COPY},
            activities=[ActivityStep(ActivityKind.FORMAT_AS_CODE), ActivityStep(ActivityKind.ADD_SYNTAX_HIGHLIGHTING)],
            enabled=False,
        ),
    ]


def workflow_to_dict(workflow: Workflow) -> dict[str, Any]:
    return {
        "id": workflow.id,
        "name": workflow.name,
        "enabled": workflow.enabled,
        "scope": workflow.scope.value,
        "applications": list(workflow.applications),
        "triggers": sorted(t.value for t in workflow.triggers),
        "activities": [{"kind": s.kind.value, "params": dict(s.params)} for s in workflow.activities],
        "pattern": workflow.pattern,
    }


def workflow_from_dict(data: dict[str, Any]) -> Workflow:
    return Workflow(
        id=data["id"],
        name=data["name"],
        enabled=bool(data.get("enabled", True)),
        scope=Scope(data.get("scope", Scope.ALL.value)),
        applications=list(data.get("applications", [])),
        triggers={TriggerKind(t) for t in data.get("triggers", [])},
        activities=[ActivityStep(ActivityKind(a["kind"]), dict(a.get("params", {}))) for a in data.get("activities", [])],
        pattern=data.get("pattern"),
    )


class AutomationEngine:
    """Holds workflow definitions and runs them when a trigger fires.

    The engine never owns items: every read and write goes through the
    :class:`ItemStore`, and side effects outside the store are returned as
    :class:`EffectCommand` values for the caller to dispatch.
    """

    def __init__(self, store: ItemStore, workflows: Iterable[Workflow] = ()):
        self._store = store
        self._workflows: dict[str, Workflow] = {}
        self._handlers: dict[ActivityKind, Callable[[Workflow, ActivityStep, TriggerKind, int | None], EffectCommand | None]] = {
            ActivityKind.ADD_TAGS: self._add_tags,
            ActivityKind.FORMAT_AS_CODE: self._format_as_code,
            ActivityKind.ADD_SYNTAX_HIGHLIGHTING: self._add_syntax_highlighting,
            ActivityKind.COPY_TO_CLIPBOARD: self._item_effect(EffectKind.COPY_TO_CLIPBOARD),
            ActivityKind.PASTE_CONTENT: self._item_effect(EffectKind.PASTE_CONTENT),
            ActivityKind.SYNC_TO_CLOUD: self._item_effect(EffectKind.SYNC_TO_CLOUD),
            ActivityKind.RUN_SCRIPT: self._run_script,
            ActivityKind.SEND_NOTIFICATION: self._send_notification,
        }
        for workflow in workflows:
            self.add(workflow)

    # -- registry ------------------------------------------------------------

    def create(
        self,
        name: str,
        triggers: Iterable[TriggerKind | str],
        activities: Iterable["ActivityStep | ActivityKind | str"],
        enabled: bool = True,
        scope: Scope | str = Scope.ALL,
        applications: Iterable[str] = (),
        pattern: str | None = None,
    ) -> Workflow:
        workflow = Workflow(
            id=short_id(),
            name=name.strip(),
            triggers={TriggerKind(t) for t in triggers},
            activities=[coerce_step(a) for a in activities],
            enabled=enabled,
            scope=Scope(scope),
            applications=[a.strip() for a in applications if a.strip()],
            pattern=pattern or None,
        )
        self._validate(workflow)
        self._workflows[workflow.id] = workflow
        logger.info("Created workflow %s (%s)", workflow.id, workflow.name)
        return workflow

    def add(self, workflow: Workflow) -> Workflow:
        self._validate(workflow)
        self._workflows[workflow.id] = workflow
        return workflow

    def get(self, workflow_id: str) -> Workflow:
        try:
            return self._workflows[workflow_id]
        except KeyError:
            raise NotFound("workflow", workflow_id) from None

    def workflows(self) -> list[Workflow]:
        return list(self._workflows.values())

    def update(
        self,
        workflow_id: str,
        name: str | None = None,
        triggers: Iterable[TriggerKind | str] | None = None,
        activities: Iterable["ActivityStep | ActivityKind | str"] | None = None,
    ) -> Workflow:
        current = self.get(workflow_id)
        candidate = Workflow(
            id=current.id,
            name=current.name if name is None else name.strip(),
            triggers=set(current.triggers) if triggers is None else {TriggerKind(t) for t in triggers},
            activities=list(current.activities) if activities is None else [coerce_step(a) for a in activities],
            enabled=current.enabled,
            scope=current.scope,
            applications=list(current.applications),
            pattern=current.pattern,
        )
        self._validate(candidate)
        self._workflows[workflow_id] = candidate
        return candidate

    def set_enabled(self, workflow_id: str, enabled: bool) -> Workflow:
        workflow = self.get(workflow_id)
        workflow.enabled = enabled
        return workflow

    def toggle(self, workflow_id: str) -> Workflow:
        workflow = self.get(workflow_id)
        return self.set_enabled(workflow_id, not workflow.enabled)

    def remove(self, workflow_id: str) -> None:
        self.get(workflow_id)
        del self._workflows[workflow_id]

    def dump(self) -> list[dict[str, Any]]:
        return [workflow_to_dict(w) for w in list(self._workflows.values())]

    def load(self, data: Iterable[dict[str, Any]]) -> None:
        """Replace the registry; nothing changes if any entry is invalid."""
        loaded: dict[str, Workflow] = {}
        for entry in data:
            workflow = workflow_from_dict(entry)
            self._validate(workflow)
            loaded[workflow.id] = workflow
        self._workflows = loaded

    @staticmethod
    def _validate(workflow: Workflow) -> None:
        if not workflow.name:
            raise ValidationError("workflow name is required")
        if workflow.scope == Scope.SPECIFIC and not workflow.applications:
            raise ValidationError("a workflow scoped to specific applications needs at least one application")
        if workflow.pattern is not None:
            try:
                re.compile(workflow.pattern)
            except re.error as exc:
                raise ValidationError(f"invalid text match pattern: {exc}") from None
        for step in workflow.activities:
            validate_step(step)

    # -- firing --------------------------------------------------------------

    def candidates(self, trigger: TriggerKind | str, item_id: int | None = None, application: str | None = None) -> list[Workflow]:
        trigger = TriggerKind(trigger)
        selected = []
        for workflow in list(self._workflows.values()):
            if not workflow.enabled or trigger not in workflow.triggers:
                continue
            if workflow.scope == Scope.SPECIFIC and application not in workflow.applications:
                continue
            if trigger == TriggerKind.ON_TEXT_MATCH and not self._text_matches(workflow, item_id):
                continue
            selected.append(workflow)
        return selected

    def fire(self, trigger: TriggerKind | str, item_id: int | None = None, application: str | None = None) -> FiringResult:
        """Run every enabled workflow listening for ``trigger``.

        Workflows run in creation order and their activities in declared
        order. A failing activity stops the rest of its own workflow only.
        """
        trigger = TriggerKind(trigger)
        result = FiringResult()
        for workflow in self.candidates(trigger, item_id, application):
            result.workflow_ids.append(workflow.id)
            if item_id is None:
                self._run(workflow, trigger, None, result)
            else:
                with self._store.item_lock(item_id):
                    self._run(workflow, trigger, item_id, result)
        logger.debug(
            "Fired %s: %d workflows, %d effects, %d failures",
            trigger.value, len(result.workflow_ids), len(result.effects), len(result.failures),
        )
        return result

    def _run(self, workflow: Workflow, trigger: TriggerKind, item_id: int | None, result: FiringResult) -> None:
        for index, step in enumerate(workflow.activities):
            if step.kind in ITEM_ACTIVITIES and item_id is None:
                result.skipped.append(SkippedActivity(workflow.id, index, step.kind))
                continue
            try:
                effect = self._handlers[step.kind](workflow, step, trigger, item_id)
            except ClipdeckError as exc:
                logger.warning("Workflow %s (%s) failed at activity %d %s: %s", workflow.id, workflow.name, index, step.kind.value, exc)
                result.failures.append(ActivityFailure(workflow.id, index, step.kind, exc))
                return
            if effect is not None:
                result.effects.append(effect)

    def _text_matches(self, workflow: Workflow, item_id: int | None) -> bool:
        if workflow.pattern is None or item_id is None:
            return False
        try:
            item = self._store.get(item_id)
        except NotFound:
            return False
        text = f"{item.title}\n{item_text(item)}"
        return re.search(workflow.pattern, text) is not None

    # -- activities ----------------------------------------------------------

    def _add_tags(self, workflow, step, trigger, item_id):
        for tag in step.params.get("tags", []):
            if str(tag).strip():
                self._store.add_tag(item_id, str(tag))
        return None

    def _format_as_code(self, workflow, step, trigger, item_id):
        item = self._editable_text_item(item_id)
        self._store.recategorize(item_id, Category.SNIPPETS)
        formatted = format_as_code(item.content)
        if formatted != item.content:
            self._store.update(item_id, content=formatted)
        return None

    def _add_syntax_highlighting(self, workflow, step, trigger, item_id):
        item = self._editable_text_item(item_id)
        labelled = add_language(item.content)
        if labelled != item.content:
            self._store.update(item_id, content=labelled)
        return None

    def _editable_text_item(self, item_id: int):
        item = self._store.get(item_id)
        if item.is_structured:
            raise InvalidState(f"item {item_id} is structured and has no code content")
        return item

    def _item_effect(self, kind: EffectKind):
        def emit(workflow, step, trigger, item_id):
            item = self._store.get(item_id)
            payload = {"trigger": trigger.value, "item_id": item.id, "title": item.title, "text": item_text(item)}
            payload.update(step.params)
            return EffectCommand(kind, payload, workflow.id)

        return emit

    def _run_script(self, workflow, step, trigger, item_id):
        payload = {"trigger": trigger.value, "item_id": item_id}
        payload.update(step.params)
        return EffectCommand(EffectKind.RUN_SCRIPT, payload, workflow.id)

    def _send_notification(self, workflow, step, trigger, item_id):
        payload = {"trigger": trigger.value, "item_id": item_id, "title": workflow.name, "message": f"{workflow.name} ran"}
        payload.update(step.params)
        return EffectCommand(EffectKind.SEND_NOTIFICATION, payload, workflow.id)
