"""Template registry and form config resolution.

There is no process-wide registry: build one with ``default_registry()`` (or
an empty ``TemplateRegistry()``) and pass it where it is needed.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Protocol

from convoforms.config import Settings, get_settings
from convoforms.core.errors import ConfigurationError
from convoforms.core.logging import get_logger
from convoforms.schemas.conversational import ConversationalFormConfig
from convoforms.templates.base import ConversationTemplate, TemplateCategory
from convoforms.templates.customer_feedback import CUSTOMER_FEEDBACK_TEMPLATE
from convoforms.templates.general_intake import GENERAL_INTAKE_TEMPLATE
from convoforms.templates.it_helpdesk import IT_HELPDESK_TEMPLATE

logger = get_logger(__name__)

BUILT_IN_TEMPLATES = (
    (IT_HELPDESK_TEMPLATE, 100),
    (CUSTOMER_FEEDBACK_TEMPLATE, 90),
    (GENERAL_INTAKE_TEMPLATE, 80),
)


@dataclass
class TemplateRegistration:
    template: ConversationTemplate
    priority: int = 0
    enabled: bool = True


@dataclass
class AppliedTemplate:
    template_id: str
    config: ConversationalFormConfig
    has_customizations: bool


class TemplateRegistry:
    def __init__(self) -> None:
        self._registrations: dict[str, TemplateRegistration] = {}

    def register(
        self,
        template: ConversationTemplate,
        priority: int = 0,
        enabled: bool = True,
    ) -> None:
        if template.id in self._registrations:
            logger.warning("template_overwritten", template_id=template.id)
        self._registrations[template.id] = TemplateRegistration(template, priority, enabled)

    def unregister(self, template_id: str) -> bool:
        return self._registrations.pop(template_id, None) is not None

    def get(self, template_id: str) -> ConversationTemplate | None:
        registration = self._registrations.get(template_id)
        if registration is None or not registration.enabled:
            return None
        return registration.template

    def has(self, template_id: str) -> bool:
        return self.get(template_id) is not None

    def set_enabled(self, template_id: str, enabled: bool) -> bool:
        registration = self._registrations.get(template_id)
        if registration is None:
            return False
        registration.enabled = enabled
        return True

    def query(
        self,
        *,
        category: TemplateCategory | None = None,
        tags: list[str] | None = None,
        built_in_only: bool = False,
        include_disabled: bool = False,
    ) -> list[ConversationTemplate]:
        """Templates matching every filter, highest priority first.

        ``tags`` matches templates carrying at least one of the given tags.
        """
        matches: list[TemplateRegistration] = []
        for registration in self._registrations.values():
            template = registration.template
            if not registration.enabled and not include_disabled:
                continue
            if category is not None and template.category != category:
                continue
            if built_in_only and not template.is_built_in:
                continue
            if tags and not set(tags) & set(template.metadata.tags):
                continue
            matches.append(registration)

        matches.sort(key=lambda r: r.priority, reverse=True)
        return [r.template for r in matches]

    def by_category(self, **filters: Any) -> dict[TemplateCategory, list[ConversationTemplate]]:
        grouped: defaultdict[TemplateCategory, list[ConversationTemplate]] = defaultdict(list)
        for template in self.query(**filters):
            grouped[template.category].append(template)
        return dict(grouped)

    def apply(
        self,
        template_id: str,
        overrides: dict[str, Any] | None = None,
    ) -> AppliedTemplate | None:
        template = self.get(template_id)
        if template is None:
            return None
        return AppliedTemplate(
            template_id=template.id,
            config=template.to_config(overrides),
            has_customizations=bool(overrides),
        )

    def __len__(self) -> int:
        return len(self._registrations)

    @property
    def enabled_count(self) -> int:
        return sum(1 for r in self._registrations.values() if r.enabled)


def default_registry() -> TemplateRegistry:
    """A fresh registry holding the built-in templates."""
    registry = TemplateRegistry()
    for template, priority in BUILT_IN_TEMPLATES:
        registry.register(template, priority)
    return registry


# ── Form config resolution ───────────────────────────────────────────


class ConfigResolver(Protocol):
    def resolve(self, form_id: str) -> ConversationalFormConfig: ...


@dataclass
class FormBinding:
    """How one form gets its config: a template (plus overrides) or an explicit config."""

    template_id: str | None = None
    overrides: dict[str, Any] | None = None
    config: ConversationalFormConfig | dict[str, Any] | None = None


class TemplateConfigResolver:
    """Resolves a form id to its ConversationalFormConfig.

    Usage::

        resolver = TemplateConfigResolver(default_registry())
        resolver.bind_template("form_123", "it-helpdesk")
        resolver.bind_config("form_456", {"objective": "...", "topics": [...]})
        config = resolver.resolve("form_123")

    Explicit configs that omit ``conversationLimits`` get the limits from
    settings (``default_max_turns`` and friends).
    """

    def __init__(
        self,
        registry: TemplateRegistry,
        bindings: dict[str, FormBinding] | None = None,
        *,
        settings: Settings | None = None,
    ) -> None:
        self.registry = registry
        self._bindings: dict[str, FormBinding] = dict(bindings or {})
        self._settings = settings or get_settings()

    def bind_template(
        self,
        form_id: str,
        template_id: str,
        overrides: dict[str, Any] | None = None,
    ) -> None:
        self._bindings[form_id] = FormBinding(template_id=template_id, overrides=overrides)

    def bind_config(
        self,
        form_id: str,
        config: ConversationalFormConfig | dict[str, Any],
    ) -> None:
        self._bindings[form_id] = FormBinding(config=config)

    def _default_limits(self) -> dict[str, Any]:
        return {
            "maxTurns": self._settings.default_max_turns,
            "maxDuration": self._settings.default_max_duration_minutes,
            "minConfidence": self._settings.default_min_confidence,
        }

    def resolve(self, form_id: str) -> ConversationalFormConfig:
        binding = self._bindings.get(form_id)
        if binding is None:
            raise ConfigurationError([f"No conversational config bound to form '{form_id}'"])

        if binding.config is not None:
            if isinstance(binding.config, ConversationalFormConfig):
                return binding.config.model_copy(deep=True)
            data = dict(binding.config)
            if "conversationLimits" not in data and "conversation_limits" not in data:
                data["conversationLimits"] = self._default_limits()
            return ConversationalFormConfig.model_validate(data)

        applied = self.registry.apply(binding.template_id or "", binding.overrides)
        if applied is None:
            raise ConfigurationError(
                [f"Form '{form_id}' uses unknown or disabled template '{binding.template_id}'"]
            )
        return applied.config
