from convoforms.templates.base import (
    ConversationTemplate,
    TemplateCategory,
    TemplateDefaults,
    TemplateMetadata,
)
from convoforms.templates.registry import (
    ConfigResolver,
    FormBinding,
    TemplateConfigResolver,
    TemplateRegistry,
    default_registry,
)

__all__ = [
    "ConfigResolver",
    "ConversationTemplate",
    "FormBinding",
    "TemplateCategory",
    "TemplateConfigResolver",
    "TemplateDefaults",
    "TemplateMetadata",
    "TemplateRegistry",
    "default_registry",
]
