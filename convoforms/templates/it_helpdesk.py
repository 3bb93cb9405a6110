"""IT helpdesk ticket intake."""

from __future__ import annotations

from datetime import date

from convoforms.schemas.conversational import (
    ConversationLimits,
    ConversationPersona,
    ConversationTopic,
    ExtractionSchemaField,
    FieldType,
    FieldValidation,
    PersonaStyle,
    TopicDepth,
    TopicPriority,
)
from convoforms.templates.base import (
    ConversationTemplate,
    TemplateCategory,
    TemplateDefaults,
    TemplateMetadata,
)

IT_HELPDESK_TOPICS = [
    ConversationTopic(
        id="issue-category",
        name="Issue Category",
        description=(
            "Determine the type of IT issue: Hardware, Software, Network, "
            "Access & Permissions, or Other"
        ),
        priority=TopicPriority.REQUIRED,
        depth=TopicDepth.MODERATE,
        extraction_field="issueCategory",
    ),
    ConversationTopic(
        id="urgency",
        name="Urgency Level",
        description="Determine how urgent this issue is: Low, Medium, High, or Critical",
        priority=TopicPriority.REQUIRED,
        depth=TopicDepth.SURFACE,
        extraction_field="urgency",
    ),
    ConversationTopic(
        id="description",
        name="Issue Description",
        description=(
            "Get a detailed description of the issue including what happened, "
            "when it started, and any error messages"
        ),
        priority=TopicPriority.REQUIRED,
        depth=TopicDepth.DEEP,
        extraction_field="description",
    ),
    ConversationTopic(
        id="affected-system",
        name="Affected System",
        description="Identify the specific device, application, or system affected",
        priority=TopicPriority.IMPORTANT,
        depth=TopicDepth.MODERATE,
        extraction_field="affectedSystem",
    ),
    ConversationTopic(
        id="contact-preferences",
        name="Contact Preferences",
        description="How to reach the requester: email, phone, or chat, and best time to contact",
        priority=TopicPriority.IMPORTANT,
        depth=TopicDepth.SURFACE,
        extraction_field="contactMethod",
    ),
]

IT_HELPDESK_SCHEMA = [
    ExtractionSchemaField(
        field="issueCategory",
        type=FieldType.ENUM,
        required=True,
        description="Category of IT issue",
        options=["hardware", "software", "network", "access", "other"],
        topic_id="issue-category",
    ),
    ExtractionSchemaField(
        field="urgency",
        type=FieldType.ENUM,
        required=True,
        description="Urgency level of the issue",
        options=["low", "medium", "high", "critical"],
        topic_id="urgency",
    ),
    # Summarized by the model from the description, so no topic of its own
    ExtractionSchemaField(
        field="subject",
        type=FieldType.STRING,
        required=True,
        description="Brief subject line for the ticket (auto-generated from issue)",
        validation=FieldValidation(min_length=5, max_length=100),
    ),
    ExtractionSchemaField(
        field="description",
        type=FieldType.STRING,
        required=True,
        description="Detailed description of the issue",
        validation=FieldValidation(min_length=20),
        topic_id="description",
    ),
    ExtractionSchemaField(
        field="affectedSystem",
        type=FieldType.STRING,
        description="The device, application, or system affected",
        topic_id="affected-system",
    ),
    ExtractionSchemaField(
        field="contactMethod",
        type=FieldType.ENUM,
        description="Preferred contact method",
        options=["email", "phone", "chat"],
        topic_id="contact-preferences",
    ),
    ExtractionSchemaField(
        field="additionalContext",
        type=FieldType.STRING,
        description="Any additional context or troubleshooting already attempted",
    ),
]

IT_HELPDESK_CONTEXT = (
    "This is an internal IT helpdesk for company employees. Be helpful, professional, "
    "and efficient.\n\n"
    "Triage guidance:\n"
    "- Classify the issue as hardware, software, network, access or other as early as possible\n"
    "- Ask for exact error messages and when the problem started\n"
    "- Critical urgency means work is fully blocked for one or more people\n"
    "- Never ask for passwords, even to reproduce a login problem"
)

IT_HELPDESK_TEMPLATE = ConversationTemplate(
    id="it-helpdesk",
    name="IT Helpdesk",
    description="Collect IT support ticket information through natural conversation",
    category=TemplateCategory.SUPPORT,
    is_built_in=True,
    defaults=TemplateDefaults(
        objective=(
            "Collect all necessary information to create an IT support ticket that can be "
            "properly triaged and assigned to the appropriate team."
        ),
        context=IT_HELPDESK_CONTEXT,
        persona=ConversationPersona(
            style=PersonaStyle.PROFESSIONAL,
            tone="helpful and empathetic",
            behaviors=[
                "Ask clarifying questions when the issue is unclear",
                "Probe for specific details about technical issues",
                "Be empathetic about urgent problems",
                "Reference previous conversation details",
            ],
            restrictions=[
                "Do not ask for sensitive passwords or credentials",
                "Keep conversation focused on IT support",
                "Do not make promises about resolution times",
            ],
        ),
        conversation_limits=ConversationLimits(max_turns=15, max_duration=30, min_confidence=0.75),
    ),
    topics=IT_HELPDESK_TOPICS,
    extraction_schema=IT_HELPDESK_SCHEMA,
    metadata=TemplateMetadata(
        preview_description=(
            "Perfect for IT support portals. Gathers issue category, urgency, detailed "
            "description, and contact preferences."
        ),
        use_cases=[
            "Internal IT support tickets",
            "Help desk ticket intake",
            "Technical support requests",
        ],
        tags=["support", "it", "helpdesk", "tickets"],
        estimated_duration=3,
        updated_at=date(2026, 1, 7),
    ),
)
