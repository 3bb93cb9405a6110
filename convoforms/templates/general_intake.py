"""General-purpose intake: purpose, details, contact info, timeline."""

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

GENERAL_INTAKE_TOPICS = [
    ConversationTopic(
        id="purpose",
        name="Purpose",
        description="Understand the main purpose or reason for reaching out",
        priority=TopicPriority.REQUIRED,
        depth=TopicDepth.MODERATE,
        extraction_field="purpose",
    ),
    ConversationTopic(
        id="details",
        name="Details",
        description="Gather detailed information about their request or situation",
        priority=TopicPriority.REQUIRED,
        depth=TopicDepth.DEEP,
        extraction_field="details",
    ),
    ConversationTopic(
        id="contact-info",
        name="Contact Information",
        description="Collect contact information for follow-up",
        priority=TopicPriority.IMPORTANT,
        depth=TopicDepth.SURFACE,
        extraction_field="email",
    ),
    ConversationTopic(
        id="timeline",
        name="Timeline",
        description="Understand any timing requirements or deadlines",
        priority=TopicPriority.OPTIONAL,
        depth=TopicDepth.SURFACE,
        extraction_field="timeline",
    ),
    ConversationTopic(
        id="additional-notes",
        name="Additional Notes",
        description="Capture any additional information or special requests",
        priority=TopicPriority.OPTIONAL,
        depth=TopicDepth.MODERATE,
        extraction_field="additionalNotes",
    ),
]

GENERAL_INTAKE_SCHEMA = [
    ExtractionSchemaField(
        field="purpose",
        type=FieldType.STRING,
        required=True,
        description="Main purpose or reason for the inquiry",
        validation=FieldValidation(min_length=10),
        topic_id="purpose",
    ),
    ExtractionSchemaField(
        field="details",
        type=FieldType.STRING,
        required=True,
        description="Detailed information about the request",
        validation=FieldValidation(min_length=20),
        topic_id="details",
    ),
    ExtractionSchemaField(field="name", type=FieldType.STRING, description="Name of the person"),
    ExtractionSchemaField(
        field="email",
        type=FieldType.STRING,
        description="Email address for follow-up",
        validation=FieldValidation(pattern=r"^[^@]+@[^@]+\.[^@]+$"),
        topic_id="contact-info",
    ),
    ExtractionSchemaField(
        field="phone",
        type=FieldType.STRING,
        description="Phone number for follow-up",
    ),
    ExtractionSchemaField(
        field="preferredContactMethod",
        type=FieldType.ENUM,
        description="How they prefer to be contacted",
        options=["email", "phone", "either"],
    ),
    ExtractionSchemaField(
        field="timeline",
        type=FieldType.STRING,
        description="Any timing requirements or deadlines",
        topic_id="timeline",
    ),
    ExtractionSchemaField(
        field="priority",
        type=FieldType.ENUM,
        description="Priority level of the request",
        options=["low", "medium", "high"],
    ),
    ExtractionSchemaField(
        field="additionalNotes",
        type=FieldType.STRING,
        description="Any additional information or special requests",
        topic_id="additional-notes",
    ),
]

GENERAL_INTAKE_TEMPLATE = ConversationTemplate(
    id="general-intake",
    name="General Intake",
    description="A flexible template for general information gathering",
    category=TemplateCategory.GENERAL,
    is_built_in=True,
    defaults=TemplateDefaults(
        objective=(
            "Gather all relevant information about the inquiry or request to enable proper "
            "follow-up and processing."
        ),
        context="This is a general intake conversation. Be helpful, thorough, and efficient.",
        persona=ConversationPersona(
            style=PersonaStyle.FRIENDLY,
            tone="helpful and professional",
            behaviors=[
                "Be welcoming and helpful",
                "Ask clarifying questions when needed",
                "Ensure all necessary information is collected",
                "Confirm understanding before concluding",
            ],
            restrictions=[
                "Do not ask for unnecessary personal information",
                "Keep the conversation focused and efficient",
            ],
        ),
        conversation_limits=ConversationLimits(max_turns=12, max_duration=20, min_confidence=0.7),
    ),
    topics=GENERAL_INTAKE_TOPICS,
    extraction_schema=GENERAL_INTAKE_SCHEMA,
    metadata=TemplateMetadata(
        preview_description=(
            "Versatile template for any intake process. Collects purpose, details, contact "
            "info, timeline, and notes."
        ),
        use_cases=[
            "Contact forms",
            "Inquiry handling",
            "Lead qualification",
            "Service requests",
            "General applications",
        ],
        tags=["general", "intake", "contact", "inquiry"],
        estimated_duration=3,
        updated_at=date(2026, 1, 7),
    ),
)
