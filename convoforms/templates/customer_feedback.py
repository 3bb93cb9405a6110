"""Customer feedback / NPS conversation."""

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

CUSTOMER_FEEDBACK_TOPICS = [
    ConversationTopic(
        id="satisfaction",
        name="Overall Satisfaction",
        description="Determine overall satisfaction level with the product or service",
        priority=TopicPriority.REQUIRED,
        depth=TopicDepth.MODERATE,
        extraction_field="satisfactionRating",
    ),
    ConversationTopic(
        id="experience",
        name="Experience Details",
        description=(
            "Get specific details about their experience - what worked well and what "
            "could be improved"
        ),
        priority=TopicPriority.REQUIRED,
        depth=TopicDepth.DEEP,
        extraction_field="experienceDetails",
    ),
    ConversationTopic(
        id="recommendation",
        name="Likelihood to Recommend",
        description="Determine how likely they are to recommend to others (NPS-style)",
        priority=TopicPriority.IMPORTANT,
        depth=TopicDepth.SURFACE,
        extraction_field="npsScore",
    ),
    ConversationTopic(
        id="suggestions",
        name="Improvement Suggestions",
        description="Gather specific suggestions for how to improve the product or service",
        priority=TopicPriority.IMPORTANT,
        depth=TopicDepth.MODERATE,
        extraction_field="suggestions",
    ),
]

CUSTOMER_FEEDBACK_SCHEMA = [
    ExtractionSchemaField(
        field="satisfactionRating",
        type=FieldType.ENUM,
        required=True,
        description="Overall satisfaction level",
        options=["very_satisfied", "satisfied", "neutral", "dissatisfied", "very_dissatisfied"],
        topic_id="satisfaction",
    ),
    ExtractionSchemaField(
        field="experienceDetails",
        type=FieldType.STRING,
        required=True,
        description="Detailed feedback about their experience",
        validation=FieldValidation(min_length=20),
        topic_id="experience",
    ),
    ExtractionSchemaField(
        field="positiveAspects",
        type=FieldType.ARRAY,
        description="Things they liked or found valuable",
    ),
    ExtractionSchemaField(
        field="negativeAspects",
        type=FieldType.ARRAY,
        description="Things they disliked or found frustrating",
    ),
    ExtractionSchemaField(
        field="npsScore",
        type=FieldType.NUMBER,
        description="Likelihood to recommend on a scale of 0-10",
        validation=FieldValidation(min=0, max=10),
        topic_id="recommendation",
    ),
    ExtractionSchemaField(
        field="suggestions",
        type=FieldType.STRING,
        description="Specific improvement suggestions",
        topic_id="suggestions",
    ),
    ExtractionSchemaField(
        field="wouldUseAgain",
        type=FieldType.BOOLEAN,
        description="Whether they would use the product/service again",
    ),
]

CUSTOMER_FEEDBACK_TEMPLATE = ConversationTemplate(
    id="customer-feedback",
    name="Customer Feedback",
    description="Gather detailed customer feedback through friendly conversation",
    category=TemplateCategory.FEEDBACK,
    is_built_in=True,
    defaults=TemplateDefaults(
        objective=(
            "Gather meaningful feedback about the customer experience to help improve our "
            "products and services."
        ),
        context=(
            "This is a customer feedback conversation. Be friendly, appreciative, and "
            "genuinely interested in their perspective."
        ),
        persona=ConversationPersona(
            style=PersonaStyle.FRIENDLY,
            tone="warm and appreciative",
            behaviors=[
                "Thank them for taking the time to share feedback",
                "Show genuine interest in their experience",
                "Ask follow-up questions to understand their perspective",
                "Acknowledge both positive and negative feedback gracefully",
            ],
            restrictions=[
                "Do not be defensive about negative feedback",
                "Do not make promises about changes",
                "Keep the conversation focused on their experience",
            ],
        ),
        conversation_limits=ConversationLimits(max_turns=12, max_duration=20, min_confidence=0.7),
    ),
    topics=CUSTOMER_FEEDBACK_TOPICS,
    extraction_schema=CUSTOMER_FEEDBACK_SCHEMA,
    metadata=TemplateMetadata(
        preview_description=(
            "Perfect for gathering customer insights. Collects satisfaction rating, detailed "
            "feedback, NPS score, and improvement suggestions."
        ),
        use_cases=[
            "Post-purchase feedback",
            "Service satisfaction surveys",
            "Product feedback collection",
            "Customer experience research",
        ],
        tags=["feedback", "customer", "survey", "nps"],
        estimated_duration=4,
        updated_at=date(2026, 1, 7),
    ),
)
