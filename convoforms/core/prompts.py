"""Prompt construction for conversational forms.

``build_system_prompt`` is a pure function of the form config. Configs built
from a template with its own prompt (see ``PROMPT_STRATEGIES``) render that
one instead; ``system_prompt_for`` picks. The per-turn helpers (progress
context, next-topic guidance, wrap-up, limit warnings) read the current
ConversationState and are appended to the system message by the driver on
every turn.
"""

from __future__ import annotations

import json
from collections.abc import Callable, Mapping
from types import MappingProxyType

from convoforms.schemas.conversational import (
    ConversationalFormConfig,
    ConversationPersona,
    ConversationState,
    ConversationTopic,
    ExtractionSchemaField,
    FieldType,
    MessageRole,
    PersonaStyle,
    TopicPriority,
)

# ── Persona ─────────────────────────────────────────────────────────

STYLE_DESCRIPTIONS: dict[PersonaStyle, str] = {
    PersonaStyle.PROFESSIONAL: (
        "Maintain a professional, courteous tone. Use clear, formal language. "
        "Be efficient and respectful."
    ),
    PersonaStyle.FRIENDLY: (
        "Be warm, approachable, and conversational. Use friendly language and show "
        "genuine interest. Make the conversation feel natural and comfortable."
    ),
    PersonaStyle.CASUAL: (
        "Keep it relaxed and informal. Use everyday language and be conversational. "
        "Do not be overly formal."
    ),
    PersonaStyle.EMPATHETIC: (
        "Show empathy and understanding. Be sensitive to the respondent's situation "
        "and feelings. Acknowledge their concerns and be supportive."
    ),
}

OPENING_INSTRUCTION = (
    "Begin the conversation with a friendly greeting and ask about the first topic."
)

GUIDELINES = """\
## Guidelines
- Ask questions naturally and conversationally
- Probe deeper when needed, especially for required topics
- Be empathetic and helpful
- Keep the conversation focused on gathering the required information
- When you have enough information, summarize what you've learned and confirm completion
- If the user provides information for multiple topics in one response, acknowledge all of them
- Don't repeat questions you've already asked unless clarification is needed

## Conversation Flow
1. Start with a friendly greeting
2. Begin exploring topics in order of priority (required first, then important, then optional)
3. For each topic, ask follow-up questions to reach the desired depth
4. When all required topics are covered with sufficient depth, summarize and confirm"""


def build_persona_section(persona: ConversationPersona) -> str:
    if persona.style == PersonaStyle.CUSTOM and persona.custom_prompt:
        return persona.custom_prompt

    section = STYLE_DESCRIPTIONS.get(persona.style, STYLE_DESCRIPTIONS[PersonaStyle.FRIENDLY])

    if persona.tone:
        section += f"\n\nTone: {persona.tone}"

    if persona.behaviors:
        section += "\n\nBehaviors you should exhibit:\n" + "\n".join(
            f"- {b}" for b in persona.behaviors
        )

    if persona.restrictions:
        section += "\n\nThings to avoid:\n" + "\n".join(
            f"- {r}" for r in persona.restrictions
        )

    return section


# ── System prompt ───────────────────────────────────────────────────


def _describe_field(schema_field: ExtractionSchemaField) -> str:
    requirement = "required" if schema_field.required else "optional"
    line = f"- **{schema_field.field}** ({schema_field.type.value}, {requirement})"
    if schema_field.description:
        line += f": {schema_field.description}"
    if schema_field.type == FieldType.ENUM and schema_field.options:
        line += f" [one of: {', '.join(schema_field.options)}]"
    return line


def build_system_prompt(config: ConversationalFormConfig) -> str:
    """Render persona, objective, topics and extraction fields into one prompt."""
    sections = [
        "You are a helpful AI assistant conducting a conversation to gather "
        "information for a form.",
        f"## Objective\n{config.objective}",
    ]

    if config.context:
        sections.append(f"## Context\n{config.context}")

    if config.topics:
        topic_lines = "\n".join(
            f"- **{t.name}** ({t.priority.value} priority, {t.depth.value} depth): "
            f"{t.description}"
            for t in config.topics
        )
        sections.append(f"## Topics to Explore\n{topic_lines}")

    if config.extraction_schema:
        field_lines = "\n".join(_describe_field(f) for f in config.extraction_schema)
        sections.append(f"## Information to Collect\n{field_lines}")

    sections.append(f"## Your Role\n{build_persona_section(config.persona)}")
    sections.append(GUIDELINES)

    return "\n\n".join(sections)


# ── Template prompt strategies ──────────────────────────────────────

IT_HELPDESK_INTRO = (
    "You are a helpful IT support agent conducting a ticket intake conversation. "
    "Your goal is to gather all necessary information to create a support ticket."
)

IT_HELPDESK_TOPICS = """\
## Topics to Explore

### Issue Category (Required, Moderate Depth)
Determine the type of IT issue:
- **Hardware**: Problems with physical devices (laptops, monitors, printers, keyboards, mice, etc.). This includes:
  - Lost or stolen devices (e.g., "I lost my laptop" = Hardware issue)
  - Broken or damaged devices
  - Devices that won't turn on or power issues
  - Physical defects or malfunctions
- **Software**: Issues with applications, programs, or operating systems:
  - Application crashes or errors
  - Software not working correctly
  - Installation problems
  - Performance issues with specific programs
- **Network**: Connectivity, internet, or network access problems:
  - Can't connect to Wi-Fi
  - Internet is slow or not working
  - VPN connection issues
  - Network printer access
- **Access & Permissions**: Account access, password resets, permission changes:
  - Can't log in to account
  - Password reset needed
  - Need access to a system or resource
  - Permission denied errors
- **Other**: Anything that doesn't fit the above categories

**Important**: Use common sense to categorize issues. For example:
- "I lost my laptop" → Hardware (lost/stolen device)
- "My laptop won't turn on" → Hardware (power/device issue)
- "I can't log in to my email" → Access & Permissions
- "The application keeps crashing" → Software
- "I can't connect to Wi-Fi" → Network

Ask follow-up questions to clarify the specific issue within the category, but don't ask \
redundant questions if the category is already clear.

### Urgency Level (Required, Surface Depth)
Determine how urgent this issue is:
- Low: Minor inconvenience, can wait
- Medium: Affecting work but not blocking
- High: Significantly impacting work
- Critical: Blocking critical work or system-wide issue

### Description (Required, Deep Depth)
Get a detailed description of the issue:
- What exactly is happening?
- When did it start?
- What were they doing when it started?
- What have they tried already?
- Any error messages?
- How many people are affected?

### Contact Preferences (Important, Moderate Depth)
How to reach the requester:
- Preferred contact method (email, phone, chat)
- Best time to reach them
- Any availability constraints"""

IT_HELPDESK_ROLE = """\
## Your Role
- Be professional but friendly
- Show empathy for technical frustrations
- **Remember all previous conversation details** - reference what the user has already told you
- Ask clarifying questions to ensure you understand the issue
- For hardware issues, ask for asset ID or serial number if available
- For software issues, ask for application name and version
- For network issues, ask about location and affected devices
- For access issues, ask for system/resource name

## Guidelines
- Start with a friendly greeting: "Hi! I'm here to help you submit an IT support ticket. \
What kind of issue are you experiencing?"
- **CRITICAL: Always remember and reference previous messages in the conversation**
- If the user says "I lost my laptop", immediately recognize this as a Hardware issue \
(lost/stolen device) and ask about:
  - When it was lost
  - Asset ID or serial number if known
  - Whether it needs to be disabled/remotely wiped for security
  - Whether they need a replacement device
- If the issue is urgent, acknowledge it and prioritize gathering critical information
- Be thorough but efficient - don't ask redundant questions
- **Don't ask about issue category if it's already clear from the user's description**
- When you have all required information, summarize the ticket details and confirm

## Example Flow
1. Greeting + ask about issue type
2. Probe for details based on category
3. Determine urgency
4. Get detailed description
5. Ask about contact preferences
6. Summarize and confirm"""


def build_it_helpdesk_prompt(config: ConversationalFormConfig) -> str:
    """Ticket intake prompt with explicit category disambiguation."""
    sections = [IT_HELPDESK_INTRO, f"## Objective\n{config.objective}"]
    if config.context:
        sections.append(f"## Context\n{config.context}")
    sections += [IT_HELPDESK_TOPICS, IT_HELPDESK_ROLE]
    return "\n\n".join(sections)


PromptBuilder = Callable[[ConversationalFormConfig], str]

# Keyed by the template a config was built from; anything else gets the generic prompt.
PROMPT_STRATEGIES: Mapping[str, PromptBuilder] = MappingProxyType({
    "it-helpdesk": build_it_helpdesk_prompt,
})


def system_prompt_for(config: ConversationalFormConfig) -> str:
    builder = PROMPT_STRATEGIES.get(config.template_id or "", build_system_prompt)
    return builder(config)


def build_initial_system_message(config: ConversationalFormConfig) -> str:
    return f"{system_prompt_for(config)}\n\n{OPENING_INSTRUCTION}"


# ── Per-turn guidance ───────────────────────────────────────────────

_ROLE_LABELS = {
    MessageRole.USER: "User",
    MessageRole.ASSISTANT: "You",
    MessageRole.SYSTEM: "System",
}


def _topic_description(config: ConversationalFormConfig, topic_id: str) -> str:
    topic = config.topic(topic_id)
    return topic.description if topic else ""


def build_conversation_context(
    state: ConversationState,
    config: ConversationalFormConfig,
    *,
    history_limit: int = 10,
) -> str:
    """Progress report for an ongoing conversation."""
    covered = [t for t in state.topics if t.covered]
    missing_required = [
        t for t in state.topics if not t.covered and t.priority == TopicPriority.REQUIRED
    ]
    missing_important = [
        t for t in state.topics if not t.covered and t.priority == TopicPriority.IMPORTANT
    ]

    lines = [
        "## Conversation Progress",
        "",
        f"Turn: {state.turn_count} / {state.max_turns}",
        f"Confidence: {round(state.confidence * 100)}%",
    ]

    recent = [m for m in state.messages if m.role != MessageRole.SYSTEM][-history_limit:]
    if recent:
        lines += ["", "### Recent Conversation History:"]
        lines += [f"{_ROLE_LABELS[m.role]}: {m.content}" for m in recent]

    lines += ["", "### Topics Covered"]
    if covered:
        lines += [
            f"- {t.name} ({round(t.depth * 100)}% depth, {t.turn_count} mentions)"
            for t in covered
        ]
    else:
        lines.append("None yet")

    lines += ["", "### Topics Still Needed"]
    if missing_required:
        lines.append("**Required (must cover):**")
        lines += [
            f"- {t.name}: {_topic_description(config, t.topic_id)}" for t in missing_required
        ]
    if missing_important:
        lines.append("**Important (should cover):**")
        lines += [
            f"- {t.name}: {_topic_description(config, t.topic_id)}" for t in missing_important
        ]

    lines += ["", "### Next Steps"]
    if missing_required:
        lines.append(f"Focus on required topics first. Ask about: {missing_required[0].name}")
    elif missing_important:
        lines.append(f"Move to important topics. Ask about: {missing_important[0].name}")
    else:
        lines.append("All required topics covered. Summarize and confirm completion.")

    lines += [
        "",
        "**CRITICAL**: Reference what the user has already told you in the conversation "
        "history above. Don't ask questions about information they've already provided.",
    ]
    return "\n".join(lines)


def next_topic_guidance(
    state: ConversationState,
    config: ConversationalFormConfig,
) -> tuple[ConversationTopic | None, str]:
    """Pick the next topic to ask about: uncovered required first, then important."""
    for priority in (TopicPriority.REQUIRED, TopicPriority.IMPORTANT):
        pending = next(
            (t for t in state.topics if not t.covered and t.priority == priority),
            None,
        )
        if pending is None:
            continue
        topic = config.topic(pending.topic_id)
        if topic is None:
            continue
        if priority == TopicPriority.REQUIRED:
            guidance = (
                f"Ask about {topic.name}. This is a required topic with "
                f"{topic.depth.value} depth. {topic.description}"
            )
        else:
            guidance = f"Ask about {topic.name}. This is an important topic. {topic.description}"
        return topic, guidance

    return None, (
        "All required and important topics are covered. Summarize what you've learned "
        "and confirm if the user has anything else to add before completing."
    )


def build_wrap_up_prompt(state: ConversationState) -> str:
    missing_required = [
        t.name for t in state.topics if not t.covered and t.priority == TopicPriority.REQUIRED
    ]
    if missing_required:
        return (
            f"You still need to cover these required topics: {', '.join(missing_required)}. "
            "Continue the conversation to gather this information."
        )
    return (
        "You have gathered all required information. Summarize what you've learned in a "
        "clear, concise way, and confirm with the user that everything is correct. Then "
        "thank them and let them know their request has been submitted."
    )


def build_limit_warning(turns_remaining: int, minutes_remaining: float) -> str:
    return (
        "IMPORTANT: You are approaching the conversation limit "
        f"({turns_remaining} turns remaining, {round(minutes_remaining)} minutes remaining). "
        "Begin wrapping up the conversation gracefully. Summarize what has been collected "
        "and ask for any final critical information. Do not start new topics."
    )


def build_extraction_guidance(
    topic: ConversationTopic,
    config: ConversationalFormConfig,
) -> str:
    schema_field = next(
        (
            f for f in config.extraction_schema
            if f.topic_id == topic.id or f.field == topic.extraction_field
        ),
        None,
    )
    if schema_field is None:
        return f"Extract information about {topic.name} from the conversation."

    guidance = (
        f"Extract the {schema_field.field} field ({schema_field.type.value}) from the "
        f"conversation about {topic.name}."
    )
    if schema_field.type == FieldType.ENUM and schema_field.options:
        guidance += f" Valid values: {', '.join(schema_field.options)}."
    if schema_field.required:
        guidance += " This field is required."
    if schema_field.description:
        guidance += f" {schema_field.description}"
    return guidance


# ── Structured reply contract ───────────────────────────────────────

REPLY_FORMAT_INSTRUCTIONS = """\
## Response Format
Respond ONLY with a valid JSON object of the form:
{
  "reply": "<your next message to the user>",
  "extractions": {<field>: <value>, ...},
  "confidence": <0.0-1.0, how sure you are of the extracted values overall>,
  "fieldConfidence": {<field>: <0.0-1.0>, ...}
}
Only include fields in "extractions" that the user has actually provided. Use these fields:"""


def build_reply_format_instructions(schema: list[ExtractionSchemaField]) -> str:
    """Instructions asking the model to return its reply plus structured extractions."""
    fields = {
        f.field: {
            "type": f.type.value,
            "required": f.required,
            **({"options": f.options} if f.options else {}),
        }
        for f in schema
    }
    return f"{REPLY_FORMAT_INSTRUCTIONS}\n{json.dumps(fields, indent=2)}"


def build_greeting_prompt(config: ConversationalFormConfig) -> str:
    """Opening instructions plus the reply contract, for the model-written greeting."""
    return (
        f"{build_initial_system_message(config)}\n\n"
        f"{build_reply_format_instructions(config.extraction_schema)}"
    )
