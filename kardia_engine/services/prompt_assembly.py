"""
Prompt Assembly

Pure builder combining the policy/persona template, the reply language,
the assembled context and the new user message into a GenerationRequest:

- system_instruction: policy template + user profile/assessment context
- contents: prior turns (oldest first) followed by the new user message

Equal inputs always produce an equal request. When the payload exceeds the
character ceiling, history turns are dropped oldest first.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

from kardia_engine.llm.base import GenerationRequest, Turn
from kardia_engine.services.context_assembly import AssembledContext, AssessmentSummary, ProfileSnapshot

logger = logging.getLogger(__name__)

LANGUAGE_PLACEHOLDER = "{language}"

DEFAULT_POLICY_TEMPLATE = """\
# ROLE
You are Kardia, a personal health data assistant inside a cardiovascular
risk app. You help users understand their own data and give preventive,
educational guidance. You are not a doctor.

Always answer in {language}, even when the user writes in another language.

# STYLE
Warm, patient and empathetic. Explain medical terms in plain words. Stay
calm and positive, focus on small practical steps, and never frighten.

# RULES
1. Ground every answer in the context provided (profile, risk assessment
   history, conversation so far).
2. Personalize actively and use the user's name now and then.
3. Keep the conversation going with a small next step or an open question.
4. Point the user back to a medical professional whenever advice touches
   medical territory.

# NEVER
1. Diagnose.
2. Name or dose any medication or supplement.
3. Handle emergencies: if acute life-threatening symptoms are mentioned,
   stop and tell the user to seek emergency care immediately.
4. Make absolute claims or guarantees.
5. Invent information that is not in the provided context.

# OUTPUT FORMAT
Respond with one valid JSON document and nothing else:
{"reply_components": [{"kind": "paragraph|header|list|quote", "content": "text for paragraph/header/quote", "items": ["text for list"]}]}
"""


@dataclass
class PromptComponents:
    """Breakdown of a built request, for logging."""
    request: GenerationRequest
    history_turns_kept: int
    history_turns_dropped: int
    total_chars: int


def render_profile_context(profile: ProfileSnapshot, assessments: List[AssessmentSummary]) -> str:
    """Plain-text user context block."""
    if profile.missing:
        lines = ["This user has not completed their profile yet."]
    else:
        age = f"{profile.age} years" if profile.age is not None else "Unknown"
        lines = [
            "USER PROFILE:",
            f"- Name: {profile.first_name or 'Unknown'}",
            f"- Current age: {age}",
            f"- Sex: {profile.sex or 'Unknown'}",
        ]

    if assessments:
        lines.append("")
        lines.append(f"## LAST {len(assessments)} RISK ASSESSMENTS")
        for summary in assessments:
            lines.append("")
            lines.append(f"### Assessment on: {summary.assessed_at.day} {summary.assessed_at:%b %Y}")
            lines.append(f"- Risk percentage: {summary.risk_percentage:g}%")
            lines.append(f"- Risk category: {summary.category}")
    else:
        lines.append("")
        lines.append("This user has never taken a risk assessment.")
    return "\n".join(lines)


def render_system_instruction(policy_template: str, language: str, context_block: str) -> str:
    policy = policy_template.replace(LANGUAGE_PLACEHOLDER, language).rstrip()
    return f"{policy}\n\n---\n# CURRENT USER CONTEXT\n{context_block}"


def build_prompt(
    policy_template: Optional[str],
    language: str,
    context: AssembledContext,
    new_message: str,
    max_payload_chars: int = 30000,
) -> PromptComponents:
    """
    Build the request payload.

    Args:
        policy_template: Persona/policy text; ``{language}`` is substituted.
            None selects the built-in template.
        language: Reply language
        context: Assembled profile, assessments and history
        new_message: The user's new message
        max_payload_chars: Character ceiling for the whole payload

    Returns:
        PromptComponents with the GenerationRequest
    """
    system_instruction = render_system_instruction(
        policy_template or DEFAULT_POLICY_TEMPLATE,
        language,
        render_profile_context(context.profile, context.assessments),
    )
    new_turn = Turn(role="user", text=new_message)
    history = [Turn(role="model" if t.role == "model" else "user", text=t.text) for t in context.history]

    fixed_chars = len(system_instruction) + len(new_turn.text)
    history_chars = sum(len(t.text) for t in history)

    dropped = 0
    while history and fixed_chars + history_chars > max_payload_chars:
        history_chars -= len(history.pop(0).text)
        dropped += 1

    total = fixed_chars + history_chars
    if dropped:
        logger.info(f"Dropped {dropped} oldest history turns to fit {max_payload_chars} chars")
    if total > max_payload_chars:
        logger.warning(
            f"Payload still {total} chars after dropping all history "
            f"(ceiling {max_payload_chars}); sending as-is"
        )

    request = GenerationRequest(system_instruction=system_instruction, contents=history + [new_turn])
    return PromptComponents(
        request=request,
        history_turns_kept=len(history),
        history_turns_dropped=dropped,
        total_chars=total,
    )
