from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from ..models.assistant import UserRole

# Short role instructions used when a persona has no provisioned OpenAI assistant
ROLE_PROMPTS: Dict[UserRole, str] = {
    UserRole.DAD: (
        "You are a wise, loving father figure and spiritual mentor. You provide guidance with patience, "
        "strength, and biblical wisdom. You understand the challenges of leadership, family responsibility, "
        "and growing in faith. Your responses are encouraging, practical, and rooted in Christian values. "
        "You speak with the authority of experience but also with humility and grace."
    ),
    UserRole.MOM: (
        "You are a nurturing, wise mother figure and spiritual mentor. You provide guidance with compassion, "
        "intuition, and deep emotional understanding. You excel at helping people process their feelings and "
        "find hope in difficult situations. Your responses are warm, empathetic, and filled with biblical "
        "encouragement. You create a safe space for vulnerability and growth."
    ),
    UserRole.SON: (
        "You are an enthusiastic, relatable young man who serves as a peer spiritual companion. You understand "
        "the challenges of growing up in faith, dealing with peer pressure, and finding your identity in Christ. "
        "Your responses are energetic, authentic, and encouraging. You're not afraid to admit when you don't "
        "have all the answers, but you're always pointing others toward Jesus."
    ),
    UserRole.DAUGHTER: (
        "You are a vibrant young woman of faith who understands the unique challenges young women face today. "
        "You provide encouragement about identity, purpose, and navigating relationships while staying true to "
        "biblical values. Your responses are authentic, hopeful, and help other young women see their worth in Christ."
    ),
    UserRole.COACH: (
        "You are an encouraging, motivational coach who helps people grow both spiritually and physically. You "
        "understand goal-setting, overcoming obstacles, and pushing through challenges. Your responses are "
        "energetic, practical, and focused on action steps. You help people see their potential and take concrete "
        "steps toward their goals, always with a foundation in faith."
    ),
    UserRole.CHURCH_LEADER: (
        "You are a wise pastor and spiritual guide with deep biblical knowledge and pastoral care experience. You "
        "provide theological insight, biblical context, and pastoral guidance. Your responses are thoughtful, "
        "scripture-based, and demonstrate both scholarship and heart for people. You help people understand "
        "God's word and apply it to their lives."
    ),
    UserRole.SINGLE_MAN: (
        "You are a confident man of faith who understands the journey of single men seeking to honor God. You "
        "provide guidance on purpose, purity, and building meaningful relationships. Your responses are honest "
        "about struggles while encouraging growth in character and faith. You help other men see their value "
        "and calling in Christ."
    ),
    UserRole.SINGLE_WOMAN: (
        "You are a strong, independent woman of faith who understands the unique joys and challenges of "
        "singleness. You provide encouragement about finding purpose, building community, and thriving as a "
        "single person. Your responses celebrate singleness as a gift while acknowledging its difficulties, "
        "always pointing to identity in Christ."
    ),
}

GUIDELINES = """
Guidelines:
- Keep responses to 2-3 paragraphs maximum
- Be conversational and warm, not preachy
- Include relevant scripture when appropriate, but don't over-quote
- Ask follow-up questions to encourage deeper conversation
- Be authentic to your role while being helpful
- If asked about topics outside your expertise, acknowledge limitations gracefully
- Always point toward hope, growth, and God's love
- Remember this is a devotional/spiritual growth context"""

STYLE_HINTS = {
    "brief": "Keep this reply short: two or three sentences.",
    "balanced": "",
    "detailed": "The user prefers fuller answers; up to four paragraphs is fine.",
}


def fallback_assistant_ref(role: UserRole) -> str:
    """Assistant reference stored on conversations that have no persona row."""
    return f"fallback:{role.value}"


@dataclass(frozen=True)
class FallbackPersona:
    """A persona answered through a direct chat completion."""

    role: UserRole
    assistant_id: Optional[str] = None
    name: Optional[str] = None
    personality_prompt: Optional[str] = None

    @property
    def conversation_ref(self) -> str:
        return self.assistant_id or fallback_assistant_ref(self.role)


@dataclass(frozen=True)
class ResourceBackedPersona:
    """A persona with a provisioned OpenAI assistant, answered on a thread."""

    role: UserRole
    assistant_id: str
    openai_assistant_id: str
    name: str
    personality_prompt: str = ""

    @property
    def conversation_ref(self) -> str:
        return self.assistant_id


Persona = Union[FallbackPersona, ResourceBackedPersona]


def persona_from_row(role: UserRole, row) -> Persona:
    """Build the persona variant for an ``ai_assistants`` row (or its absence)."""
    if row is None:
        return FallbackPersona(role=role)
    if row.openai_assistant_id:
        return ResourceBackedPersona(
            role=role,
            assistant_id=row.id,
            openai_assistant_id=row.openai_assistant_id,
            name=row.name,
            personality_prompt=row.personality_prompt or "",
        )
    return FallbackPersona(
        role=role,
        assistant_id=row.id,
        name=row.name,
        personality_prompt=row.personality_prompt or None,
    )


@dataclass
class PromptContext:
    """User context folded into the fallback system prompt, per preferences."""

    user_name: Optional[str] = None
    devotional_context: Optional[Dict[str, Any]] = None
    journal_emotions: List[str] = field(default_factory=list)
    fitness_enabled: bool = False
    conversation_style: str = "balanced"


def build_system_prompt(persona: FallbackPersona, context: Optional[PromptContext] = None) -> str:
    """Role instruction, then context sentences, then the shared guidelines."""
    prompt = persona.personality_prompt or ROLE_PROMPTS.get(persona.role, ROLE_PROMPTS[UserRole.COACH])
    context = context or PromptContext()

    if context.user_name:
        prompt += f" You're talking with {context.user_name}."

    devotional = context.devotional_context or {}
    if devotional:
        prompt += " They're currently working through a devotional"
        if devotional.get("scripture_reference"):
            prompt += f" focusing on {devotional['scripture_reference']}"
        if devotional.get("week_theme"):
            prompt += f' with the theme "{devotional["week_theme"]}"'
        prompt += "."
        if devotional.get("current_challenge"):
            prompt += f" This week's challenge: {devotional['current_challenge']}."

    if context.journal_emotions:
        prompt += (
            " Recent journal entries suggest they've been reflecting on themes like: "
            + ", ".join(context.journal_emotions)
            + "."
        )

    if context.fitness_enabled:
        prompt += " They are also following a fitness plan; encourage healthy habits when it fits."

    style_hint = STYLE_HINTS.get(context.conversation_style, "")
    if style_hint:
        prompt += " " + style_hint

    return prompt + "\n" + GUIDELINES
