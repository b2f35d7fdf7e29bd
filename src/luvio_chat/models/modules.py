"""Brain modules: named personas that select the system prompt sent with a turn."""

from dataclasses import dataclass
from typing import Dict, List, Optional


DEFAULT_SYSTEM_PROMPT = """You are Luvio AI, an advanced AI assistant created by Luvio.

IDENTITY: When asked who you are, say "I am Luvio AI, created by Luvio."

RESPONSE STYLE:
- Be concise but helpful. 2-3 sentences for simple queries, more for complex topics.
- Support Hindi and English. Respond in the user's language.
- For images: Describe what you see clearly.
- Be accurate, friendly, and professional.

You are Luvio AI, not ChatGPT, Claude, Gemini or any other AI."""


@dataclass(frozen=True)
class BrainModule:
    """A selectable assistant persona."""
    id: str
    name: str
    name_hi: str
    description: str
    category: str
    system_prompt: str


DEFAULT_MODULE = BrainModule(
    id="luvio-default",
    name="Luvio AI",
    name_hi="लुवियो AI",
    description="Your personal AI assistant",
    category="conversational",
    system_prompt=DEFAULT_SYSTEM_PROMPT,
)

BRAIN_MODULES: List[BrainModule] = [
    DEFAULT_MODULE,
    BrainModule(
        id="study-assistant",
        name="Study Assistant",
        name_hi="स्टडी असिस्टेंट",
        description="Complete study companion",
        category="education",
        system_prompt="You are a Study Assistant AI. Help with all aspects of studying in Hindi and English.",
    ),
    BrainModule(
        id="code-writer",
        name="Code Writer",
        name_hi="कोड राइटर",
        description="Write code in any language",
        category="coding",
        system_prompt="You are a Code Writer AI. Write clean, efficient code in any language.",
    ),
    BrainModule(
        id="agriculture-expert",
        name="Agriculture Expert",
        name_hi="कृषि विशेषज्ञ",
        description="Comprehensive farming guidance",
        category="agriculture",
        system_prompt="You are an Agriculture Expert AI. Provide farming guidance for Indian agriculture.",
    ),
]

_MODULES_BY_ID: Dict[str, BrainModule] = {m.id: m for m in BRAIN_MODULES}


def get_module(module_id: Optional[str]) -> BrainModule:
    """Look up a module, falling back to the default one."""
    if module_id is None:
        return DEFAULT_MODULE
    return _MODULES_BY_ID.get(module_id, DEFAULT_MODULE)


__all__ = [
    'BrainModule',
    'BRAIN_MODULES',
    'DEFAULT_MODULE',
    'DEFAULT_SYSTEM_PROMPT',
    'get_module',
]
