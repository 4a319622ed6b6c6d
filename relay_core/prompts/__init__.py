"""人设系统提示词模板。

人设描述按固定字段顺序渲染为一条 system 消息：
Name / Pronouns / Appearance / Background / Details。
缺省或空白字段整行省略，不会输出空字段行。
"""

from typing import List, Literal, Optional

from relay_core.domain.models import PersonaDescriptor


PersonaKind = Literal["assistant", "user"]

PERSONA_HEADERS = {
    "assistant": "You are roleplaying as the following character. Stay in character for the whole conversation.",
    "user": "The user is roleplaying as the following character. Address them accordingly.",
}

# (字段名, 输出标签)
PERSONA_FIELDS = (
    ("name", "Name"),
    ("pronouns", "Pronouns"),
    ("appearance", "Appearance"),
    ("background", "Background"),
    ("details", "Details"),
)


def _clean(value: Optional[str]) -> str:
    return value.strip() if value else ""


def render_persona_prompt(persona: PersonaDescriptor, kind: PersonaKind) -> str:
    """把人设描述渲染为 system 提示词文本。

    调用方需保证 persona 已通过校验（各字段为 str 或 None）。
    全部字段缺省时只输出标题行。
    """

    lines: List[str] = [PERSONA_HEADERS[kind]]
    for attr, label in PERSONA_FIELDS:
        value = _clean(getattr(persona, attr))
        if value:
            lines.append(f"{label}: {value}")
    return "\n".join(lines)
