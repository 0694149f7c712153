"""系统提示词加载工具。

按用途(kind)和语言(locale) 从 prompts/<locale> 目录读取提示词文本：
- "chat": 普通对话的 system prompt。
- "title": 会话标题摘要的 system prompt。
"""

from pathlib import Path


PROMPTS_DIR = Path(__file__).resolve().parent

_FILES = {
    "chat": "chat_system.md",
    "title": "title_system.md",
}


def load_system_prompt(kind: str = "chat", locale: str = "en") -> str:
    """根据用途和语言加载系统提示词文本。"""

    fname = PROMPTS_DIR / locale / _FILES[kind]
    return fname.read_text(encoding="utf-8").strip()
