"""
Scriptwriter Prompts Module
System prompt and user-content builders for the interactive scriptwriter.
"""

from .scriptwriter import (
    CONTINUE_INSTRUCTION,
    INTERACTIVE_SCRIPTWRITER_SYSTEM_PROMPT,
    ROOT_INSTRUCTION,
    SystemPromptCache,
    build_scriptwriter_user_content,
)

__all__ = [
    "INTERACTIVE_SCRIPTWRITER_SYSTEM_PROMPT",
    "ROOT_INSTRUCTION",
    "CONTINUE_INSTRUCTION",
    "SystemPromptCache",
    "build_scriptwriter_user_content",
]
