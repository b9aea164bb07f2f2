"""
Interactive Scriptwriter Prompts
System prompt and user-content assembly for branching story generation.
"""

import json
from pathlib import Path
from typing import List, Optional, Union

from ..models import ScriptwriterScenelet

ROOT_INSTRUCTION = "Now start with the first scenelet of the story."
CONTINUE_INSTRUCTION = "Now continue the story by writing only the immediate next scenelet(s)."

INTERACTIVE_SCRIPTWRITER_SYSTEM_PROMPT = """You are the Interactive Scriptwriter. You turn a Story Constitution into a branching, choose-your-own-path script, one beat at a time. Each beat is a "scenelet": a short, filmable moment with a description, optional dialogue, and shot suggestions for the storyboard artist.

## Your Core Responsibilities

1. **Follow the Constitution**: The Story Constitution defines the premise, characters, tone, and the endings the story is allowed to reach. Never contradict it.

2. **Continue the Current Path Only**: You receive the full narrative path from the first scenelet to the current one. Write ONLY the immediate next scenelet(s) that follow the last scenelet in that path.

3. **Decide the Shape of the Next Beat**:
   - **Linear**: the story simply continues. Return exactly one scenelet.
   - **Branch**: the reader faces a meaningful decision. Return a `choice_prompt` and two or more scenelets, each with a short `choice_label` naming the option it represents.
   - **Concluding**: this path has reached an ending. Return exactly one final scenelet.

4. **Pace the Path**: Branch sparingly, at decisions that change the outcome. Steer every path toward a satisfying conclusion within the target length you are given.

## Output Requirements

You MUST output a single JSON object with the following fields:

```json
{
  "branch_point": false,
  "is_concluding_scene": false,
  "choice_prompt": "Only when branch_point is true: the question shown to the reader",
  "next_scenelets": [
    {
      "description": "What happens in this moment, written for a director",
      "dialogue": [{"character": "Name", "line": "What they say"}],
      "shot_suggestions": ["Concrete camera shot ideas"],
      "choice_label": "Only for branch options: the label of this choice"
    }
  ]
}
```

## Constraints

- `branch_point` and `is_concluding_scene` can never both be true
- A branch MUST offer at least two scenelets, each with a non-empty `choice_label`
- Linear and concluding responses MUST contain exactly one scenelet
- Every description, dialogue line and shot suggestion must be non-empty
- Do NOT repeat or rewrite scenelets already present in the narrative path
"""


def build_scriptwriter_user_content(
    story_constitution: str,
    path_context: List[ScriptwriterScenelet],
    is_root: bool,
    target_scenelets_per_path: Optional[int] = None,
) -> str:
    """
    Assemble the user content for one scriptwriter call.

    The whole root-first path is serialized, not just the parent, so the
    model sees the complete lineage of the beat it is continuing.
    """
    lines = ["## Story Constitution", story_constitution.strip(), ""]

    if target_scenelets_per_path is not None:
        current_count = len(path_context)
        remaining_count = max(target_scenelets_per_path - current_count, 0)
        lines.append("## Path Guidance")
        lines.append(f"Target scenelets per path: {target_scenelets_per_path}")
        lines.append(f"Current scenelets in this path: {current_count}")
        lines.append(
            f"Reminder: Aim to conclude this path within {target_scenelets_per_path} scenelets. "
            f"Approximately {remaining_count} scenelets remain."
        )
        lines.append("")

    if not is_root and path_context:
        serialized_path = json.dumps(
            [scenelet.to_payload() for scenelet in path_context],
            indent=2,
            ensure_ascii=False,
        )
        lines.append("## Current Narrative Path")
        lines.append(serialized_path)
        lines.append("")

    lines.append("## Instruction")
    lines.append(ROOT_INSTRUCTION if is_root else CONTINUE_INSTRUCTION)

    return "\n".join(lines)


class SystemPromptCache:
    """
    Once-initialized holder for the scriptwriter system prompt.
    Reads the override file on first use; `reset()` drops the cached text.
    """

    def __init__(self, prompt_path: Optional[Union[str, Path]] = None):
        self.prompt_path = Path(prompt_path) if prompt_path else None
        self._cached: Optional[str] = None

    def get(self) -> str:
        if self._cached is None:
            if self.prompt_path is None:
                self._cached = INTERACTIVE_SCRIPTWRITER_SYSTEM_PROMPT
            else:
                self._cached = self.prompt_path.read_text(encoding="utf-8")
        return self._cached

    def reset(self) -> None:
        self._cached = None
