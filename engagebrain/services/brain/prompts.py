"""
Versioned prompt templates for reply drafting.

V2_HYBRID is used when no retrieval context is available; V3_RAG_AUGMENTED
adds the retrieved knowledge snippets.
"""

from enum import Enum
from typing import Any, Dict


class PromptVersion(str, Enum):
    V1_INITIAL = "v1.0"
    V2_HYBRID = "v2.0"
    V3_RAG_AUGMENTED = "v3.0"


_OUTPUT_CONTRACT = """
Output Contract:
You must respond with valid JSON ONLY. No markdown blocks.
Schema:
{{
  "strategy": "{strategy}",
  "confidence": <number 0-1>,
  "suggested_text": "<string>",
  "explanation": "<string short rationale>"
}}
"""

_HEADER = """
You are an expert community manager writing in a {tone} tone.
Your goal is to draft a reply to the following comment on the platform "{platform}".

Selected Strategy: {strategy}
Strategy Rationale: {rationale}
Voice: {speaker_role} ({template_category})
"""

_COMMENT = """
History:
- The tenant has ignored {ignored_count} past suggestions.
- Detected intent: {user_intent}

Comment Context:
Video: "{video_id}"
Author: "{author_name}"
Comment: "{content_text}"
"""

PROMPT_TEMPLATES: Dict[PromptVersion, str] = {
    PromptVersion.V2_HYBRID: _HEADER + _COMMENT + """
Instructions:
1. Write a reply that matches the selected strategy and tone.
2. Do not address the user by name unless necessary.
3. Keep it under {length_limit} characters.
""" + _OUTPUT_CONTRACT,

    PromptVersion.V3_RAG_AUGMENTED: _HEADER + """
Knowledge Context (Use ONLY if relevant):
- {context_snippets}
""" + _COMMENT + """
Instructions:
1. Write a reply that matches the selected strategy and tone.
2. Incorporate the Knowledge Context if it helps answer the comment accurately.
3. If the knowledge is not relevant, ignore it. Do NOT invent facts.
4. Keep it under {length_limit} characters.
""" + _OUTPUT_CONTRACT,
}


def render_prompt(version: PromptVersion, args: Dict[str, Any]) -> str:
    """
    Render a prompt template.

    Raises:
        ValueError: Unknown version or a missing template argument
    """
    template = PROMPT_TEMPLATES.get(version)
    if template is None:
        raise ValueError(f"Unknown prompt version: {version}")
    try:
        return template.format(**args)
    except KeyError as e:
        raise ValueError(f"Missing prompt argument {e} for version {version.value}") from e
