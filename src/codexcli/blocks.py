"""Fenced code block handling for model replies."""

import re
from typing import List, Optional, Tuple

from codexcli.errors import UnsupportedLanguage
from codexcli.registry import resolve

_FENCE_RE = re.compile(r"^\s*```+\s*([\w+#.-]*)[^\n]*$")
_FENCED_BODY_RE = re.compile(r"```[ \t]*([\w+#.-]*)[^\n]*\n(.*?)```", re.DOTALL)


def extract_code_blocks(response: str) -> List[Tuple[str, str]]:
    """
    Extract fenced code blocks from a model reply.

    Returns:
        (language tag, code) pairs in reply order. The tag is lower-cased and
        may be empty when the fence has none. An unterminated final fence is
        dropped.
    """
    blocks = []
    lines: List[str] = []
    lang: Optional[str] = None

    for line in response.splitlines():
        match = _FENCE_RE.match(line)
        if match and lang is None:
            lang = match.group(1).lower()
            lines = []
        elif line.strip().startswith("```") and lang is not None:
            blocks.append((lang, "\n".join(lines) + "\n"))
            lang = None
        elif lang is not None:
            lines.append(line)

    return blocks


def _same_language(tag: str, language: str) -> bool:
    try:
        return resolve(tag).tag == resolve(language).tag
    except UnsupportedLanguage:
        return tag.lower() == language.lower()


def strip_code_fences(text: str, language: Optional[str] = None) -> str:
    """
    Return the code in a fix reply.

    If the reply contains fenced blocks, the first block whose tag matches
    `language` (or the first block at all) wins; otherwise the whole reply is
    treated as code.
    """
    matches = _FENCED_BODY_RE.findall(text)
    if matches:
        if language:
            for tag, body in matches:
                if _same_language(tag, language):
                    return body.strip() + "\n"
        return matches[0][1].strip() + "\n"
    stripped = text.strip()
    return stripped + "\n" if stripped else ""
