"""
Parsing of raw generation output.

Splits the reasoning segment from visible content, finds fenced code blocks
and emphasized fragments, and pulls a JSON object out of structured replies.
"""
from typing import Any, Dict, List, Tuple
import json
import re

from roundtable.domain.errors import MalformedResponseError
from roundtable.domain.models.sandbox import CodeBlock


THINK_PATTERN = re.compile(r"<think>([\s\S]*?)</think>", re.IGNORECASE)
CODE_BLOCK_PATTERN = re.compile(r"```([\w+#-]*)[^\S\n]*\n([\s\S]*?)```")
EMPHASIS_PATTERN = re.compile(r"\*\*([^*\n]+?)\*\*")
JSON_FENCE_PATTERN = re.compile(r"```(?:json)?\s*\n?([\s\S]*?)```", re.IGNORECASE)

MIN_FRAGMENT_LENGTH = 3


def split_thought(raw_text: str) -> Tuple[str, str]:
    """Return (content, thought_process) for a raw reply"""

    match = THINK_PATTERN.search(raw_text)
    if match:
        thought = match.group(1).strip()
        content = (raw_text[:match.start()] + raw_text[match.end():]).strip()
        return content, thought

    # Some reasoning models drop the opening tag and only close it
    closing = raw_text.lower().find("</think>")
    if closing != -1:
        thought = raw_text[:closing].strip()
        content = raw_text[closing + len("</think>"):].strip()
        return content, thought

    return raw_text.strip(), ""


def extract_code_blocks(content: str) -> List[CodeBlock]:
    """Fenced code blocks in order of appearance"""
    blocks = []
    for language, code in CODE_BLOCK_PATTERN.findall(content):
        if not code.strip():
            continue
        blocks.append(CodeBlock(language=(language or "text").lower(), code=code.rstrip()))
    return blocks


def extract_emphasized(content: str) -> List[str]:
    """Distinct **bold** fragments, first occurrence order"""
    seen = set()
    fragments = []
    for fragment in EMPHASIS_PATTERN.findall(content):
        fragment = fragment.strip().rstrip(":").strip()
        key = fragment.lower()
        if len(fragment) < MIN_FRAGMENT_LENGTH or key in seen:
            continue
        seen.add(key)
        fragments.append(fragment)
    return fragments


def parse_json_object(text: str) -> Dict[str, Any]:
    """Parse a JSON object from a reply, tolerating fences and surrounding prose"""

    candidates = [text.strip()]

    fenced = JSON_FENCE_PATTERN.search(text)
    if fenced:
        candidates.append(fenced.group(1).strip())

    start, end = text.find("{"), text.rfind("}")
    if start != -1 and end > start:
        candidates.append(text[start:end + 1])

    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            return parsed

    raise MalformedResponseError("Response did not contain a JSON object", raw_text=text)
