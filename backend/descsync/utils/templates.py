"""Template utilities for composing video descriptions

Templates reference variables with ``{{name}}`` placeholders. Whitespace inside
the braces is ignored, so ``{{ name }}`` and ``{{name}}`` are the same variable.
"""
import re
from typing import Dict, Iterable, List, Mapping, Optional

PLACEHOLDER_PATTERN = re.compile(r"\{\{([^{}]+)\}\}")

DEFAULT_SEPARATOR = "\n\n"

# Provided by the system at compose time, never stored as VideoVariable rows
DEFAULT_VARIABLES = ("video-id",)


def is_default_variable(name: str) -> bool:
    return name in DEFAULT_VARIABLES


def extract_variables(text: str) -> List[str]:
    """Return unique placeholder names in first-seen order

    Empty placeholders (``{{ }}``) and unterminated ones never match.
    """
    names: List[str] = []
    for match in PLACEHOLDER_PATTERN.finditer(text or ""):
        name = match.group(1).strip()
        if name and name not in names:
            names.append(name)
    return names


def extract_user_variables(text: str) -> List[str]:
    """Like extract_variables, minus the system-provided defaults"""
    return [name for name in extract_variables(text) if not is_default_variable(name)]


def substitute(text: str, values: Mapping[str, str]) -> str:
    """Replace placeholders with their values; unknown names are left verbatim"""
    def _replace(match):
        name = match.group(1).strip()
        if name in values and values[name] is not None:
            return values[name]
        return match.group(0)

    return PLACEHOLDER_PATTERN.sub(_replace, text or "")


def system_defaults(video_external_id: Optional[str]) -> Dict[str, str]:
    return {"video-id": video_external_id or ""}


def compose(
    ordered_templates: Iterable[str],
    values: Mapping[str, str],
    separator: str = DEFAULT_SEPARATOR,
    defaults: Optional[Mapping[str, str]] = None,
) -> str:
    """Join template bodies in order and substitute variables

    System defaults fill names the caller did not supply; a value the caller
    supplied under the same name is kept.
    """
    combined = separator.join(ordered_templates)
    merged = {**(defaults or {}), **values}
    return substitute(combined, merged)


def find_missing_variables(text: str, values: Mapping[str, str]) -> List[str]:
    """Names referenced by ``text`` that have no non-blank value"""
    return [
        name for name in extract_user_variables(text)
        if not (values.get(name) or "").strip()
    ]
