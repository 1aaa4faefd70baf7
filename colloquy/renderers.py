"""Prompt rendering utilities."""

from __future__ import annotations

import re
from typing import Mapping, Optional

from .schemas import State

_PLACEHOLDER = re.compile(r"\{\{\s*([A-Za-z0-9_]+)\s*\}\}")


def add_header(header: str, body: str) -> str:
    """Prefix ``body`` with a markdown header; empty bodies stay empty."""
    if not body:
        return ""
    return f"{header}\n{body}\n" if header else body


def render_template(template: str, values: Mapping[str, object]) -> str:
    """Replace ``{{key}}`` placeholders with ``values[key]``.

    Unknown placeholders render as empty strings so a template never leaks
    raw braces into the prompt.
    """

    def _substitute(match: "re.Match[str]") -> str:
        value = values.get(match.group(1))
        return "" if value is None else str(value)

    return _PLACEHOLDER.sub(_substitute, template)


def compose_prompt_from_state(
    state: State,
    template: str,
    *,
    extra: Optional[Mapping[str, object]] = None,
) -> str:
    """Render a prompt template against a composed state.

    ``{{providers}}`` expands to the full composed text; every other
    placeholder is looked up in ``state.values`` and then in ``extra``.
    """

    # Build replacement map: state values first, explicit extras win.
    replacements = dict(state.values)
    replacements["providers"] = state.text
    if extra:
        replacements.update(extra)
    return render_template(template, replacements)
