"""Split an AI response into narrative text and proposed shell commands.

A command is any line whose first non-blank token is the ``RUN:`` marker.
The extractor is marker-driven and deliberately ignores shell syntax and
Markdown structure: a marker inside a code fence is still a marker.
"""

from __future__ import annotations

import re

from pydantic import BaseModel, Field

from sentinel.utils.logging import get_logger

log = get_logger(__name__)

MARKER = "RUN:"

_MARKER_LINE = re.compile(rf"^\s*(?:[-*]\s+)?{re.escape(MARKER)}(?P<body>.*)$")

# Formatting the model sometimes wraps around the command
_INLINE_TAGS = re.compile(r"</?(?:code|b|i|pre|strong|em)>", re.I)


class Extraction(BaseModel):
    narrative: str
    commands: list[str] = Field(default_factory=list)
    ambiguous: list[str] = Field(
        default_factory=list,
        description="Marker lines that carried no command; kept as narrative",
    )


def _clean_command(body: str) -> str:
    cmd = _INLINE_TAGS.sub("", body).strip()
    # `df -h` or ```df -h```
    while len(cmd) >= 2 and cmd[0] == "`" and cmd[-1] == "`":
        cmd = cmd[1:-1].strip()
    return cmd


def extract(text: str) -> Extraction:
    """Return the narrative and the commands proposed in *text*, in order."""
    commands: list[str] = []
    ambiguous: list[str] = []
    narrative_lines: list[str] = []

    for line in text.splitlines():
        m = _MARKER_LINE.match(line)
        if m is None:
            narrative_lines.append(line)
            continue
        cmd = _clean_command(m.group("body"))
        if not cmd:
            ambiguous.append(line)
            narrative_lines.append(line)
            continue
        commands.append(cmd)

    if not commands:
        if ambiguous:
            log.info("extract.empty_marker", lines=len(ambiguous))
        return Extraction(narrative=text, ambiguous=ambiguous)

    log.debug("extract.commands", count=len(commands))
    return Extraction(
        narrative="\n".join(narrative_lines).strip(),
        commands=commands,
        ambiguous=ambiguous,
    )
