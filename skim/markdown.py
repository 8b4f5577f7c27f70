"""
Heuristic plain-text -> markdown pass for extracted paper text.

This only adds structure inferred from line shape; it is applied when a paper
is rendered, never to the stored text.
"""

from __future__ import annotations

import re
from typing import Optional

_SECTION_NAMES = (
    r"abstract|introduction|background|methods?|methodology|materials and methods|results?|"
    r"discussion|conclusions?|references|bibliography|acknowledge?ments?|appendix|supplementary|"
    r"related work|literature review|future work|limitations|experiments?|evaluation"
)

_SECTION_PATTERNS = [
    re.compile(rf"^({_SECTION_NAMES})\.?$", re.IGNORECASE),
    re.compile(rf"^(\d+\.?\s+)({_SECTION_NAMES})\b", re.IGNORECASE),
    re.compile(r"^[IVXLC]+\.\s+\S"),
]
_SUBSECTION = re.compile(r"^\d+\.\d+(\.\d+)*\.?\s+\S")
_BULLET = re.compile(r"^[-•‣◦⁃∙*]\s+")
_ENUMERATED = re.compile(r"^(\(\d+\)|[a-z]\))\s")
_QUOTED = re.compile(r"^([\"“])(.+)([\"”])$")

_MAX_HEADING_LEN = 60


def _is_section(line: str) -> bool:
    return any(p.match(line) for p in _SECTION_PATTERNS)


def _is_standalone_heading(line: str, prev_blank: bool, next_blank: bool) -> bool:
    """Short, capitalised line with blank lines on both sides and no sentence punctuation."""
    return (
        prev_blank
        and next_blank
        and len(line) <= _MAX_HEADING_LEN
        and line[:1].isupper()
        and not line.endswith((".", ",", ";", ":"))
        and len(line.split()) <= 8
    )


def _is_code(raw: str) -> bool:
    return raw.startswith(("    ", "\t")) and bool(raw.strip())


def format_markdown(text: Optional[str]) -> str:
    if not text or not text.strip():
        return ""

    raw_lines = text.splitlines()
    out: list[str] = []
    in_code = False
    seen_title = False

    for i, raw in enumerate(raw_lines):
        line = raw.strip()
        prev_blank = i == 0 or not raw_lines[i - 1].strip()
        next_blank = i == len(raw_lines) - 1 or not raw_lines[i + 1].strip()

        next_is_code = i + 1 < len(raw_lines) and _is_code(raw_lines[i + 1])

        # A run of two or more indented lines becomes a fenced block.
        if _is_code(raw) and (in_code or next_is_code):
            if not in_code:
                out.extend(["", "```"])
                in_code = True
            out.append(raw.rstrip()[4:] if raw.startswith("    ") else raw.rstrip()[1:])
            continue
        if in_code:
            out.extend(["```", ""])
            in_code = False

        if not line:
            out.append("")
            continue

        if not seen_title and len(line) > 10:
            out.extend([f"# {line}", ""])
            seen_title = True
            continue
        seen_title = True

        if _is_section(line):
            out.extend(["", f"## {line}", ""])
        elif _SUBSECTION.match(line) and len(line) < 100:
            out.extend(["", f"### {line}", ""])
        elif _BULLET.match(line):
            out.append(f"- {_BULLET.sub('', line)}")
        elif _ENUMERATED.match(line):
            out.append(f"- {line}")
        elif _QUOTED.match(line):
            out.append(f"> {_QUOTED.match(line).group(2)}")
        elif _is_standalone_heading(line, prev_blank, next_blank):
            out.extend(["", f"## {line}", ""])
        else:
            out.append(line)

    if in_code:
        out.append("```")

    result = "\n".join(out)
    result = re.sub(r"\n{3,}", "\n\n", result)
    return result.strip()


def first_content_line(text: Optional[str]) -> Optional[str]:
    """First non-empty line with any leading '#' markers removed."""
    for line in (text or "").splitlines():
        cleaned = line.strip().lstrip("#").strip()
        if cleaned:
            return cleaned
    return None
