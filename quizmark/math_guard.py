"""
Math Guard
==========
Reversible tokenization that shields ``$$...$$`` and ``$...$`` spans from
the structural and cloze scanners.

Display math is replaced first so that the inner ``$`` of a display pair is
never read as an inline delimiter, and an inline span may not run across a
protected display span (``$5 and $$x$$ costs $3`` keeps both dollar signs
literal). Every span becomes a token that does not
occur anywhere in the source, so ``restore(*protect(x)) == x``.
"""

from __future__ import annotations

import re

from .models import MathProtectionEntry

# Non-greedy, may span lines
DISPLAY_MATH_PATTERN = re.compile(r"\$\$([\s\S]+?)\$\$")

# Non-greedy, never crosses a line break
INLINE_MATH_PATTERN = re.compile(r"\$([^$\n]+?)\$")

_TOKEN_STEM = "MATH"


def _token_prefix(text: str) -> str:
    """Pick a token prefix that cannot collide with the source text."""
    stem = _TOKEN_STEM
    while f"__{stem}_" in text:
        stem += "X"
    return f"__{stem}_"


def protect(text: str) -> tuple[str, list[MathProtectionEntry]]:
    """
    Replace every math span with an opaque token.

    Returns:
        (guarded_text, entries) where entries are in token order.
    """
    if not text or "$" not in text:
        return text, []

    prefix = _token_prefix(text)
    entries: list[MathProtectionEntry] = []

    def _substitute(match: re.Match, display: bool) -> str:
        token = f"{prefix}{len(entries)}__"
        entries.append(MathProtectionEntry(
            token=token,
            original=match.group(0),
            expr=match.group(1),
            display=display,
        ))
        return token

    guarded = DISPLAY_MATH_PATTERN.sub(lambda m: _substitute(m, True), text)
    inline = _inline_pattern(prefix) if entries else INLINE_MATH_PATTERN
    guarded = inline.sub(lambda m: _substitute(m, False), guarded)
    return guarded, entries


def _inline_pattern(prefix: str) -> re.Pattern:
    """Inline math that never swallows an already protected display span."""
    return re.compile(
        r"\$((?:(?!" + re.escape(prefix) + r")[^$\n])+?)\$"
    )


def token_pattern(entries: list[MathProtectionEntry]) -> re.Pattern | None:
    """Compile a pattern matching any token of ``entries``."""
    if not entries:
        return None
    # Longest first so __MATH_10__ is never shadowed by a shorter token
    tokens = sorted((e.token for e in entries), key=len, reverse=True)
    return re.compile("|".join(re.escape(t) for t in tokens))


def restore(text: str, entries: list[MathProtectionEntry]) -> str:
    """Replace every token of ``entries`` with its original literal."""
    pattern = token_pattern(entries)
    if pattern is None or not text:
        return text
    originals = {e.token: e.original for e in entries}
    return pattern.sub(lambda m: originals[m.group(0)], text)


def find_math(text: str) -> list[MathProtectionEntry]:
    """List the math spans of ``text`` without keeping the guarded copy."""
    _, entries = protect(text)
    return entries
