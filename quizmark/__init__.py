"""
Quiz Markup Engine
==================
Parses plain-text quiz markup (cloze deletions, math, images, code blocks,
tables) into ordered renderable elements and answer keys.

Architecture:
    - Math Guard: Shields $..$ and $$..$$ spans behind reversible tokens
    - Segmenter: Splits text into image, code block, table and text spans
    - Cloze Tokenizer: State machine finding {{cN::...}} markers
    - Blank Resolver: Grouped, individual and sequential blank projections
    - Content Assembler: Builds the immutable ParsedQuestion
    - Exporter: Pushes questions to Anki through AnkiConnect

Version: 1.0.0
"""

__version__ = "1.0.0"
