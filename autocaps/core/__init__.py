"""Recognition payload parsing and timing normalization.

WHY: The core package holds the stable contract between recognition
output and caption compilation (the IR dataclasses) plus the pure
functions that build it.

HOW: ir.py defines the data structures, payloads.py detects and parses
the recognition payload variants, normalizer.py turns them into
validated CaptionSegments.

RULES:
- IR dataclasses are the contract; change with care
- Nothing in core performs I/O
"""
