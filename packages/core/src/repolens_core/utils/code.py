import hashlib

# Trimmed lines starting with any of these are comments.
COMMENT_PREFIXES = ("//", "///", "//!", "#", '""" ')


def file_size(content: str) -> int:
    """Byte length of the UTF-8 encoded content."""
    return len(content.encode("utf-8"))


def content_hash(content: str) -> str:
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def count_lines_of_code(content: str) -> int:
    """Count functional lines, skipping blanks, line comments and /* */ blocks.

    A block opens on a line starting with ``/*`` and closes on a line ending
    with ``*/``. Nested blocks are not tracked. Code followed by a trailing
    comment on the same line still counts.
    """
    in_block = False
    loc = 0
    for raw in content.splitlines():
        line = raw.strip()
        if line.startswith("/*"):
            in_block = True
        if in_block:
            if line.endswith("*/"):
                in_block = False
            continue
        if not line or line.startswith(COMMENT_PREFIXES):
            continue
        loc += 1
    return loc
