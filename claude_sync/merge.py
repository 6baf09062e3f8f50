"""Combine shared and private rules into the merged output file."""

MERGE_SEPARATOR = "\n\n---\n\n# Project-Specific Configuration\n\n"


def merge_content(shared: str, private: str) -> str:
    """Merge shared rules with a workspace's private rules.

    Pure and total: no I/O, defined for every pair of strings. Callers
    handle reading and writing the files.

    Args:
        shared: Content of the shared-rules file (may be empty)
        private: Content of the private-rules file (may be empty)

    Returns:
        str: ``""`` if both are empty, the non-empty one unchanged if only one
        is, otherwise both trimmed and joined by ``MERGE_SEPARATOR`` with a
        trailing newline
    """
    if not shared and not private:
        return ""
    if not shared:
        return private
    if not private:
        return shared
    return shared.strip() + MERGE_SEPARATOR + private.strip() + "\n"
