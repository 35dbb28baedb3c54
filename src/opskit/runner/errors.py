"""
Error aggregation for captured command stderr.

Drops blank lines and lines matching known-benign diagnostic patterns so that
only real errors reach the alert throttle.
"""

import logging
import re
from pathlib import Path
from typing import Iterable, List, Optional, Pattern, Union

logger = logging.getLogger(__name__)


# Notices that downstream tools write to stderr on success
DEFAULT_IGNORE_PATTERNS = [
    r"^warning: \d+ rows? unloaded\.?$",
    r"^NOTICE: ",
]


class ErrorFilter:
    """
    Line-suppression rules applied to captured error text.

    Each rule is a regular expression searched against every line; a line
    matching any rule is dropped. Blank and whitespace-only lines are always
    dropped.

    Args:
        patterns: Extra patterns to suppress, on top of the defaults
        include_defaults: Whether to start from DEFAULT_IGNORE_PATTERNS
    """

    def __init__(self, patterns: Optional[Iterable[str]] = None, include_defaults: bool = True):
        sources: List[str] = list(DEFAULT_IGNORE_PATTERNS) if include_defaults else []
        sources.extend(patterns or [])
        self.rules: List[Pattern[str]] = []
        for source in sources:
            try:
                self.rules.append(re.compile(source))
            except re.error as e:
                raise ValueError(f"Invalid ignore pattern '{source}': {e}")

    def is_noise(self, line: str) -> bool:
        if not line.strip():
            return True
        return any(rule.search(line) for rule in self.rules)

    def filter(self, raw_text: str) -> str:
        """
        Return ``raw_text`` without suppressed lines.

        Kept lines end with a newline; empty input gives empty output.
        """
        kept = [line for line in raw_text.splitlines() if not self.is_noise(line)]
        if not kept:
            return ""
        return "\n".join(kept) + "\n"

    def filter_file(self, path: Union[str, Path]) -> str:
        """
        Filter the error buffer at ``path`` in place.

        Returns:
            The cleaned text that now makes up the file
        """
        path = Path(path)
        raw = path.read_text(encoding="utf-8", errors="replace")
        if not raw:
            return ""

        cleaned = self.filter(raw)
        if cleaned != raw:
            dropped = len(raw.splitlines()) - len(cleaned.splitlines())
            logger.debug(f"Suppressed {dropped} line(s) of benign stderr output in {path}")
            path.write_text(cleaned, encoding="utf-8")
        return cleaned
