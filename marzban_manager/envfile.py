"""
Editing of ``KEY = value`` environment files.

Comments and unrelated lines are preserved byte for byte; only lines that
define (or used to define, when commented out) a touched key are rewritten.
"""

import os
import re
from pathlib import Path
from typing import Dict, List, Optional, Tuple, MutableMapping
import logging

logger = logging.getLogger(__name__)

VALID_KEY = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _key_pattern(key: str) -> re.Pattern:
    return re.compile(rf"^#?\s*{re.escape(key)}\s*=")


def _unquote(value: str) -> str:
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        return value[1:-1]
    return value


class EnvFile:
    """An environment file on disk."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def exists(self) -> bool:
        return self.path.is_file()

    def read_lines(self) -> List[str]:
        if not self.path.exists():
            return []
        return self.path.read_text().splitlines()

    def write_lines(self, lines: List[str]):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text("\n".join(lines) + "\n" if lines else "")

    def set(self, key: str, value: str):
        """
        Set ``key`` to ``value``.

        Every existing definition, commented or not, collapses into a single
        ``KEY = value`` line at the position of the first one. Absent keys
        are appended.
        """
        pattern = _key_pattern(key)
        new_line = f"{key} = {value}"
        lines = []
        replaced = False
        for line in self.read_lines():
            if pattern.match(line):
                if not replaced:
                    lines.append(new_line)
                    replaced = True
                continue
            lines.append(line)
        if not replaced:
            lines.append(new_line)
        self.write_lines(lines)
        logger.debug(f"Set {key} in {self.path}")

    def update(self, values: Dict[str, str]):
        for key, value in values.items():
            self.set(key, value)

    def comment_out(self, key: str):
        """Comment out the active definition of ``key``."""
        pattern = re.compile(rf"^\s*{re.escape(key)}\s*=")
        lines = [f"#{line}" if pattern.match(line) else line for line in self.read_lines()]
        self.write_lines(lines)

    def delete(self, *keys: str):
        """Remove uncommented definitions of ``keys``."""
        patterns = [re.compile(rf"^\s*{re.escape(key)}\s*=") for key in keys]
        lines = [
            line for line in self.read_lines()
            if not any(p.match(line) for p in patterns)
        ]
        self.write_lines(lines)

    def delete_matching(self, *fragments: str):
        """Remove every line containing any of ``fragments``."""
        lines = [
            line for line in self.read_lines()
            if not any(fragment in line for fragment in fragments)
        ]
        self.write_lines(lines)

    def append_block(self, lines: List[str]):
        """Append lines after a blank separator."""
        existing = self.read_lines()
        separator = [""] if existing and existing[-1].strip() else []
        self.write_lines(existing + separator + lines)

    def parse(self) -> Tuple[Dict[str, str], List[str]]:
        """
        Parse active definitions.

        Returns the key/value mapping and the list of lines whose key is not
        a valid identifier.
        """
        values = {}
        invalid = []
        for line in self.read_lines():
            stripped = line.strip()
            if not stripped or stripped.startswith("#") or "=" not in stripped:
                continue
            key, value = stripped.split("=", 1)
            key = key.strip()
            if not VALID_KEY.match(key):
                invalid.append(stripped)
                continue
            values[key] = _unquote(value)
        return values, invalid

    def values(self) -> Dict[str, str]:
        return self.parse()[0]

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self.values().get(key, default)

    def load_into(self, environ: Optional[MutableMapping[str, str]] = None) -> List[str]:
        """Export every valid definition into ``environ``; return skipped lines."""
        environ = os.environ if environ is None else environ
        values, invalid = self.parse()
        environ.update(values)
        for line in invalid:
            logger.warning(f"Skipping invalid line in .env: {line}")
        return invalid
