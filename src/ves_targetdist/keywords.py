"""Reading ``KEY=VALUE`` construction words.

Target distributions are configured with a list of words such as::

    ["LINEAR_COMBINATION",
     "DISTRIBUTION1={UNIFORM}",
     "DISTRIBUTION2={GAUSSIAN CENTER=-2.0 SIGMA=0.5}",
     "WEIGHTS=1,3"]

:func:`split_words` turns a flat string into such a list while keeping
curly-bracket groups intact, and :class:`KeywordReader` consumes the
words one keyword at a time.  Whatever is left over at the end is an
error.
"""

from __future__ import annotations

from typing import Callable, List, Optional, Sequence, TypeVar

from .errors import ConfigurationError

__all__ = [
    "split_words",
    "strip_braces",
    "KeywordReader",
]

T = TypeVar("T")


def split_words(text: str) -> List[str]:
    """Split on whitespace outside curly brackets.

    >>> split_words("LINEAR_COMBINATION DISTRIBUTION1={UNIFORM NORMALIZE} WEIGHTS=1,2")
    ['LINEAR_COMBINATION', 'DISTRIBUTION1={UNIFORM NORMALIZE}', 'WEIGHTS=1,2']
    """
    text = strip_braces(text.strip())
    words: List[str] = []
    depth = 0
    current = []
    for ch in text:
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth < 0:
                raise ConfigurationError(f"unbalanced curly brackets in {text!r}")
        if ch.isspace() and depth == 0:
            if current:
                words.append("".join(current))
                current = []
            continue
        current.append(ch)
    if depth != 0:
        raise ConfigurationError(f"unbalanced curly brackets in {text!r}")
    if current:
        words.append("".join(current))
    return words


def strip_braces(text: str) -> str:
    """Remove one pair of enclosing curly brackets, if present."""
    text = text.strip()
    if not (text.startswith("{") and text.endswith("}")):
        return text
    depth = 0
    for i, ch in enumerate(text):
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            # the opening bracket closes before the end: "{A} B={C}"
            if depth == 0 and i != len(text) - 1:
                return text
    return text[1:-1].strip()


def _to_bool(value: str) -> bool:
    v = value.strip().lower()
    if v in ("true", "yes", "on", "1"):
        return True
    if v in ("false", "no", "off", "0"):
        return False
    raise ValueError(f"not a boolean: {value!r}")


class KeywordReader:
    """Consume keywords from the words of one target distribution.

    Parameters
    ----------
    name : str
        Distribution type name, used in error messages.
    words : sequence of str
        The words *after* the type name.
    """

    def __init__(self, name: str, words: Sequence[str]):
        self.name = name
        self._words: List[str] = list(words)

    @property
    def unread(self) -> List[str]:
        return list(self._words)

    def _pop(self, key: str) -> Optional[str]:
        prefix = key + "="
        for i, w in enumerate(self._words):
            if w.startswith(prefix):
                del self._words[i]
                return w[len(prefix):]
        return None

    def _convert(self, key: str, raw: str, convert: Callable[[str], T]) -> T:
        if convert is bool:
            convert = _to_bool  # type: ignore[assignment]
        try:
            return convert(strip_braces(raw))
        except (TypeError, ValueError) as e:
            raise ConfigurationError(
                f"{self.name}: cannot convert {key}={raw!r}: {e}") from e

    def parse(
        self,
        key: str,
        convert: Callable[[str], T] = float,
        optional: bool = False,
        default: Optional[T] = None,
    ) -> Optional[T]:
        raw = self._pop(key)
        if raw is None:
            if not optional:
                raise ConfigurationError(
                    f"target distribution {self.name} requires {key} keyword")
            return default
        return self._convert(key, raw, convert)

    def parse_vector(
        self,
        key: str,
        convert: Callable[[str], T] = float,
        optional: bool = False,
    ) -> Optional[List[T]]:
        raw = self._pop(key)
        if raw is None:
            if not optional:
                raise ConfigurationError(
                    f"target distribution {self.name} requires {key} keyword")
            return None
        parts = [p for p in strip_braces(raw).split(",") if p.strip()]
        return [self._convert(key, p, convert) for p in parts]

    def parse_numbered(self, key: str, number: int, convert: Callable[[str], T] = str) -> Optional[T]:
        return self.parse(f"{key}{number}", convert, optional=True)

    def parse_numbered_vector(
        self, key: str, number: int, convert: Callable[[str], T] = float,
    ) -> Optional[List[T]]:
        return self.parse_vector(f"{key}{number}", convert, optional=True)

    def parse_flag(self, key: str) -> bool:
        """True if the bare word *key* (or ``KEY=true``) is present."""
        for i, w in enumerate(self._words):
            if w == key:
                del self._words[i]
                return True
        raw = self._pop(key)
        if raw is None:
            return False
        return self._convert(key, raw, bool)

    def check_read(self) -> None:
        if self._words:
            raise ConfigurationError(
                "cannot understand the following words from the target "
                f"distribution input of {self.name}: " + ", ".join(self._words))
