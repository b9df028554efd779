"""Label normalization for metric series keys.

Free-text names (exchangers, currencies, assets) are turned into ASCII strings
that contain none of ``' '``, ``'-'``, ``'('``, ``')'``, ``'/'``, ``'.'``.
The transliteration step is injected so alternate scripts (or a fake in tests)
can be plugged in without touching the substitution rules.
"""

from __future__ import annotations

import hashlib
import unicodedata
from dataclasses import dataclass
from typing import Callable, Tuple

import iuliia


Transliterator = Callable[[str], str]

UNSAFE_CHARACTERS = frozenset(" -()/.")

_SUBSTITUTIONS = str.maketrans({" ": "_", "-": "_", "(": None, ")": None, "/": None, ".": None})

FALLBACK_PREFIX = "label_"


def wikipedia_transliterate(name: str) -> str:
    """Cyrillic -> Latin using the Wikipedia romanization schema."""
    return iuliia.WIKIPEDIA.translate(name)


def _fold_ascii(text: str) -> str:
    # Accented Latin decomposes to base letter + combining mark; marks are dropped.
    return unicodedata.normalize("NFKD", text).encode("ascii", "ignore").decode("ascii")


def fallback_label(name: str) -> str:
    digest = hashlib.sha1(name.encode("utf-8")).hexdigest()
    return f"{FALLBACK_PREFIX}{digest[:10]}"


@dataclass(frozen=True)
class LabelNormalizer:
    transliterate: Transliterator = wikipedia_transliterate

    def __call__(self, name: str) -> str:
        if not name:
            return ""
        text = _fold_ascii(self.transliterate(name)).translate(_SUBSTITUTIONS)
        if not text:
            return fallback_label(name)
        return text

    def labels(self, *names: str) -> Tuple[str, ...]:
        return tuple(self(n) for n in names)


normalize = LabelNormalizer()
