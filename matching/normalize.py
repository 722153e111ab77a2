"""
Company name normalization.

Maps a raw company name to the canonical comparison key used by every
matching engine:

- Lowercase and trim
- Separators (& / \\ +) become spaces
- German compound diacritics expanded (ß -> ss, ä -> ae, ö -> oe, ü -> ue)
- Standalone legal forms removed (GmbH, AG, Ltd, Inc, ...)
- Standalone noise words removed (und, filiale, deutschland, ...)
- Remaining accents transliterated to ASCII
- Anything outside [a-z0-9 ] dropped, whitespace collapsed

The steps run in that order: the umlaut expansion must happen before
generic transliteration (which would turn "ü" into "u"), and the word
lists are matched against the lowercased, expanded text.
"""

import re
import unicodedata

import pandas as pd
from unidecode import unidecode

# Bump when either word list changes; normalized keys are not comparable
# across vocabulary versions.
VOCABULARY_VERSION = "2024.2"

LEGAL_FORMS = frozenset({
    "gmbh", "ag", "kg", "ohg", "ug", "se", "kgaa", "limited",
    "sa", "sarl", "sas", "spa", "srl", "ltd", "inc", "llc", "plc",
    "co", "corp", "holding", "group", "gruppe", "einzelfirma",
    "genossenschaft", "stiftung", "verein",
})

NOISE_WORDS = frozenset({
    "und", "et", "cie", "filiale", "partner",
    "deutschland", "germany", "international", "standort", "geschlossen", "closed",
})

# Applied before transliteration so multi-character expansions are stable
GERMAN_SUBSTITUTIONS = (
    ("ß", "ss"),  # Eszett
    ("ä", "ae"),
    ("ö", "oe"),
    ("ü", "ue"),
)

SEPARATOR_RE = re.compile(r"[&/\\+]")
NON_ALNUM_RE = re.compile(r"[^a-z0-9 ]")
WHITESPACE_RE = re.compile(r"\s+")


def _word_pattern(words: frozenset) -> re.Pattern:
    # Longest first so "kgaa" is tried before "kg"
    alternation = "|".join(sorted(map(re.escape, words), key=len, reverse=True))
    return re.compile(rf"\b({alternation})\b")


LEGAL_FORM_RE = _word_pattern(LEGAL_FORMS)
NOISE_WORD_RE = _word_pattern(NOISE_WORDS)


def normalize_company_name(raw) -> str:
    """
    Normalize a company name into its canonical comparison key.

    Never raises. None, NaN and other non-string input normalize to "",
    as does a name made only of legal forms and noise words.

    A legal form can surface only after transliteration or punctuation
    stripping ("acme_gmbh", "sé"), so the pass is repeated until the key
    is stable. Repeat passes only ever delete tokens, which keeps the
    result idempotent.

    >>> normalize_company_name("Müller AG")
    'mueller'
    >>> normalize_company_name("Holding Group")
    ''
    """
    if not isinstance(raw, str):
        return ""

    text = _normalize_pass(raw)
    while True:
        again = _normalize_pass(text)
        if again == text:
            return text
        text = again


def _normalize_pass(raw: str) -> str:
    # Composed form, so a decomposed "u\u0308" hits the umlaut table below
    text = unicodedata.normalize("NFC", raw).lower().strip()
    text = SEPARATOR_RE.sub(" ", text)

    for source, target in GERMAN_SUBSTITUTIONS:
        text = text.replace(source, target)

    text = LEGAL_FORM_RE.sub(" ", text)
    text = NOISE_WORD_RE.sub(" ", text)

    text = unidecode(text).lower()
    text = NON_ALNUM_RE.sub(" ", text)
    text = WHITESPACE_RE.sub(" ", text)

    return text.strip()


def normalize_series(names: pd.Series) -> pd.Series:
    """Column-wise normalization, preserving the index."""
    return names.map(normalize_company_name)
