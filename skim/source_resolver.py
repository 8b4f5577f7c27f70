"""
Classify a submitted URL by provider and pull out the identifier that
provider's API is keyed on.
"""

from __future__ import annotations

import re
from typing import Optional

from skim.errors import UnresolvableIdentifier
from skim.models import SourceKind

# Order matters: first substring hit wins.
_PROVIDER_TABLE: list[tuple[tuple[str, ...], SourceKind]] = [
    (("arxiv.org",), SourceKind.ARXIV),
    (("pubmed", "ncbi.nlm.nih.gov"), SourceKind.PUBMED),
    (("biorxiv.org",), SourceKind.BIORXIV),
    (("medrxiv.org",), SourceKind.MEDRXIV),
    (("archive.org",), SourceKind.ARCHIVE),
    (("scholar.google",), SourceKind.SCHOLAR),
]

_ARXIV_PATTERNS = [
    re.compile(r"arxiv\.org/(?:abs|pdf)/(\d+\.\d+(?:v\d+)?)"),
    re.compile(r"arxiv\.org/(?:abs|pdf)/([a-z-]+(?:\.[A-Z]{2})?/\d+(?:v\d+)?)"),
]

_PUBMED_PATTERNS = [
    re.compile(r"pubmed\.ncbi\.nlm\.nih\.gov/(\d+)"),
    re.compile(r"ncbi\.nlm\.nih\.gov/pubmed/(\d+)"),
    re.compile(r"ncbi\.nlm\.nih\.gov/pmc/articles/(PMC\d+)", re.IGNORECASE),
    re.compile(r"pmc\.ncbi\.nlm\.nih\.gov/articles/(PMC\d+)", re.IGNORECASE),
]

_RXIV_DOI = re.compile(r"(?:bio|med)rxiv\.org/content/(10\.\d+/[\d.]*\d)")

_ID_EXTRACTORS = {
    SourceKind.ARXIV: _ARXIV_PATTERNS,
    SourceKind.PUBMED: _PUBMED_PATTERNS,
    SourceKind.BIORXIV: [_RXIV_DOI],
    SourceKind.MEDRXIV: [_RXIV_DOI],
}


def classify(url: str) -> SourceKind:
    lowered = url.lower()
    for needles, kind in _PROVIDER_TABLE:
        if any(n in lowered for n in needles):
            return kind
    return SourceKind.OTHER


def extract_identifier(kind: SourceKind, url: str) -> Optional[str]:
    """
    Return the provider id for `url`, or None for kinds that have no provider.

    Raises UnresolvableIdentifier when the kind has a provider but no pattern matches.
    """
    patterns = _ID_EXTRACTORS.get(kind)
    if patterns is None:
        return None
    for pattern in patterns:
        match = pattern.search(url)
        if match:
            ident = match.group(1)
            return ident.upper() if ident.lower().startswith("pmc") else ident
    raise UnresolvableIdentifier(f"no {kind.value} identifier in {url!r}", kind=kind)


def resolve(url: str) -> tuple[SourceKind, Optional[str]]:
    kind = classify(url)
    return kind, extract_identifier(kind, url)
