"""Matching and normalization helpers shared by the source adapters."""

import hashlib
import re
from typing import Iterable, Optional

from bs4 import BeautifulSoup

from job_discovery.engines.sources.base import MAX_REQUIREMENTS, ContractType, RemoteType

# Role family -> spellings and technologies that imply it
ROLE_SYNONYMS: dict[str, list[str]] = {
    "frontend": ["front-end", "front end", "ui", "react", "vue", "angular"],
    "backend": ["back-end", "back end", "server", "api", "node", "python", "java"],
    "fullstack": ["full-stack", "full stack"],
    "devops": ["dev ops", "sre", "infrastructure", "platform"],
    "data": ["data science", "machine learning", "ml", "ai", "analytics"],
}

REMOTE_KEYWORDS = ["remote", "anywhere", "worldwide", "work from home", "wfh"]

REQUIREMENT_SECTION_PATTERNS = [
    re.compile(r"requirements?:?\s*\n((?:[-•*]\s*.+\n?)+)", re.IGNORECASE),
    re.compile(r"qualifications?:?\s*\n((?:[-•*]\s*.+\n?)+)", re.IGNORECASE),
    re.compile(r"what we're looking for:?\s*\n((?:[-•*]\s*.+\n?)+)", re.IGNORECASE),
    re.compile(r"skills:?\s*\n((?:[-•*]\s*.+\n?)+)", re.IGNORECASE),
]

BULLET_PREFIX = re.compile(r"^[-•*]\s*")

BLOCK_TAGS = ["p", "div", "li", "ul", "ol", "tr", "h1", "h2", "h3", "h4", "h5", "h6"]

TECH_KEYWORDS = [
    "JavaScript", "TypeScript", "Python", "Java", "Go", "Rust",
    "React", "Vue", "Angular", "Node.js",
    "PostgreSQL", "MongoDB", "Redis",
    "AWS", "GCP", "Azure", "Docker", "Kubernetes",
    "CI/CD", "Git", "REST", "GraphQL", "SQL", "NoSQL",
]

CONTRACT_ALIASES: dict[str, ContractType] = {
    "full-time": ContractType.FULL_TIME,
    "full time": ContractType.FULL_TIME,
    "fulltime": ContractType.FULL_TIME,
    "full_time": ContractType.FULL_TIME,
    "permanent": ContractType.FULL_TIME,
    "cdi": ContractType.FULL_TIME,
    "part-time": ContractType.PART_TIME,
    "part time": ContractType.PART_TIME,
    "parttime": ContractType.PART_TIME,
    "part_time": ContractType.PART_TIME,
    "contract": ContractType.CONTRACT,
    "contractor": ContractType.CONTRACT,
    "temporary": ContractType.CONTRACT,
    "fixed_term": ContractType.CONTRACT,
    "fixed-term": ContractType.CONTRACT,
    "cdd": ContractType.CONTRACT,
    "freelance": ContractType.FREELANCE,
    "freelancer": ContractType.FREELANCE,
    "internship": ContractType.INTERNSHIP,
    "intern": ContractType.INTERNSHIP,
    "stage": ContractType.INTERNSHIP,
    "apprenticeship": ContractType.INTERNSHIP,
}

# Checked in order when no alias matches exactly
CONTRACT_FRAGMENTS: list[tuple[tuple[str, ...], ContractType]] = [
    (("full", "permanent"), ContractType.FULL_TIME),
    (("part",), ContractType.PART_TIME),
    (("contract", "temporary"), ContractType.CONTRACT),
    (("freelance", "consultant"), ContractType.FREELANCE),
    (("intern",), ContractType.INTERNSHIP),
]


def _synonym_match(title: str, role: str) -> bool:
    for family, variations in ROLE_SYNONYMS.items():
        if family in role:
            return any(v in title for v in variations)
        if any(v in role for v in variations):
            return family in title or any(v in title for v in variations)
    return False


def matches_role(job_title: str, target_roles: Iterable[str]) -> bool:
    """True if the title contains a target role, is contained by one, or matches via synonyms."""
    title = (job_title or "").lower()
    if not title:
        return False
    for role in target_roles:
        role = role.lower()
        if role in title or title in role or _synonym_match(title, role):
            return True
    return False


def is_remote_job(location: Optional[str]) -> bool:
    if not location:
        return False
    location = location.lower()
    return any(kw in location for kw in REMOTE_KEYWORDS)


def matches_location(
    job_location: Optional[str],
    target_locations: Iterable[str],
    remote_ok: bool,
) -> bool:
    if remote_ok and is_remote_job(job_location):
        return True

    if not job_location:
        # Unknown location only matches a remote-tolerant campaign
        return remote_ok

    location = job_location.lower()
    for target in target_locations:
        target = target.lower()
        if target in location or location in target:
            return True
    return False


def determine_remote_type(location: Optional[str], description: str = "") -> str:
    combined = f"{location or ''} {description or ''}".lower()

    if "fully remote" in combined or "100% remote" in combined:
        return RemoteType.REMOTE.value
    if "hybrid" in combined:
        return RemoteType.HYBRID.value
    if any(kw in combined for kw in ("remote", "anywhere", "worldwide")):
        return RemoteType.REMOTE.value
    if any(kw in combined for kw in ("on-site", "onsite", "office")):
        return RemoteType.ON_SITE.value
    return RemoteType.UNKNOWN.value


def extract_requirements(description: str) -> list[str]:
    """Pull requirement bullets out of a description.

    Looks for bulleted "Requirements", "Qualifications", "What we're looking
    for" and "Skills" sections first. When none exist, falls back to
    scanning for well-known technology names.
    """
    requirements: list[str] = []
    if not description:
        return requirements

    for pattern in REQUIREMENT_SECTION_PATTERNS:
        for match in pattern.finditer(description):
            for line in match.group(1).split("\n"):
                cleaned = BULLET_PREFIX.sub("", line).strip()
                if len(cleaned) > 3 and cleaned not in requirements:
                    requirements.append(cleaned)

    if not requirements:
        lowered = description.lower()
        requirements = [kw for kw in TECH_KEYWORDS if kw.lower() in lowered]

    return requirements[:MAX_REQUIREMENTS]


def merge_requirements(*groups: Iterable[str]) -> list[str]:
    """Concatenate requirement lists, dropping repeats, capped like extraction."""
    merged: list[str] = []
    for group in groups:
        for item in group:
            if item and item not in merged:
                merged.append(item)
    return merged[:MAX_REQUIREMENTS]


def _format_amount(amount: float, symbol: str) -> str:
    return f"{symbol}{int(amount):,}"


def format_salary(
    salary_min: Optional[float],
    salary_max: Optional[float],
    currency: Optional[str] = None,
    period: Optional[str] = None,
    symbol: str = "",
) -> Optional[str]:
    """Render a salary range as a single display string.

    >>> format_salary(50000, 70000, "EUR")
    '50,000 - 70,000 EUR'
    >>> format_salary(None, 90000, "USD", symbol="$")
    'Up to $90,000 USD'
    """
    if not salary_min and not salary_max:
        return None

    if salary_min and salary_max:
        text = f"{_format_amount(salary_min, symbol)} - {_format_amount(salary_max, symbol)}"
    elif salary_min:
        text = f"{_format_amount(salary_min, symbol)}+"
    else:
        text = f"Up to {_format_amount(salary_max, symbol)}"

    if currency:
        text = f"{text} {currency}"
    if period:
        text = f"{text}/{period}"
    return text


def normalize_contract_type(raw: Optional[str]) -> Optional[str]:
    """Map a source's contract vocabulary onto ContractType; unknown values pass through."""
    if not raw:
        return None
    key = raw.strip().lower()
    mapped = CONTRACT_ALIASES.get(key)
    if mapped:
        return mapped.value
    for fragments, contract in CONTRACT_FRAGMENTS:
        if any(f in key for f in fragments):
            return contract.value
    return raw.strip()


def strip_html(html: Optional[str]) -> str:
    if not html:
        return ""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style"]):
        tag.decompose()
    for br in soup.find_all("br"):
        br.replace_with("\n")
    for block in soup.find_all(BLOCK_TAGS):
        block.append("\n")
    # Keep list items recognisable as bullets
    for li in soup.find_all("li"):
        li.insert(0, "- ")
    text = soup.get_text()
    lines = [re.sub(r"[ \t]+", " ", line).strip() for line in text.splitlines()]
    return re.sub(r"\n{3,}", "\n\n", "\n".join(lines)).strip()


def stable_hash(value: str, length: int = 12) -> str:
    """Deterministic short id for values that have no native identifier."""
    return hashlib.sha1(value.encode("utf-8")).hexdigest()[:length]
