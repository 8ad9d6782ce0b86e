"""
Sunny - Knowledge fragment selection.

The knowledge base is a static catalog of small fragments, each tagged with
keywords. For every request only the few fragments that best match the
recent conversation are rendered into the system prompt.

Example:
    ```python
    from sunny.knowledge import select_fragments, format_knowledge

    fragments = select_fragments("my weld keeps breaking", ["hi"])
    prompt_section = format_knowledge(fragments)
    ```
"""

import json
import logging
import re
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Iterable, Optional, Sequence

import yaml

from .exceptions import CatalogError
from .models import KnowledgeFragment

logger = logging.getLogger("sunny.knowledge")

CATALOG_PATH = Path(__file__).parent / "data" / "knowledge.yaml"

MAX_FRAGMENTS = 5
RECENT_MESSAGES_CONSIDERED = 2

KNOWLEDGE_GAP_PATTERN = re.compile(r"<!--\s*KNOWLEDGE_GAP:\s*(\{[^}]+\})\s*-->")
_MARKER_PATTERNS = (
    re.compile(r"<!--\s*KNOWLEDGE_GAP:.*?-->", re.DOTALL),
    re.compile(r"<!--\s*PRODUCT_SEARCH:.*?-->", re.DOTALL),
)


@dataclass(frozen=True)
class KnowledgeCatalog:
    """Parsed knowledge catalog."""

    version: int
    fragments: tuple[KnowledgeFragment, ...]
    default_ids: tuple[str, ...] = ()

    def get(self, fragment_id: str) -> Optional[KnowledgeFragment]:
        for fragment in self.fragments:
            if fragment.id == fragment_id:
                return fragment
        return None

    def defaults(self) -> list[KnowledgeFragment]:
        """Default fragments, in catalog order."""
        wanted = set(self.default_ids)
        return [f for f in self.fragments if f.id in wanted]


def parse_catalog(raw: Any) -> KnowledgeCatalog:
    """Build a catalog from the decoded YAML document."""
    if not isinstance(raw, dict):
        raise CatalogError("Knowledge catalog must be a mapping")
    if "version" not in raw:
        raise CatalogError("Knowledge catalog is missing 'version'")

    entries = raw.get("fragments")
    if not isinstance(entries, list) or not entries:
        raise CatalogError("Knowledge catalog has no fragments")

    fragments = []
    seen = set()
    for entry in entries:
        try:
            fragment = KnowledgeFragment.from_dict(entry)
        except (KeyError, TypeError, ValueError) as e:
            raise CatalogError(f"Invalid knowledge fragment: {entry!r}") from e
        if fragment.id in seen:
            raise CatalogError(f"Duplicate knowledge fragment id: {fragment.id}")
        seen.add(fragment.id)
        fragments.append(fragment)

    default_ids = tuple(raw.get("defaults") or ())
    unknown = [d for d in default_ids if d not in seen]
    if unknown:
        raise CatalogError(f"Unknown default fragment ids: {', '.join(unknown)}")

    return KnowledgeCatalog(
        version=int(raw["version"]),
        fragments=tuple(fragments),
        default_ids=default_ids,
    )


@lru_cache(maxsize=None)
def load_catalog(path: Optional[str] = None) -> KnowledgeCatalog:
    """Load and cache the knowledge catalog (the bundled one by default)."""
    catalog_path = Path(path) if path else CATALOG_PATH
    try:
        with open(catalog_path, encoding="utf-8") as f:
            raw = yaml.safe_load(f)
    except OSError as e:
        raise CatalogError(f"Cannot read knowledge catalog {catalog_path}: {e}") from e
    except yaml.YAMLError as e:
        raise CatalogError(f"Invalid YAML in knowledge catalog {catalog_path}: {e}") from e

    catalog = parse_catalog(raw)
    logger.debug(
        "Loaded knowledge catalog v%s with %d fragments",
        catalog.version,
        len(catalog.fragments),
    )
    return catalog


def keyword_weight(keyword: str) -> int:
    if len(keyword) > 6:
        return 3
    if len(keyword) > 3:
        return 2
    return 1


def score_fragment(fragment: KnowledgeFragment, search_text: str) -> int:
    """Score a fragment against already lower-cased search text."""
    score = sum(
        keyword_weight(keyword)
        for keyword in fragment.keywords
        if keyword.lower() in search_text
    )
    if score > 0 and fragment.priority:
        score += fragment.priority
    return score


def select_fragments(
    latest_user_text: str,
    recent_user_texts: Sequence[str] = (),
    catalog: Optional[KnowledgeCatalog] = None,
    limit: int = MAX_FRAGMENTS,
) -> list[KnowledgeFragment]:
    """Pick the fragments most relevant to the latest user messages.

    The search text is the latest message plus the last two earlier user
    messages. Ties keep catalog order. When nothing matches, the catalog's
    default fragments are returned.
    """
    catalog = catalog or load_catalog()
    recent = list(recent_user_texts)[-RECENT_MESSAGES_CONSIDERED:]
    search_text = " ".join([latest_user_text or "", *recent]).lower()

    scored = [(score_fragment(f, search_text), f) for f in catalog.fragments]
    scored = [pair for pair in scored if pair[0] > 0]
    scored.sort(key=lambda pair: pair[0], reverse=True)

    if not scored:
        return catalog.defaults()
    return [fragment for _, fragment in scored[:limit]]


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def _scalar(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _is_scalar(value: Any) -> bool:
    return isinstance(value, (str, int, float, bool))


def _label(key: str) -> str:
    spaced = re.sub(r"([A-Z])", r" \1", str(key)).replace("_", " ")
    return spaced.strip().upper()


def stringify(obj: Any, depth: int = 0) -> str:
    """Render nested data as compact, indented text for the prompt."""
    indent = "  " * depth

    if obj is None:
        return ""
    if _is_scalar(obj):
        return f"{indent}{_scalar(obj)}"

    if isinstance(obj, list):
        if not obj:
            return ""
        if _is_scalar(obj[0]):
            return "\n".join(f"{indent}- {_scalar(item)}" for item in obj)
        return "\n".join(
            stringify(item, depth) if isinstance(item, dict) else f"{indent}- {_scalar(item)}"
            for item in obj
        )

    lines = []
    for key, value in obj.items():
        label = _label(key)
        if _is_scalar(value):
            lines.append(f"{indent}{label}: {_scalar(value)}")
        elif isinstance(value, list) and value and isinstance(value[0], str):
            lines.append(f"{indent}{label}:")
            lines.extend(f"{indent}  - {_scalar(v)}" for v in value)
        elif isinstance(value, (dict, list)):
            lines.append(f"{indent}{label}:")
            lines.append(stringify(value, depth + 1))

    return "\n".join(line for line in lines if line)


def format_fragment(fragment: KnowledgeFragment) -> str:
    return f"[{fragment.label}]\n{stringify(fragment.data)}"


def format_knowledge(
    fragments: Iterable[KnowledgeFragment],
    additions: Iterable[tuple[str, str]] = (),
) -> str:
    """Render selected fragments plus any learned Q&A additions."""
    text = "\n\n".join(format_fragment(f) for f in fragments)
    pairs = [f"Q: {q}\nA: {a}" for q, a in additions]
    if pairs:
        text += "\n\n[Additional Learned Knowledge]\n" + "\n\n".join(pairs)
    return text


# ---------------------------------------------------------------------------
# Knowledge-gap markers
# ---------------------------------------------------------------------------


def extract_knowledge_gap(text: str) -> Optional[dict[str, str]]:
    """Parse a ``<!-- KNOWLEDGE_GAP: {...} -->`` marker, if present."""
    match = KNOWLEDGE_GAP_PATTERN.search(text or "")
    if not match:
        return None
    try:
        data = json.loads(match.group(1))
    except json.JSONDecodeError:
        logger.warning("Ignoring malformed knowledge-gap marker")
        return None
    if not isinstance(data, dict):
        return None
    return {
        "category": str(data.get("category") or "other"),
        "topic": str(data.get("topic") or "other"),
    }


def strip_markers(text: str) -> str:
    """Remove hidden knowledge-gap and product-search markers."""
    for pattern in _MARKER_PATTERNS:
        text = pattern.sub("", text)
    return text.strip()
