"""
Sunny - Message template rendering.

Templates use ``{{variable}}`` placeholders. Unknown placeholders are left
untouched so the artist can see what is missing.
"""

import re
from typing import Any, Mapping, Optional

PLACEHOLDER_PATTERN = re.compile(r"\{\{(\w+)\}\}")

TEMPLATE_VARIABLES = (
    {"key": "client_name", "label": "Client Name", "example": "Sarah Johnson"},
    {"key": "client_first_name", "label": "First Name", "example": "Sarah"},
    {"key": "business_name", "label": "Business Name", "example": "Golden Touch PJ"},
    {"key": "business_phone", "label": "Business Phone", "example": "(555) 123-4567"},
)

SAMPLE_VARIABLES = {
    "client_name": "Sarah Johnson",
    "client_first_name": "Sarah",
    "business_name": "Your Business",
    "business_phone": "(555) 123-4567",
}


def render_template(body: str, variables: Mapping[str, Any]) -> str:
    """Replace ``{{key}}`` placeholders with values from *variables*."""

    def _sub(match: "re.Match[str]") -> str:
        key = match.group(1)
        if key in variables and variables[key] is not None:
            return str(variables[key])
        return match.group(0)

    return PLACEHOLDER_PATTERN.sub(_sub, body)


def client_variables(
    first_name: Optional[str],
    last_name: Optional[str],
    business_name: Optional[str],
    business_phone: Optional[str],
) -> dict[str, str]:
    """Build the standard variable set for one client of one tenant."""
    full_name = " ".join(p for p in (first_name, last_name) if p).strip()
    return {
        "client_name": full_name,
        "client_first_name": first_name or "",
        "business_name": business_name or "",
        "business_phone": business_phone or "",
    }
