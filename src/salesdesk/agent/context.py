"""Builds the system prompt from the company's business profile."""

import logging
from typing import Optional

from salesdesk.config import settings
from salesdesk.core.schema import BusinessProfile
from salesdesk.data.postgrest import (
    DataStore,
    StoreError,
)
from salesdesk.data.queries import get_business_profile

logger = logging.getLogger(__name__)

BASE_INSTRUCTION = (
    "You are a helpful assistant for a sales ERP. Respond briefly and clearly in {language}.\n"
    "Use the available tools to look up products, stock, orders and customers. Never invent "
    "data: if a tool reports that something was not found, say so."
)

_PROFILE_LINES = (
    ("name", "Company name"),
    ("description", "Description"),
    ("personality", "Brand personality"),
    ("sales_messaging", "Sales messaging"),
)


async def load_business_profile(store: DataStore) -> Optional[BusinessProfile]:
    """
    Fetch the business profile for this request.

    No failure here is fatal for the chat: it is logged and treated as "no profile".
    """
    try:
        return await get_business_profile(store)
    except StoreError as exc:
        logger.warning("Could not load company settings for the chat: %s", exc)
    except Exception:  # noqa: BLE001  pylint: disable=broad-except
        logger.warning("Unexpected error loading company settings for the chat", exc_info=True)
    return None


def render_business_context(profile: Optional[BusinessProfile]) -> str:
    """Render the non-empty profile fields, one per line, in a fixed order."""
    if profile is None:
        return ""
    lines = []
    for attr, label in _PROFILE_LINES:
        value = getattr(profile, attr).strip()
        if value:
            lines.append(f"{label}: {value}")
    return "\n".join(lines)


def build_system_prompt(profile: Optional[BusinessProfile], language: str | None = None) -> str:
    """Combine the base instruction with the company context, if there is any."""
    prompt = BASE_INSTRUCTION.format(language=language or settings.ASSISTANT_LANGUAGE)
    company = render_business_context(profile)
    if company:
        prompt += f"\n\nCompany context:\n{company}"
    return prompt


async def assemble_system_prompt(store: DataStore, override: str | None = None) -> str:
    """Return *override* when given, otherwise the prompt built from the stored profile."""
    if override:
        return override
    return build_system_prompt(await load_business_profile(store))
