"""
Disclosure rules for the system prompt.

A rule inspects the target document set and contributes at most one
numbered instruction. Rules are independent of retrieval: they only look at
which documents the question is about.
"""

from __future__ import annotations

from typing import FrozenSet, Iterable, List, Optional, Protocol

from ..config import Settings, settings
from ..registry.models import DocumentSet


class DisclosureRule(Protocol):

    def instruction(self, document_set: DocumentSet) -> Optional[str]:
        ...


class ExternalResourceRule:
    """
    Point users at an external resource, but only for allow-listed documents.

    When any document in the set is on the allow-list, the assistant is told
    to answer and also direct the user to `url` for questions about `topic`.
    For every other set it is told never to mention the resource.
    """

    def __init__(
        self,
        url: str,
        allowed_slugs: Iterable[str],
        topic: str = "drug dose conversions",
    ) -> None:
        self.url = url
        self.allowed_slugs: FrozenSet[str] = frozenset(allowed_slugs)
        self.topic = topic

    def applies_to(self, document_set: DocumentSet) -> bool:
        return any(slug in self.allowed_slugs for slug in document_set.slugs)

    def instruction(self, document_set: DocumentSet) -> Optional[str]:
        if self.applies_to(document_set):
            return (
                f"For questions about {self.topic}, attempt to answer but include "
                f"a message directing users to consult {self.url}"
            )
        return (
            f"CRITICAL: Under NO circumstances should you mention {self.url} or "
            "any page of that website in your response. Do not direct users to "
            "external websites. Only answer using the provided document excerpts."
        )


def build_disclosure_rules(config: Optional[Settings] = None) -> List[DisclosureRule]:
    """Rules enabled by configuration. No URL means no rule."""
    config = config or settings
    rules: List[DisclosureRule] = []
    if config.external_resource_url:
        rules.append(
            ExternalResourceRule(
                url=config.external_resource_url,
                allowed_slugs=config.external_resource_slug_list(),
                topic=config.external_resource_topic,
            )
        )
    return rules
