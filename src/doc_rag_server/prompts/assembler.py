"""
Prompt Assembler

Turns a retrieval result into the system prompt handed to a chat-completion
model. The prompt carries:

- the retrieved excerpts in ranked order, annotated with `[Page N]` and, for
  multi-document sets, `[Source: Title]`
- footnote citation requirements (page, or document and page)
- conflict-handling instructions for multi-document sets
- whatever disclosure rules apply to the document set
- an optional response-style suffix

The chat-completion call itself happens elsewhere.
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, List, Optional, Sequence, assert_never

from pydantic import BaseModel, ConfigDict, Field

from .rules import DisclosureRule
from ..registry.models import DocumentSet
from ..retrieval.models import RankedChunk, RetrievalResult

CONTEXT_DELIMITER = "\n\n---\n\n"

_SINGLE_CITATION = (
    "Look for [Page X] markers in the text. For single-document searches, your "
    "references should include the page number. Example: \"Drug X is indicated[1]. "
    "Dosage is 100mg[2].\n\n---\n\n**References**\n[1] Page 15\n[2] Page 45\""
)

_MULTI_CITATION = (
    "Look for [Page X] and [Source: Document Name] markers in the text. For "
    "multi-document searches, your references MUST include both the source document "
    "name AND page number. Example: \"Drug X is indicated[1]. Dosage is 100mg[2]."
    "\n\n---\n\n**References**\n[1] Manual A, Page 15\n[2] Manual B, Page 42\""
)

_CONFLICT_INSTRUCTIONS = (
    "**CRITICAL FOR MULTI-DOCUMENT SEARCHES**: If you notice CONFLICTING or "
    "CONTRADICTORY information between the sources:\n"
    "   - Explicitly state that \"Different recommendations exist between sources\" or similar\n"
    "   - Present BOTH perspectives clearly with their respective source citations\n"
    "   - If publication years are mentioned or implied, note which guideline is more recent\n"
    "   - Example: \"Source A recommends X[1], while Source B suggests Y[2]\"\n"
    "   - Do NOT try to reconcile or choose between conflicts, present them transparently\n"
    "   - If differences are due to context (e.g., different patient populations), explain the distinction"
)

_BASE_RULES = (
    "Answer questions ONLY using information from the provided relevant excerpts below",
    "If the answer is not in the excerpts, say \"I don't have that information in the provided sections of the {name}\"",
    "Be concise and professional",
    "If you're unsure, admit it rather than guessing",
    "Do NOT mention chunk numbers or reference which excerpt information came from",
)


class ResponseStyle(str, Enum):
    DEFAULT = "default"
    COMPACT = "compact"
    EXPLANATORY = "explanatory"


def _style_suffix(style: ResponseStyle) -> str:
    if style is ResponseStyle.DEFAULT:
        return ""
    if style is ResponseStyle.COMPACT:
        return (
            "\n\nRESPONSE STYLE - STRICTLY FOLLOW:\n"
            "- Use markdown tables when presenting structured data\n"
            "- Present information in the most compact, scannable format\n"
            "- Lead with the direct answer, then provide details\n"
            "- Use minimal explanatory text - let the structure speak\n"
            "- **MANDATORY**: Include footnotes [1], [2], etc. for EVERY claim with references at response end"
        )
    if style is ResponseStyle.EXPLANATORY:
        return (
            "\n\nRESPONSE STYLE - STRICTLY FOLLOW:\n"
            "- ALWAYS add a brief introductory sentence explaining the context\n"
            "- When presenting factual data, include WHY it matters\n"
            "- Add a short concluding note with practical significance when relevant\n"
            "- Use more descriptive language - explain, don't just list\n"
            "- **MANDATORY**: Include footnotes [1], [2], etc. for EVERY claim with references at response end"
        )
    assert_never(style)


class AssembledPrompt(BaseModel):
    """System prompt plus the chat turn, ready for a chat-completion call."""

    system_prompt: str
    messages: List[Dict[str, str]] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)

    def to_chat_messages(self) -> List[Dict[str, str]]:
        return [{"role": "system", "content": self.system_prompt}] + list(self.messages)


class PromptAssembler:

    def __init__(self, rules: Optional[Sequence[DisclosureRule]] = None) -> None:
        self.rules: List[DisclosureRule] = list(rules or [])

    @staticmethod
    def document_name(document_set: DocumentSet) -> str:
        titles = [doc.title for doc in document_set.documents if doc.title]
        if not titles:
            return "the provided documents"
        return " and ".join(titles)

    def build_context(
        self,
        chunks: Sequence[RankedChunk],
        document_set: DocumentSet,
    ) -> str:
        """Join chunk contents in the given order with page and source annotations."""
        parts = []
        for chunk in chunks:
            text = f"{chunk.content} [Page {chunk.page_number}]"
            if document_set.is_multi:
                text += f" [Source: {chunk.document.title or chunk.document.slug}]"
            parts.append(text)
        return CONTEXT_DELIMITER.join(parts)

    def build_system_prompt(
        self,
        result: RetrievalResult,
        document_set: DocumentSet,
        style: ResponseStyle = ResponseStyle.DEFAULT,
    ) -> str:
        name = self.document_name(document_set)
        multi = document_set.is_multi

        rules = [rule.format(name=name) for rule in _BASE_RULES]
        for disclosure in self.rules:
            instruction = disclosure.instruction(document_set)
            if instruction:
                rules.append(instruction)
        if multi:
            rules.append(_CONFLICT_INSTRUCTIONS)
        numbered = "\n".join(f"{i}. {text}" for i, text in enumerate(rules, start=1))

        subject = f"multiple documents: {name}" if multi else f"the {name}"
        citation = _MULTI_CITATION if multi else _SINGLE_CITATION
        reference_rule = (
            "**FOR MULTI-DOCUMENT**: References MUST include source document name AND page (e.g., [1] Manual A, Page 15)"
            if multi
            else "Extract page numbers from [Page X] markers for citations (e.g., [1] Page 15)"
        )
        context = self.build_context(result.chunks, document_set)

        prompt = (
            f"You are a helpful assistant that answers questions based on {subject}.\n\n"
            "***CRITICAL FORMATTING REQUIREMENT: You MUST include footnotes [1], [2], etc. "
            f"for EVERY claim/fact in your response, with references at the end. {citation}***\n\n"
            "IMPORTANT RULES:\n"
            f"{numbered}\n\n"
            "FORMATTING RULES:\n"
            "- Use **bold** for important terms and section titles\n"
            "- Use bullet points (- or *) for lists\n"
            "- Use numbered lists (1., 2., 3.) for sequential steps\n"
            "- Use line breaks between different topics\n"
            "- Keep paragraphs short and scannable\n"
            "- **MANDATORY**: Use footnotes [1], [2], etc. for EVERY claim or fact: place superscript [number] immediately after each claim\n"
            "- **MANDATORY**: Provide numbered references at the end of EVERY response (do not skip this step)\n"
            "- Number footnotes sequentially starting from [1] for each response\n"
            f"- {reference_rule}\n\n"
            f"RELEVANT EXCERPTS FROM {name.upper()}:\n"
            "---\n"
            f"{context}\n"
            "---"
        )
        return prompt + _style_suffix(style)

    def assemble(
        self,
        result: RetrievalResult,
        document_set: DocumentSet,
        message: str,
        history: Optional[Sequence[Dict[str, str]]] = None,
        style: ResponseStyle = ResponseStyle.DEFAULT,
    ) -> AssembledPrompt:
        """System prompt plus prior turns and the new user message."""
        messages = [
            {"role": turn["role"], "content": turn["content"]}
            for turn in (history or [])
        ]
        messages.append({"role": "user", "content": message})
        return AssembledPrompt(
            system_prompt=self.build_system_prompt(result, document_set, style),
            messages=messages,
        )
