"""
Summarization service used by memory compaction.
"""

from abc import ABC, abstractmethod

import structlog

from .base import BaseLLM, LLMMessage

logger = structlog.get_logger()

SUMMARY_SYSTEM_PROMPT = """You are an assistant specialized in writing concise summaries of conversations.
Your goal is to condense several messages of a conversation into one informative summary.

Important rules:
- Keep ALL important technical information (resource names, commands, errors, etc.)
- Preserve the context and the logical sequence of the conversation
- Use clear and objective language
- Write the summary as a single running paragraph
- Do not add information that was not in the original messages
- If there are important commands or outputs, keep them in the summary"""


class Summarizer(ABC):
    """Turns a conversation transcript into a condensed summary."""

    @abstractmethod
    async def summarize(self, transcript: str) -> str:
        """Return a summary of the transcript."""
        pass


class LLMSummarizer(Summarizer):
    """Summarizer backed by a chat model."""

    def __init__(self, llm: BaseLLM, system_prompt: str = SUMMARY_SYSTEM_PROMPT):
        self.llm = llm
        self.system_prompt = system_prompt

    async def summarize(self, transcript: str) -> str:
        response = await self.llm.generate(
            messages=[LLMMessage(role="user", content=transcript)],
            system_prompt=self.system_prompt,
        )
        summary = response.content.strip()
        logger.debug(
            "Summary generated",
            model=response.model or self.llm.model,
            transcript_chars=len(transcript),
            summary_chars=len(summary),
        )
        return summary
