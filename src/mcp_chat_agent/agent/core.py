"""
Core chat agent.

One chat turn:
1. Opens a request context so tool calls land on the request's timeline
2. Loads the session history (summaries become system context)
3. Offers the currently available MCP tools when asked to
4. Runs the LLM/tool loop with an iteration limit
5. Appends the user and assistant messages to the session
"""

import secrets
import time
from dataclasses import asdict, dataclass
from typing import Any

import structlog

from ..config import Settings, get_settings
from ..llm import BaseLLM, LLMMessage, LLMResponse
from ..memory import ConversationMemoryStore, MessageRole, StoredMessage
from ..tools import DynamicToolProvider, RequestContext

logger = structlog.get_logger()

DEFAULT_SYSTEM_PROMPT = """You are a helpful AI assistant.

Guidelines:
1. Be helpful, accurate, and concise
2. Use the available tools when a question needs live data or an action on an external system
3. Explain what a tool returned instead of pasting raw output
4. If you're unsure, say so
5. Format responses clearly using Markdown"""


@dataclass
class ChatResult:
    """Outcome of one chat turn."""

    response: str
    session_id: str
    request_id: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def new_ephemeral_session_id(prefix: str = "temp-") -> str:
    """Session id for callers that did not send one; never swept."""
    return f"{prefix}{int(time.time() * 1000)}-{secrets.token_hex(4)}"


def history_to_llm_messages(history: list[StoredMessage]) -> list[LLMMessage]:
    """Convert stored history into provider-neutral LLM messages."""
    messages = []
    for msg in history:
        if msg.role == MessageRole.USER:
            messages.append(LLMMessage(role="user", content=msg.text))
        elif msg.role == MessageRole.ASSISTANT:
            messages.append(LLMMessage(role="assistant", content=msg.text))
        else:
            messages.append(LLMMessage(role="system", content=msg.text))
    return messages


class ChatAgent:
    """Processes chat messages against session memory and dynamic MCP tools."""

    def __init__(
        self,
        llm: BaseLLM,
        memory: ConversationMemoryStore,
        tool_provider: DynamicToolProvider,
        settings: Settings | None = None,
        system_prompt: str | None = None,
    ):
        self.settings = settings or get_settings()
        self.llm = llm
        self.memory = memory
        self.tool_provider = tool_provider
        self.system_prompt = system_prompt or DEFAULT_SYSTEM_PROMPT
        self.max_tool_iterations = self.settings.max_tool_iterations

    async def process_message(
        self,
        message: str,
        session_id: str | None = None,
        use_tools: bool = False,
        request_id: str | None = None,
    ) -> ChatResult:
        """Process a user message and return the assistant's reply.

        Args:
            message: User text
            session_id: Conversation to continue; an ephemeral id is made up when absent
            use_tools: Offer the registered MCP tools to the model
            request_id: Correlation id for tool-call events; generated when absent
        """
        if not message or not message.strip():
            raise ValueError("message cannot be empty")

        session_id = session_id or new_ephemeral_session_id(self.settings.ephemeral_session_prefix)

        with self.tool_provider.tracker.request(request_id) as context:
            log = logger.bind(session_id=session_id, request_id=context.correlation_id)

            history = await self.memory.get_messages(session_id)
            messages = history_to_llm_messages(history)
            messages.append(LLMMessage(role="user", content=message))

            tools = await self.tool_provider.tool_definitions() if use_tools else None
            log.info("Processing message", history=len(history), tools=len(tools or ()))

            try:
                reply = await self._run_loop(messages, tools, context)
            except Exception as e:
                log.error("LLM generation error", error=str(e))
                return ChatResult(
                    response=f"I encountered an error processing your message: {str(e)}",
                    session_id=session_id,
                    request_id=context.correlation_id,
                )

            await self.memory.append_messages(
                session_id,
                [StoredMessage.user(message), StoredMessage.assistant(reply)],
            )

        return ChatResult(response=reply, session_id=session_id, request_id=context.correlation_id)

    async def _run_loop(self, messages: list[LLMMessage], tools, context: RequestContext) -> str:
        response: LLMResponse | None = None
        for _ in range(self.max_tool_iterations):
            response = await self.llm.generate(
                messages=messages,
                tools=tools,
                system_prompt=self.system_prompt,
            )

            if not response.wants_tools:
                return response.content

            messages.append(LLMMessage(
                role="assistant",
                content=response.content,
                tool_calls=response.tool_calls,
            ))
            for tool_call in response.tool_calls:
                logger.info(
                    "Executing tool",
                    tool=tool_call.name,
                    request_id=context.correlation_id,
                )
                result = await self.tool_provider.execute_tool_call(tool_call, context)
                messages.append(LLMMessage(
                    role="tool",
                    content=result,
                    tool_call_id=tool_call.id,
                    name=tool_call.name,
                ))

        timeout_msg = "I've reached the maximum number of tool iterations. Here's what I have so far."
        if response and response.content:
            timeout_msg = f"{response.content}\n\n{timeout_msg}"
        return timeout_msg
