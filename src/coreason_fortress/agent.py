# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_fortress

"""
Per-contact conversation runtime.

One AgentSession per (channel, contact). Sessions are mirrored to encrypted
storage after every completed turn and restored on startup.
"""

import uuid
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from coreason_fortress.audit import AuditLogger, get_audit_logger
from coreason_fortress.llm import LLMClient, LLMRequest, LLMResponse, ToolCall, ToolDefinition, ToolResult
from coreason_fortress.models import AgentMessage, AgentSession, ChannelType, IncomingMessage
from coreason_fortress.persistence import StatePersistence
from coreason_fortress.retention import prune_conversation, strip_metadata_for_llm
from coreason_fortress.sessions import now_ms
from coreason_fortress.utils.logger import logger

MAX_TOOL_ROUNDS = 5
ERROR_REPLY = "I encountered an error processing your message. Please try again."
EMPTY_REPLY = "I apologize, but I was unable to generate a response."

ToolExecutor = Callable[[str, Dict], Awaitable[str]]


def session_key(channel: ChannelType, contact_id: str) -> str:
    return f"{ChannelType(channel).value}:{contact_id}"


class Agent:
    """Routes messages to the LLM while keeping per-contact history."""

    def __init__(
        self,
        llm: LLMClient,
        system_prompt: str,
        tools: Optional[List[ToolDefinition]] = None,
        tool_executor: Optional[ToolExecutor] = None,
        max_context_messages: int = 50,
        max_session_age: float = 86400,
        persistence: Optional[StatePersistence] = None,
        audit_logger: Optional[AuditLogger] = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        """
        Initializes the agent.

        Args:
            llm: Backend implementing the LLMClient contract.
            system_prompt: Prepended to every request.
            tools: Tool definitions advertised to the model.
            tool_executor: Runs tool calls. Without one, calls return an error result.
            max_context_messages: History kept per session.
            max_session_age: Seconds until a session expires.
            persistence: Encrypted store. Sessions are memory-only without it.
            audit_logger: Destination for agent events.
            clock: Returns the current time in epoch milliseconds.
        """
        self.llm = llm
        self.system_prompt = system_prompt
        self.tools = tools or []
        self.tool_executor = tool_executor
        self.max_context_messages = max_context_messages
        self.max_session_age = max_session_age
        self.persistence = persistence
        self.audit_log = audit_logger or get_audit_logger()
        self._clock = clock
        self._sessions: Dict[str, AgentSession] = {}

    async def handle_message(self, msg: IncomingMessage) -> str:
        """
        Produces the reply for one already-gated message.

        LLM failures never surface internal detail: the caller gets a fixed
        apology and the error goes to the audit log.
        """
        session = self._get_or_create_session(msg.contact_id, msg.channel)
        session.messages.append(
            AgentMessage(
                role="user",
                content=msg.text,
                timestamp=msg.timestamp,
                channel=msg.channel,
                contact_id=msg.contact_id,
            )
        )
        session.messages = prune_conversation(session.messages, self.max_context_messages, self.audit_log)

        request = LLMRequest(
            system_prompt=self.system_prompt,
            messages=strip_metadata_for_llm(session.messages),
            tools=self.tools,
        )

        try:
            response, tool_rounds = await self._run(request, session)
        except Exception as e:
            self.audit_log.error(
                "agent_error",
                channel=msg.channel,
                contact_id=msg.contact_id,
                session_id=session.id,
                details={"error": type(e).__name__},
            )
            logger.error(f"Agent failed for session {session.id}: {e}")
            return ERROR_REPLY

        reply = response.content or EMPTY_REPLY
        now = self._clock()
        session.messages.append(
            AgentMessage(role="assistant", content=reply, timestamp=now, channel=msg.channel, contact_id=msg.contact_id)
        )
        session.last_active_at = now

        self.audit_log.info(
            "agent_response",
            channel=msg.channel,
            contact_id=msg.contact_id,
            session_id=session.id,
            details={
                "inputTokens": response.input_tokens,
                "outputTokens": response.output_tokens,
                "toolRounds": tool_rounds,
            },
        )
        self._persist(session)
        return reply

    async def _run(self, request: LLMRequest, session: AgentSession) -> Tuple[LLMResponse, int]:
        response: LLMResponse = await self.llm.chat(request)
        rounds = 0
        while response.tool_calls and rounds < MAX_TOOL_ROUNDS:
            rounds += 1
            results = await self._execute_tools(response.tool_calls, session)
            request = request.model_copy(
                update={
                    "messages": [*request.messages, {"role": "assistant", "content": response.content or "Using tools..."}]
                }
            )
            response = await self.llm.continue_with_tool_results(request, results)
        return response, rounds

    async def _execute_tools(self, calls: List[ToolCall], session: AgentSession) -> List[ToolResult]:
        results = []
        for call in calls:
            if self.tool_executor is None:
                results.append(ToolResult(tool_use_id=call.id, content="Tool execution not available", is_error=True))
                continue
            self.audit_log.info("tool_execution", session_id=session.id, details={"tool": call.name})
            try:
                output = await self.tool_executor(call.name, call.input)
            except Exception as e:
                # Tool failures go back to the model as an error result.
                self.audit_log.error(
                    "tool_execution_failed", session_id=session.id, details={"tool": call.name, "error": str(e)}
                )
                results.append(ToolResult(tool_use_id=call.id, content=f"Error: {e}", is_error=True))
                continue
            results.append(ToolResult(tool_use_id=call.id, content=output))
        return results

    def _get_or_create_session(self, contact_id: str, channel: ChannelType) -> AgentSession:
        key = session_key(channel, contact_id)
        now = self._clock()
        session = self._sessions.get(key)

        if session is not None and session.expires_at < now:
            del self._sessions[key]
            if self.persistence is not None:
                self.persistence.delete_session(session.id)
            self.audit_log.info("session_expired", channel=channel, contact_id=contact_id)
            session = None

        if session is None:
            # The table only grows on creation, so sweep here.
            self.prune_expired_sessions()
            session = AgentSession(
                id=str(uuid.uuid4()),
                contact_id=contact_id,
                channel=channel,
                created_at=now,
                last_active_at=now,
                expires_at=now + int(self.max_session_age * 1000),
            )
            self._sessions[key] = session
            self.audit_log.info("session_created", channel=channel, contact_id=contact_id, session_id=session.id)

        return session

    def _persist(self, session: AgentSession) -> None:
        if self.persistence is None:
            return
        try:
            self.persistence.save_session(session)
        except OSError as e:
            # The reply is still delivered; the turn is kept in memory.
            self.audit_log.error("session_persist_failed", session_id=session.id, details={"error": str(e)})

    def restore_all_sessions(self) -> int:
        """
        Loads every non-expired persisted session into memory.

        Expired files are deleted. Sessions whose (channel, contact) key or id
        is already in memory are skipped, so calling this twice is harmless.

        Returns:
            The number of sessions restored.
        """
        if self.persistence is None:
            return 0

        self.persistence.prune_expired_sessions()
        now = self._clock()
        known_ids = {s.id for s in self._sessions.values()}
        restored = 0

        for session in self.persistence.load_all_sessions():
            if session.expires_at < now:
                self.persistence.delete_session(session.id)
                continue
            key = session_key(session.channel, session.contact_id)
            if key in self._sessions or session.id in known_ids:
                continue
            self._sessions[key] = session
            known_ids.add(session.id)
            restored += 1

        if restored:
            logger.info(f"Restored {restored} session(s) from disk")
            self.audit_log.info("sessions_restored", details={"count": restored})
        return restored

    def prune_expired_sessions(self) -> int:
        """
        Drops expired sessions from memory and deletes their persisted copies.

        Returns:
            The number of sessions removed.
        """
        now = self._clock()
        expired = [(k, s) for k, s in self._sessions.items() if s.expires_at < now]
        for key, session in expired:
            del self._sessions[key]
            if self.persistence is not None:
                self.persistence.delete_session(session.id)
        if expired:
            self.audit_log.info("sessions_pruned", details={"count": len(expired)})
        return len(expired)

    def get_session(self, contact_id: str, channel: ChannelType) -> Optional[AgentSession]:
        return self._sessions.get(session_key(channel, contact_id))

    def clear_session(self, contact_id: str, channel: ChannelType) -> None:
        session = self._sessions.pop(session_key(channel, contact_id), None)
        if session is not None and self.persistence is not None:
            self.persistence.delete_session(session.id)

    def clear_all_sessions(self) -> None:
        if self.persistence is not None:
            for session in self._sessions.values():
                self.persistence.delete_session(session.id)
        self._sessions.clear()

    def evict_contact(self, contact_id: str) -> int:
        """Drops every in-memory session for `contact_id` on any channel."""
        keys = [k for k, s in self._sessions.items() if s.contact_id == contact_id]
        for key in keys:
            del self._sessions[key]
        return len(keys)

    def get_session_count(self) -> int:
        return len(self._sessions)
