"""Chunk analysis and report synthesis against a LangChain chat model.

The client is the only place that talks to the model service. It owns the
chat histories used for context chaining in opening mode; callers get an
opaque conversation handle and never see the messages themselves.
"""

from __future__ import annotations

import uuid
from typing import Any, Callable, Dict, List, Optional

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from loguru import logger

from ..config import Config
from ..errors import AuthError, ResponseParseError, TransientError
from ..models import AnalysisMode, AnalysisRequest, AnalysisResult, Entity
from ..utils import TextUtils
from ..utils.json_utils import JSONExtractionError, parse_json_object
from .agent_prompts import CHUNK_PROMPTS, SYSTEM_PROMPTS, VALIDATION_PROMPT, render
from .retry import RetryController, describe_exception

ModelFactory = Callable[[str], BaseChatModel]


def message_text(message: Any) -> str:
    """Flatten a chat model reply into plain text."""
    content = getattr(message, "content", message)
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts: List[str] = []
        for part in content:
            if isinstance(part, str):
                parts.append(part)
            elif isinstance(part, dict) and isinstance(part.get("text"), str):
                parts.append(part["text"])
        return "".join(parts)
    return str(content or "")


def _finish_detail(message: Any) -> str:
    metadata = getattr(message, "response_metadata", None) or {}
    reason = metadata.get("finish_reason") or metadata.get("done_reason")
    return f" finish reason: {reason}." if reason else ""


def normalize_entities(raw: Any) -> List[Entity]:
    """Accept both plain-name lists and ``{name, category, context}`` objects."""
    if not isinstance(raw, list):
        return []
    entities: List[Entity] = []
    for item in raw:
        if isinstance(item, str):
            entities.append(Entity(name=item.strip()))
        elif isinstance(item, dict):
            name = item.get("name")
            category = item.get("category") or item.get("type") or "other"
            context = item.get("context") or item.get("contextSnippet") or ""
            entities.append(
                Entity(
                    name=name.strip() if isinstance(name, str) else "",
                    category=str(category).strip().lower() or "other",
                    context_snippet=str(context),
                )
            )
    return entities


class AnalysisClient:
    """Sends chunks and synthesis prompts to the model, with classified errors."""

    def __init__(
        self,
        model: BaseChatModel,
        model_factory: Optional[ModelFactory] = None,
        retry: Optional[RetryController] = None,
        max_chunks_for_opening: int = None,
    ):
        self._model = model
        self._model_factory = model_factory
        self._retry = retry or RetryController()
        self._max_chunks_for_opening = (
            Config.MAX_CHUNKS_FOR_OPENING if max_chunks_for_opening is None else max_chunks_for_opening
        )
        self._conversations: Dict[str, List[BaseMessage]] = {}

    @property
    def model(self) -> BaseChatModel:
        return self._model

    # ------------------------------------------------------------------
    # Conversation handles
    # ------------------------------------------------------------------
    def _system_prompt(self, mode: AnalysisMode) -> str:
        return render(SYSTEM_PROMPTS[mode], MAX_CHUNKS=self._max_chunks_for_opening)

    def open_conversation(self, mode: AnalysisMode) -> str:
        handle = f"conv-{uuid.uuid4().hex[:12]}"
        self._conversations[handle] = [SystemMessage(content=self._system_prompt(mode))]
        logger.info(f"[client] opened conversation {handle} mode={mode.value}")
        return handle

    def close_conversation(self, handle: Optional[str]) -> None:
        if handle and self._conversations.pop(handle, None) is not None:
            logger.info(f"[client] closed conversation {handle}")

    def conversation_length(self, handle: str) -> int:
        return len(self._conversations.get(handle, []))

    # ------------------------------------------------------------------
    # Chunk analysis
    # ------------------------------------------------------------------
    @staticmethod
    def build_chunk_prompt(request: AnalysisRequest, mode: AnalysisMode) -> str:
        chunk_number = request.position_index + 1
        previous = ""
        if request.previous_chunk_summary and chunk_number > 1:
            previous = f"\nSummary of the previous chunk:\n{request.previous_chunk_summary}\n"
        historical = ""
        if request.historical_context and mode is AnalysisMode.OPENING:
            historical = f"\n{request.historical_context}\n"
        return render(
            CHUNK_PROMPTS[mode],
            CHUNK_NUMBER=chunk_number,
            TOTAL=request.total_count,
            PREVIOUS_SUMMARY=previous,
            HISTORICAL_CONTEXT=historical,
            TEXT=request.chunk_text,
        )

    @staticmethod
    def parse_result(text: str, chunk_number: int) -> AnalysisResult:
        try:
            data = parse_json_object(text)
        except JSONExtractionError as exc:
            raise ResponseParseError(
                f"could not parse response for chunk {chunk_number}: {exc}", raw_text=text
            ) from exc
        summary = data.get("summary")
        analysis = data.get("analysis")
        if not (isinstance(summary, str) and summary.strip()) or not (
            isinstance(analysis, str) and analysis.strip()
        ):
            raise ResponseParseError(
                f"response for chunk {chunk_number} is missing 'summary' or 'analysis'",
                raw_text=text,
            )
        raw_entities = data.get("extractedEntities", data.get("entities"))
        return AnalysisResult(
            summary=summary.strip(),
            analysis=analysis.strip(),
            entities=normalize_entities(raw_entities),
        )

    async def analyze(
        self,
        request: AnalysisRequest,
        mode: AnalysisMode,
        conversation: Optional[str] = None,
    ) -> AnalysisResult:
        """Analyze one chunk. Raises ``AuthError``, ``RateLimitError`` or ``TransientError``."""
        chunk_number = request.position_index + 1
        prompt = self.build_chunk_prompt(request, mode)
        if conversation is not None:
            history = self._conversations.get(conversation)
            if history is None:
                raise TransientError(f"unknown conversation handle {conversation}")
            messages = [*history, HumanMessage(content=prompt)]
        else:
            history = None
            messages = [SystemMessage(content=self._system_prompt(mode)), HumanMessage(content=prompt)]

        logger.info(
            f"[client] analyze chunk {chunk_number}/{request.total_count} mode={mode.value} "
            f"prompt_len={len(prompt)} history={len(messages) - 1}"
        )
        response = await self._retry.call(
            lambda: self._model.ainvoke(messages), label=f"chunk {chunk_number}"
        )
        text = message_text(response)
        if not text.strip():
            raise ResponseParseError(
                f"model returned no content for chunk {chunk_number}.{_finish_detail(response)}"
            )
        logger.debug(
            f"[client] chunk {chunk_number} output: {TextUtils.truncate_text(text, Config.LOG_LLM_OUTPUT_MAX)}"
        )
        result = self.parse_result(text, chunk_number)
        if history is not None:
            history.extend([HumanMessage(content=prompt), AIMessage(content=text)])
        return result

    # ------------------------------------------------------------------
    # Synthesis and credentials
    # ------------------------------------------------------------------
    async def synthesize(self, system_prompt: str, prompt: str, label: str = "report") -> str:
        messages = [SystemMessage(content=system_prompt), HumanMessage(content=prompt)]
        logger.info(f"[client] synthesize {label} prompt_len={len(prompt)}")
        response = await self._retry.call(lambda: self._model.ainvoke(messages), label=label)
        text = message_text(response).strip()
        if not text:
            raise ResponseParseError(f"model returned an empty {label}.{_finish_detail(response)}")
        return text

    async def override_credentials(self, api_key: str) -> None:
        """Swap in a model built with ``api_key`` after a cheap validation call."""
        if not api_key or not api_key.strip():
            raise AuthError("API key cannot be empty")
        if self._model_factory is None:
            raise AuthError("this client does not support credential override")
        candidate = self._model_factory(api_key.strip())
        try:
            await candidate.ainvoke([HumanMessage(content=VALIDATION_PROMPT)])
        except Exception as exc:
            logger.warning(f"[client] credential validation failed: {describe_exception(exc)}")
            raise AuthError(f"credential validation failed: {describe_exception(exc)}") from exc
        self._model = candidate
        logger.info("[client] switched to overridden credentials")


__all__ = ["AnalysisClient", "message_text", "normalize_entities"]
