from typing import TypedDict, Annotated, List, Dict, Any, Optional, Literal
from langgraph.graph import StateGraph, END
from langgraph.graph.message import add_messages
from langchain_core.messages import BaseMessage, HumanMessage, AIMessage, SystemMessage, ToolMessage
import structlog
import asyncio
import json
import re
import time
import uuid

from caregiver_agent.domain.errors import (
    CareAgentError,
    ErrorKind,
    RateLimitedError,
    TurnCancelledError,
)
from caregiver_agent.domain.models.agent_state import (
    ConverseResult,
    ModelResponse,
    ToolCall,
    TurnStatus,
    TurnSummary,
)
from caregiver_agent.domain.models.care_models import CategorySettings, ContextBundle, ConversationTurn
from caregiver_agent.domain.context.context_manager import ContextAssembler
from caregiver_agent.domain.context.question_classifier import QuestionClassifier
from caregiver_agent.domain.context.memory.care_store import CareStore
from caregiver_agent.domain.context.memory.history_store import HistoryStore
from caregiver_agent.domain.orchestration.model_service import ModelService
from caregiver_agent.domain.orchestration.retry import RetryPolicy
from caregiver_agent.domain.tool.tool_executor import ToolExecutor
from caregiver_agent.infrastructure.observability.langfuse_tracing import observe, annotate_turn
from caregiver_agent.infrastructure.observability.logging import (
    bind_turn,
    conversation_logger,
    metrics,
    unbind_turn,
)

logger = structlog.get_logger(__name__)

SYSTEM_PREAMBLE = """You are a warm, knowledgeable childcare assistant helping a caregiver understand their child's records.

Rules:
- Ground every statement about the child in the records below or in tool results. Never invent data.
- Convert relative periods (today, yesterday, this week, last month) with getRelativeDate or calculateDate before any date-based lookup.
- Use calculateStats, getDailyCounts, analyzeTrend and compareToRecommended for numbers instead of estimating.
- If a record category is listed as excluded, do not guess about it and do not treat its absence as a health signal.
- For health concerns, give general guidance only and recommend consulting a pediatrician when symptoms persist or worsen.
- Reply in plain text. Do not use markdown: no bold, italics, headings or code formatting. Use "-" for lists.
- Answer in the language the caregiver writes in."""

_BOLD = re.compile(r"\*\*(.+?)\*\*|__(.+?)__", re.DOTALL)
_ITALIC = re.compile(r"(?<![\w*])\*(?!\s)([^*\n]+?)(?<!\s)\*(?![\w*])")
_HEADING = re.compile(r"^\s{0,3}#{1,6}\s*", re.MULTILINE)
_STAR_BULLET = re.compile(r"^(\s*)\*\s+", re.MULTILINE)


def strip_markdown(text: str) -> str:
    """Remove markdown emphasis, heading and code markers from a reply"""

    text = _BOLD.sub(lambda m: m.group(1) or m.group(2), text)
    text = _STAR_BULLET.sub(r"\1- ", text)
    text = _ITALIC.sub(r"\1", text)
    text = _HEADING.sub("", text)
    text = text.replace("`", "")
    return text.strip()


class TurnState(TypedDict):
    """State carried through one conversation turn graph"""
    messages: Annotated[List[BaseMessage], add_messages]
    turn_id: str
    entity_id: str
    user_id: str
    user_message: str
    cancel_event: Optional[asyncio.Event]
    bundle: Optional[ContextBundle]
    status: TurnStatus
    model_calls: int
    pending_calls: List[ToolCall]
    tools_used: List[str]
    last_text: str


class ConversationOrchestrator:
    """Drives one caregiver question through context, model and tool turns"""

    def __init__(
        self,
        store: CareStore,
        assembler: ContextAssembler,
        history: HistoryStore,
        executor: ToolExecutor,
        model: ModelService,
        retry_policy: Optional[RetryPolicy] = None,
        rate_limiter=None,
        classifier: Optional[QuestionClassifier] = None,
        max_tool_turns: int = 5
    ):
        self.store = store
        self.assembler = assembler
        self.history = history
        self.executor = executor
        self.model = model
        self.retry_policy = retry_policy or RetryPolicy()
        self.rate_limiter = rate_limiter
        self.classifier = classifier or QuestionClassifier()
        self.max_tool_turns = max_tool_turns
        self.workflow = self._create_workflow()

    def _create_workflow(self):
        """Create the turn graph: build context, then alternate model and tool steps"""

        workflow = StateGraph(TurnState)

        workflow.add_node("build_context", self.build_context_node)
        workflow.add_node("model_call", self.model_call_node)
        workflow.add_node("execute_tools", self.execute_tools_node)

        workflow.set_entry_point("build_context")
        workflow.add_edge("build_context", "model_call")
        workflow.add_conditional_edges(
            "model_call",
            self.route_after_model,
            {
                "tools": "execute_tools",
                "end": END
            }
        )
        workflow.add_edge("execute_tools", "model_call")

        return workflow.compile()

    async def build_context_node(self, state: TurnState) -> Dict[str, Any]:
        """Resolve settings, classify the question and assemble the prompt"""

        self._check_cancelled(state)
        conversation_logger.log_turn_transition(None, TurnStatus.BUILDING_CONTEXT.value)

        entity_id = state["entity_id"]
        category_filters = CategorySettings.resolve(await self.store.get_category_settings(entity_id))
        classification = self.classifier.classify(state["user_message"])

        bundle = await self.assembler.assemble(entity_id, state["user_id"], category_filters, classification)
        prior_turns = await self.history.recent(entity_id, bundle.history_count)

        return {
            "messages": self._build_prompt(bundle, prior_turns, state["user_message"]),
            "bundle": bundle,
            "status": TurnStatus.BUILDING_CONTEXT,
        }

    async def model_call_node(self, state: TurnState) -> Dict[str, Any]:
        """Call the model (with retries) and decide what happens next"""

        self._check_cancelled(state)
        model_calls = state["model_calls"] + 1
        conversation_logger.log_turn_transition(state["status"].value, TurnStatus.MODEL_CALL.value, model_calls)

        messages = state["messages"]
        tools = self.executor.registry.catalogue()
        response: ModelResponse = await self.retry_policy.run(lambda: self.model.send(messages, tools))

        last_text = response.text if response.text.strip() else state["last_text"]
        update: Dict[str, Any] = {"model_calls": model_calls, "last_text": last_text}

        if not response.wants_tools:
            # The final answer is exactly what the model returned, even when empty
            update["last_text"] = response.text
            update["status"] = TurnStatus.DONE
            update["messages"] = [AIMessage(content=response.text)]
            update["pending_calls"] = []
        elif model_calls >= self.max_tool_turns:
            logger.warning("Tool turn limit reached", model_calls=model_calls, pending=len(response.tool_calls))
            update["status"] = TurnStatus.TURN_LIMIT_REACHED
            update["pending_calls"] = []
        else:
            update["status"] = TurnStatus.TOOL_CALLS_RECEIVED
            update["pending_calls"] = response.tool_calls
            update["messages"] = [AIMessage(
                content=response.text,
                tool_calls=[{"name": c.name, "args": c.arguments, "id": c.id} for c in response.tool_calls]
            )]

        conversation_logger.log_turn_transition(
            TurnStatus.MODEL_CALL.value,
            update["status"].value,
            model_calls,
            {"tool_calls": [c.name for c in response.tool_calls]}
        )
        return update

    async def execute_tools_node(self, state: TurnState) -> Dict[str, Any]:
        """Run the requested tool batch and hand the results back as one batch"""

        self._check_cancelled(state)
        calls = state["pending_calls"]
        conversation_logger.log_turn_transition(
            TurnStatus.TOOL_CALLS_RECEIVED.value, TurnStatus.EXECUTING_TOOLS.value, state["model_calls"]
        )

        results = await self.executor.execute_batch(calls, state["entity_id"])

        tool_messages = [
            ToolMessage(
                content=json.dumps(result.payload(), ensure_ascii=False, default=str),
                tool_call_id=result.call_id,
                name=result.name
            )
            for result in results
        ]

        return {
            "messages": tool_messages,
            "status": TurnStatus.EXECUTING_TOOLS,
            "pending_calls": [],
            "tools_used": state["tools_used"] + [c.name for c in calls],
        }

    def route_after_model(self, state: TurnState) -> Literal["tools", "end"]:
        if state["status"] == TurnStatus.TOOL_CALLS_RECEIVED:
            return "tools"
        return "end"

    @observe(name="conversation_turn", capture_input=False)
    async def converse(
        self,
        entity_id: str,
        user_id: str,
        message: str,
        cancel_event: Optional[asyncio.Event] = None
    ) -> ConverseResult:
        """Answer one caregiver question and persist the exchange"""

        turn_id = uuid.uuid4().hex
        bind_turn(turn_id, entity_id, user_id)
        start = time.perf_counter()
        status = TurnStatus.FAILED
        model_calls = 0
        tools_used: List[str] = []

        try:
            if self.rate_limiter is not None and not await self.rate_limiter.allow(user_id):
                raise RateLimitedError(user_id, await self.rate_limiter.retry_after(user_id))

            annotate_turn(entity_id, user_id, {"turn_id": turn_id})
            logger.info("Conversation turn started", message_length=len(message))

            final = await self.workflow.ainvoke(
                self._initial_state(turn_id, entity_id, user_id, message, cancel_event),
                config={"recursion_limit": 2 * self.max_tool_turns + 5}
            )

            status = final["status"]
            model_calls = final["model_calls"]
            tools_used = final["tools_used"]
            bundle: ContextBundle = final["bundle"]

            reply = strip_markdown(final["last_text"])
            summary = TurnSummary(
                category_counts=bundle.category_counts,
                excluded_categories=bundle.excluded_categories,
                logged_category_count=sum(1 for count in bundle.category_counts.values() if count > 0),
                tools_used=tools_used,
                status=status,
            )

            if cancel_event is not None and cancel_event.is_set():
                raise TurnCancelledError(turn_id)

            await self.history.append(entity_id, user_id, message, reply, summary.model_dump(mode="json"))
            result = ConverseResult.ok(reply, summary)

        except CareAgentError as e:
            status = TurnStatus.FAILED
            if e.kind in (ErrorKind.RATE_LIMITED, ErrorKind.NOT_FOUND, ErrorKind.CANCELLED):
                logger.warning("Conversation turn rejected", error_kind=e.kind.value, error=e.message)
            else:
                logger.error("Conversation turn failed", error_kind=e.kind.value, error=e.message, details=e.details)
            result = ConverseResult.failure(e.kind)

        except Exception as e:
            status = TurnStatus.FAILED
            logger.error("Unexpected error in conversation turn", error=str(e), exc_info=True)
            result = ConverseResult.failure(ErrorKind.INTERNAL)

        finally:
            duration_ms = (time.perf_counter() - start) * 1000
            metrics.record_turn(status.value, duration_ms, model_calls, tools_used, status != TurnStatus.FAILED)
            unbind_turn()

        logger.info("Conversation turn finished", success=result.success, status=status.value)
        return result

    def _initial_state(
        self,
        turn_id: str,
        entity_id: str,
        user_id: str,
        message: str,
        cancel_event: Optional[asyncio.Event]
    ) -> TurnState:
        return {
            "messages": [],
            "turn_id": turn_id,
            "entity_id": entity_id,
            "user_id": user_id,
            "user_message": message,
            "cancel_event": cancel_event,
            "bundle": None,
            "status": TurnStatus.BUILDING_CONTEXT,
            "model_calls": 0,
            "pending_calls": [],
            "tools_used": [],
            "last_text": "",
        }

    def _build_prompt(
        self,
        bundle: ContextBundle,
        prior_turns: List[ConversationTurn],
        message: str
    ) -> List[BaseMessage]:
        """System preamble with context, then prior turns oldest first, then the question"""

        messages: List[BaseMessage] = [SystemMessage(content=f"{SYSTEM_PREAMBLE}\n\n{bundle.render()}")]
        for turn in prior_turns:
            messages.append(HumanMessage(content=turn.message))
            messages.append(AIMessage(content=turn.reply))
        messages.append(HumanMessage(content=message))
        return messages

    def _check_cancelled(self, state: TurnState):
        cancel_event = state.get("cancel_event")
        if cancel_event is not None and cancel_event.is_set():
            raise TurnCancelledError(state["turn_id"])
