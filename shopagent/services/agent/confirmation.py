"""Confirmation gate for cart mutations.

Cart mutations proposed by the model are never executed directly. The
agent loop turns them into a ``BlockedMutation``; the gate materializes
that into a ``PendingAction`` and, on the user's next message, decides
whether to execute it once, cancel it, or remind the user about it.
"""

import enum
import logging
from dataclasses import dataclass, field
from typing import Any

from shopagent.schemas.chat import ConfirmationBlock
from shopagent.schemas.session import (
    BackendState,
    CartMutationKind,
    PendingAction,
    PendingActionStatus,
    ToolContext,
)
from shopagent.services.agent.i18n import (
    build_confirmation_block,
    build_pending_reminder,
    get_string,
)
from shopagent.services.agent.state import BlockedMutation, ToolTraceEntry
from shopagent.services.tools.base import ToolRegistry

logger = logging.getLogger(__name__)

AFFIRMATIONS = frozenset(
    {
        # English
        "y", "yes", "ok", "okay", "confirm", "sure", "yep", "yeah",
        "go ahead", "do it", "please", "please do",
        # Swedish
        "ja", "japp", "jo", "visst", "absolut", "självklart", "gör det", "kör",
    }
)

REJECTIONS = frozenset(
    {
        # English
        "n", "no", "cancel", "stop", "nope", "nah", "don't", "dont",
        "never mind", "nevermind",
        # Swedish
        "nej", "nä", "nää", "avbryt", "stopp", "strunt", "glöm det",
    }
)

MUTATING_TOOLS = frozenset(kind.value for kind in CartMutationKind)


class ReplyKind(str, enum.Enum):
    """How a user message answers an outstanding confirmation."""

    AFFIRM = "affirm"
    REJECT = "reject"
    OTHER = "other"


def classify_reply(message: str) -> ReplyKind:
    """Classify the whole trimmed, lower-cased message."""
    text = message.strip().lower()
    if text in AFFIRMATIONS:
        return ReplyKind.AFFIRM
    if text in REJECTIONS:
        return ReplyKind.REJECT
    return ReplyKind.OTHER


def is_affirmation(message: str) -> bool:
    return classify_reply(message) == ReplyKind.AFFIRM


def is_rejection(message: str) -> bool:
    return classify_reply(message) == ReplyKind.REJECT


def is_cart_mutation_tool(name: str) -> bool:
    return name in MUTATING_TOOLS


@dataclass
class ConfirmationOutcome:
    """Reply produced by the gate instead of an agent turn."""

    text: str
    reply_kind: ReplyKind
    record_exchange: bool = True
    confirmation: ConfirmationBlock | None = None
    tool_trace: list[ToolTraceEntry] = field(default_factory=list)
    result: Any = None


class ConfirmationGate:
    """Creates pending actions and resolves the user's answer to them."""

    def open(self, blocked: BlockedMutation) -> PendingAction:
        action = PendingAction(kind=blocked.kind, args=dict(blocked.args))
        logger.info("Pending action %s created: kind=%s", action.id, action.kind.value)
        return action

    def confirmation_block(self, action: PendingAction, culture_code: str | None = None) -> ConfirmationBlock:
        return build_confirmation_block(action.id, action.kind, action.args, culture_code)

    async def resolve(
        self,
        action: PendingAction | None,
        message: str,
        tools: ToolRegistry,
        state: BackendState,
        context: ToolContext | None,
        application_id: str,
    ) -> ConfirmationOutcome | None:
        """Answer ``message`` in light of ``action``.

        Returns None when the message should go to the agent as usual: there
        is no action, or the action is already settled and the message is not
        a repeated "yes".
        """
        if action is None:
            return None

        culture_code = context.culture_code if context else None
        reply = classify_reply(message)

        if not action.is_pending:
            if reply != ReplyKind.AFFIRM:
                return None
            key = (
                "already_completed"
                if action.status == PendingActionStatus.CONSUMED
                else "already_cancelled"
            )
            logger.info("Ignoring repeated confirmation for %s action %s", action.status.value, action.id)
            return ConfirmationOutcome(
                text=get_string(key, culture_code), reply_kind=reply, record_exchange=False
            )

        if reply == ReplyKind.AFFIRM:
            return await self._execute(action, tools, state, context, application_id)

        if reply == ReplyKind.REJECT:
            action.cancel()
            logger.info("Pending action %s cancelled", action.id)
            return ConfirmationOutcome(text=get_string("cancelled", culture_code), reply_kind=reply)

        return ConfirmationOutcome(
            text=build_pending_reminder(action.kind, action.args, culture_code),
            reply_kind=reply,
            record_exchange=False,
            confirmation=self.confirmation_block(action, culture_code),
        )

    async def _execute(
        self,
        action: PendingAction,
        tools: ToolRegistry,
        state: BackendState,
        context: ToolContext | None,
        application_id: str,
    ) -> ConfirmationOutcome:
        culture_code = context.culture_code if context else None
        trace = ToolTraceEntry(tool=action.kind.value, args=dict(action.args), pending_action_executed=True)
        tool = tools.get(action.kind.value)

        try:
            if tool is None:
                raise LookupError(f"Tool {action.kind.value} is not available")
            result = await tool.execute(action.args, state, context, application_id)
        except Exception as e:
            logger.exception("Pending action %s failed: kind=%s", action.id, action.kind.value)
            trace.error = str(e)
            action.consume()
            return ConfirmationOutcome(
                text=get_string("failed", culture_code, error=str(e)),
                reply_kind=ReplyKind.AFFIRM,
                tool_trace=[trace],
            )

        trace.result = result
        action.consume()
        logger.info("Pending action %s executed: kind=%s", action.id, action.kind.value)
        return ConfirmationOutcome(
            text=get_string("completed", culture_code),
            reply_kind=ReplyKind.AFFIRM,
            tool_trace=[trace],
            result=result,
        )
