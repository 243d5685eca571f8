# homeledger/chat.py
"""
Conversations about a property or one item in it.

Every turn is stored: the user's message is committed before the model is
called, so a failed call leaves the question in the history and the client
can simply send again. The model sees the whole conversation plus a system
prompt describing the property and the equipment the question is about.
"""
import logging
import uuid
from typing import List, NamedTuple, Optional, Tuple

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from homeledger import inventory
from homeledger.config import settings
from homeledger.errors import ChatError, NotFound
from homeledger.llm import LLMClient, LLMError
from homeledger.models import Conversation, Event, Item, Message, MessageRole, Property, utcnow
from homeledger.schemas import ConversationDetailOut, ConversationOut, ConversationSummaryOut, MessageOut

logger = logging.getLogger(__name__)

MAX_RELEVANT_ITEMS = 10
MIN_TERM_LENGTH = 3
RELEVANT_ITEM_EVENTS = 5
FOCAL_ITEM_EVENTS = 10
LINEAGE_ITEM_EVENTS = 3
EVENTS_SHOWN_PER_ITEM = 3
REPLY_MAX_TOKENS = 2048

SYSTEM_PROMPT = """You are a helpful home maintenance assistant. You have access to this homeowner's property information and equipment history.

%(property)s

%(equipment)s

Be practical and helpful. Suggest DIY solutions when appropriate, recommend professionals when safety or complexity warrants it. Reference specific equipment details when relevant. Keep responses concise but thorough."""


class ContextItem(NamedTuple):
    item: Item
    events: List[Event]
    role: Optional[str] = None   # "ancestor", "focal" or "child" in item chats


def describe_property(prop: Property) -> str:
    lines = [f"Property: {prop.name}"]
    address = ", ".join(p for p in (prop.street_address, prop.city, prop.state, prop.postal_code) if p)
    if address:
        lines.append(f"Address: {address}")
    if prop.year_built:
        lines.append(f"Year Built: {prop.year_built}")
    if prop.property_type:
        lines.append(f"Type: {prop.property_type}")
    return "\n".join(lines)


def describe_context_item(entry: ContextItem) -> str:
    item = entry.item
    text = f"- {item.name} ({item.category})"
    if item.manufacturer:
        text += f" - {item.manufacturer}"
    if item.model:
        text += f" {item.model}"
    if item.acquired_date:
        text += f", acquired {item.acquired_date.isoformat()}"
    if entry.role:
        text += f" [{entry.role}]"
    shown = entry.events if entry.role == "focal" else entry.events[:EVENTS_SHOWN_PER_ITEM]
    if shown:
        text += "\n  Recent: " + ", ".join(f"{ev.type} on {ev.date.date().isoformat()}" for ev in shown)
    return text


def build_system_prompt(prop: Property, context: List[ContextItem]) -> str:
    if context:
        equipment = "Relevant Equipment:\n" + "\n".join(describe_context_item(c) for c in context)
    else:
        equipment = "No specific equipment context available."
    return SYSTEM_PROMPT % {"property": describe_property(prop), "equipment": equipment}


def is_relevant(item: Item, terms: List[str]) -> bool:
    text = " ".join(p for p in (item.name, item.manufacturer, item.model, item.category, item.notes) if p).lower()
    return any(term in text for term in terms)


def conversation_title(message: str, item: Optional[Item] = None) -> str:
    if item is not None:
        return f"{item.name}: {message[:30]}" + ("..." if len(message) > 30 else "")
    return message[:50] + ("..." if len(message) > 50 else "")


class ChatService:
    def __init__(self, session: AsyncSession, llm: LLMClient, model: str = None):
        self.session = session
        self.llm = llm
        self.model = model or settings.reasoning_model

    # ---------- conversations ----------

    async def list_conversations(self, property_id: uuid.UUID) -> List[ConversationSummaryOut]:
        res = await self.session.execute(
            select(Conversation).where(Conversation.property_id == property_id)
            .order_by(Conversation.updated_at.desc())
        )
        conversations = list(res.scalars().all())
        if not conversations:
            return []
        ids = [c.id for c in conversations]
        counts = dict((await self.session.execute(
            select(Message.conversation_id, func.count()).where(Message.conversation_id.in_(ids))
            .group_by(Message.conversation_id)
        )).all())
        out = []
        for conv in conversations:
            last = (await self.session.execute(
                select(Message).where(Message.conversation_id == conv.id)
                .order_by(Message.created_at.desc()).limit(1)
            )).scalar_one_or_none()
            summary = ConversationSummaryOut.model_validate(conv)
            summary.last_message = MessageOut.model_validate(last) if last else None
            summary.message_count = counts.get(conv.id, 0)
            out.append(summary)
        return out

    async def create_conversation(
        self, property_id: uuid.UUID, user_id: uuid.UUID, title: Optional[str] = None,
        item_id: Optional[uuid.UUID] = None,
    ) -> Conversation:
        if item_id is not None:
            item = await self.session.get(Item, item_id)
            if item is None or item.property_id != property_id:
                raise NotFound("Item not found")
        conv = Conversation(property_id=property_id, item_id=item_id, title=title, created_by_id=user_id)
        self.session.add(conv)
        await self.session.commit()
        logger.info("Created conversation %s in property %s", conv.id, property_id)
        return conv

    async def get_owned_conversation(self, conversation_id: uuid.UUID, user_id: uuid.UUID) -> Conversation:
        conv = await self.session.get(Conversation, conversation_id)
        if conv is None:
            raise NotFound("Conversation not found")
        try:
            await inventory.get_owned_property(self.session, conv.property_id, user_id)
        except NotFound:
            raise NotFound("Conversation not found")
        return conv

    async def messages(self, conversation_id: uuid.UUID) -> List[Message]:
        res = await self.session.execute(
            select(Message).where(Message.conversation_id == conversation_id).order_by(Message.created_at)
        )
        return list(res.scalars().all())

    async def detail(self, conv: Conversation) -> ConversationDetailOut:
        out = ConversationDetailOut.model_validate(conv)
        out.messages = [MessageOut.model_validate(m) for m in await self.messages(conv.id)]
        return out

    async def rename(self, conv: Conversation, title: str) -> ConversationOut:
        conv.title = title
        await self.session.commit()
        return ConversationOut.model_validate(conv)

    async def delete_conversation(self, conv: Conversation) -> None:
        await self.session.execute(delete(Message).where(Message.conversation_id == conv.id))
        await self.session.delete(conv)
        await self.session.commit()
        logger.info("Deleted conversation %s", conv.id)

    # ---------- context ----------

    async def relevant_items(self, property_id: uuid.UUID, message: str) -> List[ContextItem]:
        """Items whose name, maker, model, category or notes mention any word of the message."""
        # words like "a" or "is" would match nearly every item
        terms = [t for t in message.lower().split() if len(t) >= MIN_TERM_LENGTH]
        matched = [i for i in await inventory.list_items(self.session, property_id) if is_relevant(i, terms)]
        return [
            ContextItem(item, await inventory.list_events(self.session, item.id, limit=RELEVANT_ITEM_EVENTS))
            for item in matched[:MAX_RELEVANT_ITEMS]
        ]

    async def item_lineage(self, focal: Item) -> List[ContextItem]:
        """Ancestors from the root down, the item itself, then its direct components."""
        ancestors: List[Item] = []
        seen = {focal.id}
        parent_id = focal.parent_id
        while parent_id is not None and parent_id not in seen:
            parent = await self.session.get(Item, parent_id)
            if parent is None:
                break
            ancestors.insert(0, parent)
            seen.add(parent.id)
            parent_id = parent.parent_id
        context = [
            ContextItem(a, await inventory.list_events(self.session, a.id, limit=LINEAGE_ITEM_EVENTS), "ancestor")
            for a in ancestors
        ]
        context.append(
            ContextItem(focal, await inventory.list_events(self.session, focal.id, limit=FOCAL_ITEM_EVENTS), "focal")
        )
        for child in await inventory.list_children(self.session, focal.id):
            context.append(
                ContextItem(child, await inventory.list_events(self.session, child.id, limit=LINEAGE_ITEM_EVENTS), "child")
            )
        return context

    # ---------- messages ----------

    async def send_message(self, conv: Conversation, content: str) -> Tuple[Message, Message]:
        conversation_id = conv.id
        user_message = Message(conversation_id=conversation_id, role=MessageRole.USER, content=content)
        self.session.add(user_message)
        conv.updated_at = utcnow()
        await self.session.commit()

        prop = await self.session.get(Property, conv.property_id)
        if prop is None:
            raise NotFound("Property not found")
        focal = await self.session.get(Item, conv.item_id) if conv.item_id else None
        if focal is not None:
            context = await self.item_lineage(focal)
        else:
            context = await self.relevant_items(prop.id, content)
        history = await self.messages(conversation_id)

        llm_messages = [{"role": "system", "content": build_system_prompt(prop, context)}]
        llm_messages += [{"role": m.role, "content": m.content} for m in history]
        try:
            reply = await self.llm.chat_completion(llm_messages, model=self.model, max_tokens=REPLY_MAX_TOKENS)
        except LLMError as e:
            logger.exception("Chat call failed for conversation %s", conversation_id)
            raise ChatError(f"Chat model call failed: {e}")
        reply = (reply or "").strip()
        if not reply:
            raise ChatError("Chat model returned an empty reply")

        assistant_message = Message(conversation_id=conversation_id, role=MessageRole.ASSISTANT, content=reply)
        self.session.add(assistant_message)
        if len(history) <= 1:
            conv.title = conversation_title(content, focal)
        conv.updated_at = utcnow()
        await self.session.commit()
        logger.info(
            "Chat reply in conversation %s (%d context items, %d chars)",
            conversation_id, len(context), len(reply),
        )
        return user_message, assistant_message
