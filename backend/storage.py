"""
Ventanilla Única - Storage
==========================
In-memory repositories (replace with the managed database in production).

Each store mirrors one table of the relational schema:
- user_tax_profile_co   -> TaxProfileStore   (one row per user)
- monthly_tax_inputs_co -> MonthlyInputStore (one row per user/year/month)
- conversations/messages -> ConversationStore
- documents + "docs" bucket -> DocumentStore
"""

from typing import Dict, List, Optional, Tuple

from models import (
    ChatMessage,
    Conversation,
    DocumentRecord,
    MonthlyInput,
    StoredMonthlyInput,
    StoredTaxProfile,
    TaxProfile,
    utc_now,
)


class StorageError(Exception):
    """A storage operation failed."""


class TaxProfileStore:
    """Fiscal profile per user, upserted on user_id."""

    def __init__(self):
        self._rows: Dict[str, StoredTaxProfile] = {}

    def get(self, user_id: str) -> Optional[StoredTaxProfile]:
        return self._rows.get(user_id)

    def upsert(self, user_id: str, profile: TaxProfile) -> StoredTaxProfile:
        existing = self._rows.get(user_id)
        now = utc_now()
        row = StoredTaxProfile(
            user_id=user_id,
            created_at=existing.created_at if existing else now,
            updated_at=now,
            **profile.model_dump(),
        )
        self._rows[user_id] = row
        return row


class MonthlyInputStore:
    """Monthly inputs keyed on (user_id, year, month); last write wins."""

    def __init__(self):
        self._rows: Dict[Tuple[str, int, int], StoredMonthlyInput] = {}

    def get(self, user_id: str, year: int, month: int) -> Optional[StoredMonthlyInput]:
        return self._rows.get((user_id, year, month))

    def upsert(self, user_id: str, monthly_input: MonthlyInput) -> StoredMonthlyInput:
        key = (user_id, monthly_input.year, monthly_input.month)
        existing = self._rows.get(key)
        fields = monthly_input.model_dump()
        if existing:
            row = StoredMonthlyInput(
                id=existing.id,
                user_id=user_id,
                created_at=existing.created_at,
                **fields,
            )
        else:
            row = StoredMonthlyInput(user_id=user_id, **fields)
        self._rows[key] = row
        return row

    def list_recent(self, user_id: str, limit: int) -> List[StoredMonthlyInput]:
        """Most recent months first."""
        rows = [row for (owner, _, _), row in self._rows.items() if owner == user_id]
        rows.sort(key=lambda r: (r.year, r.month), reverse=True)
        return rows[:limit]


class ConversationStore:
    """Conversations and their messages."""

    def __init__(self):
        self._conversations: Dict[str, Conversation] = {}
        self._messages: Dict[str, List[ChatMessage]] = {}

    def find(self, conversation_id: str, user_id: Optional[str]) -> Optional[Conversation]:
        """Find a conversation owned by `user_id` (None = anonymous)."""
        conversation = self._conversations.get(conversation_id)
        if conversation is None or conversation.user_id != user_id:
            return None
        return conversation

    def create(self, user_id: Optional[str]) -> Conversation:
        conversation = Conversation(user_id=user_id)
        self._conversations[conversation.id] = conversation
        self._messages[conversation.id] = []
        return conversation

    def add_message(
        self,
        conversation_id: str,
        role: str,
        content: str,
        user_id: Optional[str],
    ) -> ChatMessage:
        if conversation_id not in self._conversations:
            raise StorageError(f"Conversation {conversation_id} not found")
        message = ChatMessage(
            conversation_id=conversation_id,
            role=role,
            content=content,
            user_id=user_id,
        )
        self._messages[conversation_id].append(message)
        return message

    def recent_messages(self, conversation_id: str, limit: int) -> List[ChatMessage]:
        """Last `limit` messages in chronological order."""
        messages = self._messages.get(conversation_id, [])
        return messages[-limit:] if limit > 0 else []


class DocumentStore:
    """Document metadata plus the PDF blobs ("docs" bucket)."""

    def __init__(self):
        self._blobs: Dict[str, bytes] = {}
        self._records: Dict[str, DocumentRecord] = {}

    def upload(self, storage_path: str, content: bytes) -> None:
        if storage_path in self._blobs:
            raise StorageError(f"Object already exists: {storage_path}")
        self._blobs[storage_path] = content

    def remove(self, storage_path: str) -> None:
        self._blobs.pop(storage_path, None)

    def download(self, storage_path: str) -> Optional[bytes]:
        return self._blobs.get(storage_path)

    def insert(self, record: DocumentRecord) -> DocumentRecord:
        if any(r.storage_path == record.storage_path for r in self._records.values()):
            raise StorageError(f"Duplicate storage path: {record.storage_path}")
        self._records[record.id] = record
        return record

    def list_for_user(self, user_id: str) -> List[DocumentRecord]:
        """User's documents, newest first."""
        rows = [r for r in self._records.values() if r.user_id == user_id]
        rows.sort(key=lambda r: r.created_at, reverse=True)
        return rows
