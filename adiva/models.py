from datetime import datetime, timezone
from sqlalchemy import (
    Column, Integer, String, Text, Date, DateTime, Boolean, Float, ForeignKey, Index, JSON, UniqueConstraint
)
from sqlalchemy.orm import relationship
from werkzeug.security import check_password_hash, generate_password_hash

from adiva.extensions import db


def utcnow():
    """Naive UTC timestamp, matching what SQLite hands back."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class GuestUsage(db.Model):
    """Per-guest message counter, purged once expires_at has passed."""
    __tablename__ = 'guest_usage'

    id = Column(Integer, primary_key=True)
    guest_id = Column(String(64), unique=True, nullable=False, index=True)
    chat_count = Column(Integer, nullable=False, default=0)
    last_seen_at = Column(DateTime, nullable=False, default=utcnow)
    expires_at = Column(DateTime, nullable=False, index=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class AdminSettings(db.Model):
    """Singleton row (key 'global') holding admin-configured limits."""
    __tablename__ = 'admin_settings'

    id = Column(Integer, primary_key=True)
    key = Column(String(32), unique=True, nullable=False, default='global')
    settings = Column(JSON, nullable=False, default=dict)
    updated_by = Column(Integer, ForeignKey('users.id'), nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class User(db.Model):
    """Registered account."""
    __tablename__ = 'users'

    id = Column(Integer, primary_key=True)
    name = Column(String(50), nullable=False)
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    role = Column(String(10), nullable=False, default='user')  # 'user' or 'admin'
    is_active = Column(Boolean, nullable=False, default=True)
    last_login = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)

    settings = relationship('UserSettings', back_populates='user', uselist=False, cascade='all, delete-orphan')
    chats = relationship('Chat', back_populates='user', cascade='all, delete-orphan')

    def set_password(self, password):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        return check_password_hash(self.password_hash, password)

    @property
    def is_admin(self):
        return self.role == 'admin'

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "isActive": self.is_active,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "lastLogin": self.last_login.isoformat() if self.last_login else None,
        }


class UserSettings(db.Model):
    """Per-user chat defaults."""
    __tablename__ = 'user_settings'

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey('users.id'), unique=True, nullable=False)
    default_model = Column(String(64), nullable=True)
    default_temperature = Column(Float, nullable=False, default=0.7)
    default_max_tokens = Column(Integer, nullable=False, default=2000)
    custom_system_prompt = Column(Text, nullable=True)

    user = relationship('User', back_populates='settings')

    def to_dict(self):
        return {
            "defaultModel": self.default_model,
            "defaultTemperature": self.default_temperature,
            "defaultMaxTokens": self.default_max_tokens,
            "customSystemPrompt": self.custom_system_prompt,
        }


class Chat(db.Model):
    """Persisted conversation of an authenticated user."""
    __tablename__ = 'chats'

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)
    conversation_id = Column(String(128), unique=True, nullable=False, index=True)
    title = Column(String(100), nullable=False)
    model = Column(String(64), nullable=True)
    temperature = Column(Float, nullable=False, default=0.7)
    max_tokens = Column(Integer, nullable=False, default=2000)
    system_prompt = Column(Text, nullable=True)
    message_count = Column(Integer, nullable=False, default=0)
    total_tokens = Column(Integer, nullable=False, default=0)
    is_archived = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=utcnow)
    last_message_at = Column(DateTime, default=utcnow)

    user = relationship('User', back_populates='chats')
    messages = relationship(
        'ChatMessage',
        back_populates='chat',
        cascade='all, delete-orphan',
        order_by='ChatMessage.id'
    )

    __table_args__ = (
        Index('ix_chats_user_id_last_message_at', 'user_id', 'last_message_at'),
    )

    def to_dict(self, include_messages=False):
        data = {
            "id": self.id,
            "conversationId": self.conversation_id,
            "title": self.title,
            "model": self.model,
            "messageCount": self.message_count,
            "totalTokens": self.total_tokens,
            "isArchived": self.is_archived,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "lastMessageAt": self.last_message_at.isoformat() if self.last_message_at else None,
        }
        if include_messages:
            data["messages"] = [message.to_dict() for message in self.messages]
        return data


class ChatMessage(db.Model):
    """Single turn of a persisted chat."""
    __tablename__ = 'chat_messages'

    id = Column(Integer, primary_key=True)
    chat_id = Column(Integer, ForeignKey('chats.id'), nullable=False)
    role = Column(String(10), nullable=False)  # 'system', 'user' or 'assistant'
    content = Column(Text, nullable=False)
    model = Column(String(64), nullable=True)
    tokens = Column(Integer, nullable=False, default=0)
    has_image = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=utcnow)

    chat = relationship('Chat', back_populates='messages')

    __table_args__ = (
        Index('ix_chat_messages_chat_id_id', 'chat_id', 'id'),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "model": self.model,
            "tokens": self.tokens,
            "hasImage": self.has_image,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }


class UserDailyStats(db.Model):
    """Per-user message and token totals for one UTC day."""
    __tablename__ = 'user_daily_stats'

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey('users.id'), nullable=False)
    date = Column(Date, nullable=False)
    messages_sent = Column(Integer, nullable=False, default=0)
    messages_received = Column(Integer, nullable=False, default=0)
    tokens_used = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint('user_id', 'date', name='uq_user_daily_stats_user_date'),
    )

    def to_dict(self):
        return {
            "date": self.date.isoformat(),
            "messagesSent": self.messages_sent,
            "messagesReceived": self.messages_received,
            "tokensUsed": self.tokens_used,
        }


class UserModelUsage(db.Model):
    """How often, and with how many tokens, a user has chatted with each model."""
    __tablename__ = 'user_model_usage'

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey('users.id'), nullable=False)
    model = Column(String(64), nullable=False)
    count = Column(Integer, nullable=False, default=0)
    tokens_used = Column(Integer, nullable=False, default=0)
    last_used = Column(DateTime, default=utcnow)

    __table_args__ = (
        UniqueConstraint('user_id', 'model', name='uq_user_model_usage_user_model'),
    )

    def to_dict(self):
        return {
            "model": self.model,
            "count": self.count,
            "tokensUsed": self.tokens_used,
            "lastUsed": self.last_used.isoformat() if self.last_used else None,
        }
