"""Shared fixtures: an app on a temp SQLite file with fake provider clients."""

import os

os.environ.setdefault("ADIVA_ENV", "testing")

from types import SimpleNamespace

import pytest

from adiva.app import create_app
from adiva.config import TestingConfig
from adiva.services.auth_service import AuthService
from adiva.services.model_catalog import ANTHROPIC_FAMILY, OPENAI_FAMILY
from adiva.services.providers import ClaudeChatProvider, OpenAIChatProvider, ProviderAdapter
from adiva.services.settings_service import SettingsService


class FakeCompletions:
    """Stands in for openai_client.chat.completions."""

    def __init__(self):
        self.calls = []
        self.reply = "Hello from OpenAI"
        self.usage = {"prompt_tokens": 12, "completion_tokens": 8, "total_tokens": 20}
        self.stream_pieces = ["Hel", "lo ", "there"]
        self.error = None

    def create(self, **params):
        self.calls.append(params)
        if self.error is not None:
            raise self.error
        if params.get("stream"):
            return self._stream()
        usage = SimpleNamespace(**self.usage) if self.usage is not None else None
        return SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content=self.reply))],
            usage=usage,
        )

    def _stream(self):
        for piece in self.stream_pieces:
            yield SimpleNamespace(
                choices=[SimpleNamespace(delta=SimpleNamespace(content=piece))],
                usage=None,
            )
        yield SimpleNamespace(choices=[], usage=SimpleNamespace(**self.usage))


class FakeOpenAIClient:
    def __init__(self):
        self.completions = FakeCompletions()
        self.chat = SimpleNamespace(completions=self.completions)


class FakeMessages:
    """Stands in for anthropic_client.messages."""

    def __init__(self):
        self.calls = []
        self.reply = "Hello from Claude"
        self.usage = {"input_tokens": 10, "output_tokens": 5}
        self.error = None

    def create(self, **params):
        self.calls.append(params)
        if self.error is not None:
            raise self.error
        return SimpleNamespace(
            content=[SimpleNamespace(type="text", text=self.reply)],
            usage=SimpleNamespace(**self.usage),
        )


class FakeAnthropicClient:
    def __init__(self):
        self.messages = FakeMessages()


class FakeAPIError(Exception):
    """Shaped like the SDKs' APIStatusError: status_code, code and body."""

    def __init__(self, message, status_code=None, code=None, body=None):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.body = body


@pytest.fixture
def openai_client():
    return FakeOpenAIClient()


@pytest.fixture
def anthropic_client():
    return FakeAnthropicClient()


@pytest.fixture
def adapter(openai_client, anthropic_client):
    return ProviderAdapter({
        OPENAI_FAMILY: OpenAIChatProvider(client=openai_client),
        ANTHROPIC_FAMILY: ClaudeChatProvider(client=anthropic_client),
    })


@pytest.fixture
def app(tmp_path, adapter):
    database_path = tmp_path / "adiva-test.db"

    class Config(TestingConfig):
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{database_path}"

    return create_app(Config, provider_adapter=adapter)


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def set_policy(app):
    """Apply a partial admin settings update directly."""
    def apply(updates):
        with app.app_context():
            SettingsService.update_settings(updates, SimpleNamespace(id=None))
    return apply


@pytest.fixture
def make_user(app):
    def create(email="user@example.com", password="secret123", role="user", name="Test User"):
        with app.app_context():
            user = AuthService.register(name, email, password, role=role)
            return user.id
    return create


@pytest.fixture
def login(client):
    def do_login(email="user@example.com", password="secret123"):
        response = client.post("/api/auth/login", json={"email": email, "password": password})
        assert response.status_code == 200
        return response
    return do_login
