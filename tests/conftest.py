"""Shared fixtures: a keyless environment and fresh settings for every test."""

import asyncio
import json
from typing import List, Optional

import pytest

from app.config import get_settings
from app.services.model_backends import ModelBackend
from app.services.prompt_builder import PromptPayload


@pytest.fixture(autouse=True)
def default_env(monkeypatch):
    """Run against the HTTP backend and in-memory storage unless a test says otherwise."""
    monkeypatch.setenv("MODEL_BACKEND", "apifreellm")
    monkeypatch.setenv("STORAGE_BACKEND", "memory")
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    monkeypatch.delenv("SUPABASE_URL", raising=False)
    monkeypatch.delenv("SUPABASE_KEY", raising=False)
    monkeypatch.delenv("SUPABASE_SERVICE_ROLE_KEY", raising=False)
    monkeypatch.delenv("MAX_PROMPT_CHARS", raising=False)
    for name in ("MODEL_NAME", "MODEL_TIMEOUT_SECONDS", "MAX_UPLOAD_BYTES", "TRUSTED_PROXIES", "LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def make_activity_payload(title: str = "Frações com Algoritmos") -> dict:
    """One activity as the model is instructed to return it."""
    return {
        "titulo": title,
        "descricao": (
            "**Contextualização:** Frações no cotidiano.\n\n"
            "**Objetivos de Aprendizagem:**\n- Comparar frações\n\n"
            "**Passo a Passo da Atividade:** Os alunos escrevem um algoritmo.\n\n"
            "**Avaliação:** Observação e rubrica."
        ),
        "competenciaBNCC": "EF06MA07 - Compreender frações",
        "competenciaBNCCComputacao": "EF06CO01 - Construir algoritmos",
        "duracaoEstimada": 50,
        "recursosNecessarios": ["Papel", "Lápis"],
    }


@pytest.fixture
def activity_payload() -> dict:
    return make_activity_payload()


class FakeBackend(ModelBackend):
    """Returns a canned response (or raises) and records the payloads it saw."""

    name = "fake"

    def __init__(self, response: str = "", error: Optional[Exception] = None, delay: float = 0.0,
                 structured: bool = False):
        self.response = response
        self.error = error
        self.delay = delay
        self.supports_structured_output = structured
        self.payloads: List[PromptPayload] = []

    async def generate(self, payload: PromptPayload) -> str:
        self.payloads.append(payload)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.response


def make_batch(*titles) -> str:
    return json.dumps({"atividades": [make_activity_payload(t) for t in titles]}, ensure_ascii=False)
