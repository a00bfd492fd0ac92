"""Pydantic models for activity generation.

This module defines the request a teacher submits, the activity records the
model must return, and the persisted activity that merges both.

The generated fields keep the Portuguese keys the model is instructed to
produce (``titulo``, ``descricao`` ...) as aliases, while Python code works
with snake_case attributes.
"""

from datetime import datetime, timezone
from enum import Enum
import re
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Sentinel returned in competency fields when the support material has no citation
CITATION_NOT_FOUND = "Não encontrado no material de apoio"

# Description sections every generated lesson plan must contain
REQUIRED_DESCRIPTION_SECTIONS = (
    "Contextualização",
    "Objetivos de Aprendizagem",
    "Passo a Passo da Atividade",
    "Avaliação",
)

_LEADING_INTEGER = re.compile(r"\s*(\d+)")

MIN_QUANTITY = 1
MAX_QUANTITY = 5


class ComputationalThinkingPillar(str, Enum):
    """The four computational thinking pillars of BNCC Computação."""
    DECOMPOSICAO = "Decomposição"
    ABSTRACAO = "Abstração"
    RECONHECIMENTO_PADROES = "Reconhecimento de Padrões"
    ALGORITMOS = "Algoritmos"


class ActivityLevel(str, Enum):
    """Difficulty level of an activity."""
    FACIL = "Fácil"
    MEDIO = "Médio"
    DIFICIL = "Difícil"


class ActivityRequest(BaseModel):
    """Form configuration submitted for one generation call."""

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    subject: str = Field(min_length=1, description="Disciplina, e.g. 'Matemática'")
    topic: str = Field(min_length=1, description="Tópico da aula, e.g. 'Frações'")
    grade: str = Field(min_length=1, description="Turma/ano, e.g. '6º Ano'")
    pillar: ComputationalThinkingPillar
    level: ActivityLevel
    quantity: int = Field(default=1, ge=MIN_QUANTITY, le=MAX_QUANTITY)


class GeneratedActivity(BaseModel):
    """One lesson plan as produced by the model."""

    model_config = ConfigDict(populate_by_name=True)

    title: str = Field(alias="titulo", description="Título da atividade")
    description: str = Field(
        alias="descricao",
        description=(
            "Texto longo em Markdown com as seções obrigatórias "
            "'**Contextualização:**', '**Objetivos de Aprendizagem:**', "
            "'**Passo a Passo da Atividade:**' e '**Avaliação:**'"
        ),
    )
    bncc_competency: str = Field(
        alias="competenciaBNCC",
        description="Código e descrição completa da competência BNCC",
    )
    bncc_computing_competency: str = Field(
        alias="competenciaBNCCComputacao",
        description="Código e descrição completa da competência BNCC Computação",
    )
    estimated_duration: int = Field(
        alias="duracaoEstimada",
        ge=0,
        description="Duração estimada em minutos",
    )
    required_resources: List[str] = Field(
        alias="recursosNecessarios",
        description="Lista de recursos necessários",
    )

    @field_validator("estimated_duration", mode="before")
    @classmethod
    def leading_minutes(cls, v: Any) -> Any:
        # Text models sometimes answer "45 minutos"
        if isinstance(v, str):
            match = _LEADING_INTEGER.match(v)
            if match:
                return int(match.group(1))
        return v

    @field_validator("required_resources")
    @classmethod
    def drop_blank_resources(cls, v: List[str]) -> List[str]:
        return [item.strip() for item in v if item and item.strip()]

    def missing_sections(self) -> List[str]:
        """Return the mandatory description sections absent from the description."""
        text = self.description.lower()
        return [s for s in REQUIRED_DESCRIPTION_SECTIONS if s.lower() not in text]


class ActivityBatch(BaseModel):
    """Top-level object the model must return."""

    model_config = ConfigDict(populate_by_name=True)

    activities: List[GeneratedActivity] = Field(
        alias="atividades",
        description="Lista com os planos de aula gerados",
    )


class Activity(GeneratedActivity):
    """A generated activity merged with the request that produced it."""

    id: str
    subject: str
    topic: str
    grade: str
    level: ActivityLevel
    pillar: ComputationalThinkingPillar
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_generated(
        cls,
        generated: GeneratedActivity,
        request: ActivityRequest,
        activity_id: str,
    ) -> "Activity":
        return cls(
            id=activity_id,
            subject=request.subject,
            topic=request.topic,
            grade=request.grade,
            level=request.level,
            pillar=request.pillar,
            **generated.model_dump(),
        )


class ActivityUpdate(BaseModel):
    """Editable fields of a stored activity; omitted fields are left unchanged."""

    model_config = ConfigDict(populate_by_name=True)

    title: Optional[str] = Field(default=None, alias="titulo")
    description: Optional[str] = Field(default=None, alias="descricao")
    bncc_competency: Optional[str] = Field(default=None, alias="competenciaBNCC")
    bncc_computing_competency: Optional[str] = Field(
        default=None, alias="competenciaBNCCComputacao"
    )
    estimated_duration: Optional[int] = Field(default=None, ge=0, alias="duracaoEstimada")
    required_resources: Optional[List[str]] = Field(default=None, alias="recursosNecessarios")
    subject: Optional[str] = None
    topic: Optional[str] = None
    grade: Optional[str] = None
    level: Optional[ActivityLevel] = None
    pillar: Optional[ComputationalThinkingPillar] = None


class ActivityFilters(BaseModel):
    """Filters applied to the stored activity list. None means 'any'."""

    subject: Optional[str] = None
    pillar: Optional[ComputationalThinkingPillar] = None
    level: Optional[ActivityLevel] = None
    topic: Optional[str] = None
    query: Optional[str] = None
