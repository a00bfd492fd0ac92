"""
Prompt assembly for lesson-plan generation.

Builds the outbound payload from three parts:
1. A fixed system instruction (persona + grounding rule)
2. The task instruction filled from the teacher's form
3. An optional document context block placed before the task

The output contract is stated in natural language for free-text backends and
as a JSON schema for backends that constrain the response.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from app.models.activity import (
    CITATION_NOT_FOUND,
    ActivityBatch,
    ActivityRequest,
)

SYSTEM_INSTRUCTION = (
    "Você é um designer instrucional sênior e especialista em pedagogia, com profundo "
    "conhecimento do currículo brasileiro (BNCC e BNCC Computação). Sua missão é criar "
    "planos de aula completos, detalhados e prontos para serem aplicados por um professor. "
    "Cada plano de aula deve ser criativo, engajador e eficaz. Se um contexto de documentos "
    "(RAG) for fornecido, suas respostas devem ser estritamente baseadas nele."
)

CONTEXT_START = "### CONTEXTO DOS DOCUMENTOS ###"
CONTEXT_END = "### FIM DO CONTEXTO ###"

CONTEXT_TEMPLATE = (
    "Use estritamente as informações do contexto abaixo como fonte primária para criar as "
    "atividades. Não invente informações que não estejam nos documentos fornecidos.\n\n"
    f"{CONTEXT_START}\n{{context}}\n{CONTEXT_END}\n\n"
    "Com base no contexto acima, elabore a seguinte solicitação:\n"
)

GROUNDED_CITATION_RULE = (
    "Para os campos \"competenciaBNCC\" e \"competenciaBNCCComputacao\", extraia o código e a "
    "descrição da competência LITERALMENTE do contexto dos documentos. Se o contexto não "
    "contiver uma competência aplicável, responda exatamente "
    f"\"{CITATION_NOT_FOUND}\". Nunca invente uma competência."
)

JSON_INSTRUCTION = """Sua resposta DEVE SER APENAS um objeto JSON válido, sem nenhum texto adicional antes ou depois. O JSON deve ter a seguinte estrutura:
{{
  "atividades": [
    {{
      "titulo": "string",
      "descricao": "string (Um texto longo e detalhado formatado em Markdown contendo OBRIGATORIAMENTE as seguintes seções: '**Contextualização:**' (uma introdução ao tema e sua relevância), '**Objetivos de Aprendizagem:**' (uma lista com marcadores dos objetivos), '**Passo a Passo da Atividade:**' (instruções claras e sequenciais para o professor e os alunos), e '**Avaliação:**' (sugestões de como avaliar o aprendizado dos alunos).)",
      "competenciaBNCC": "string (código e descrição completa da competência)",
      "competenciaBNCCComputacao": "string (código e descrição completa da competência)",
      "duracaoEstimada": 50,
      "recursosNecessarios": ["string", "string", ...]
    }}
  ]
}}
A lista "atividades" deve conter exatamente {quantity} {noun}.
O campo "duracaoEstimada" é um número inteiro de minutos, sem aspas nem unidade. Todos os seis campos são obrigatórios em cada atividade."""


@dataclass(frozen=True)
class PromptPayload:
    """Everything a model backend needs for one invocation."""

    system_instruction: str
    user_prompt: str
    response_schema: Dict[str, Any]
    has_context: bool = False

    @property
    def full_prompt(self) -> str:
        """System instruction and user prompt as a single message."""
        return f"{self.system_instruction}\n\n{self.user_prompt}"


def _remove_additional_properties(schema: Any) -> Any:
    """
    Recursively clean a JSON schema for Gemini API compatibility.

    Gemini's API doesn't support the additionalProperties field, nor the
    title/default keywords pydantic emits, so they are dropped.
    """
    if isinstance(schema, list):
        return [_remove_additional_properties(item) for item in schema]
    if not isinstance(schema, dict):
        return schema

    return {
        key: _remove_additional_properties(value)
        for key, value in schema.items()
        if key not in ("additionalProperties", "title", "default")
    }


def _inline_refs(schema: Any, defs: Dict[str, Any]) -> Any:
    """Replace ``$ref`` pointers with the referenced definitions."""
    if isinstance(schema, list):
        return [_inline_refs(item, defs) for item in schema]
    if not isinstance(schema, dict):
        return schema

    ref = schema.get("$ref")
    if isinstance(ref, str) and ref.startswith("#/$defs/"):
        return _inline_refs(defs[ref.split("/")[-1]], defs)

    return {key: _inline_refs(value, defs) for key, value in schema.items() if key != "$defs"}


def build_response_schema() -> Dict[str, Any]:
    """JSON schema of the expected response, using the Portuguese wire keys."""
    raw_schema = ActivityBatch.model_json_schema(by_alias=True)
    inlined = _inline_refs(raw_schema, raw_schema.get("$defs", {}))
    return _remove_additional_properties(inlined)


def build_task_prompt(request: ActivityRequest) -> str:
    """Task instruction interpolated from the form fields."""
    plural = request.quantity > 1
    noun = "planos de aula detalhados" if plural else "plano de aula detalhado"
    return (
        f"Gere {request.quantity} {noun} para a disciplina de \"{request.subject}\" "
        f"sobre o tópico \"{request.topic}\".\n"
        f"As atividades são destinadas a uma turma de \"{request.grade}\" e devem ter um "
        f"nível de dificuldade \"{request.level.value}\".\n"
        "Cada plano de aula deve obrigatoriamente integrar o pilar do pensamento "
        f"computacional: \"{request.pillar.value}\"."
    )


def build_json_instruction(request: ActivityRequest) -> str:
    noun = "itens" if request.quantity > 1 else "item"
    return JSON_INSTRUCTION.format(quantity=request.quantity, noun=noun)


def compute_context_budget(
    request: ActivityRequest,
    max_prompt_chars: int,
    with_documents: bool,
) -> int:
    """
    Characters left for document context once the fixed prompt is counted.

    Args:
        request: The teacher's form
        max_prompt_chars: Ceiling for the whole prompt
        with_documents: Whether a context block (and its wrapper) will be added

    Returns:
        Non-negative budget for the document context
    """
    base_length = (
        len(SYSTEM_INSTRUCTION)
        + len(build_task_prompt(request))
        + len(build_json_instruction(request))
        + len("\n\n") * 2
    )
    if with_documents:
        base_length += len(CONTEXT_TEMPLATE.format(context=""))
        base_length += len(GROUNDED_CITATION_RULE) + len("\n\n")
    return max(0, max_prompt_chars - base_length)


def build_prompt(request: ActivityRequest, context: Optional[str] = None) -> PromptPayload:
    """
    Assemble the outbound payload for one generation call.

    Args:
        request: The teacher's form
        context: Budgeted document context; empty or None means no grounding

    Returns:
        PromptPayload with system instruction, user prompt and response schema
    """
    task = build_task_prompt(request)
    parts = []
    if context:
        parts.append(CONTEXT_TEMPLATE.format(context=context) + task)
        parts.append(GROUNDED_CITATION_RULE)
    else:
        parts.append(task)
    parts.append(build_json_instruction(request))

    return PromptPayload(
        system_instruction=SYSTEM_INSTRUCTION,
        user_prompt="\n\n".join(parts),
        response_schema=build_response_schema(),
        has_context=bool(context),
    )
