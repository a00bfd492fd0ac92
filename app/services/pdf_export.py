"""
PDF export of activity lists using reportlab.

Layout per activity: title, a sub-header with subject/grade/level/duration,
then the description, both competencies and the resource list.
"""

import io
import re
from typing import Sequence
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.platypus import (
    HRFlowable,
    ListFlowable,
    ListItem,
    Paragraph,
    SimpleDocTemplate,
    Spacer,
)

from app.models.activity import Activity

DOCUMENT_TITLE = "Plano de Atividades Gerado por IA"
MARGIN = 15 * mm

PRIMARY = colors.Color(0 / 255, 90 / 255, 156 / 255)
PRIMARY_DARK = colors.Color(0 / 255, 61 / 255, 107 / 255)

_BOLD = re.compile(r"\*\*(.+?)\*\*")
_BULLET = re.compile(r"^\s*[-*•]\s+")


def _styles() -> dict:
    base = getSampleStyleSheet()
    return {
        "header": ParagraphStyle(
            "Header", parent=base["Title"], fontSize=20, alignment=TA_CENTER, spaceAfter=10
        ),
        "title": ParagraphStyle(
            "ActivityTitle", parent=base["Heading1"], fontSize=16, textColor=PRIMARY_DARK,
            spaceAfter=4,
        ),
        "subheader": ParagraphStyle(
            "SubHeader", parent=base["Normal"], fontSize=10, textColor=colors.grey, spaceAfter=6
        ),
        "section": ParagraphStyle(
            "Section", parent=base["Heading2"], fontSize=12, textColor=PRIMARY, spaceBefore=8,
            spaceAfter=3,
        ),
        "body": ParagraphStyle(
            "Body", parent=base["Normal"], fontSize=10, leading=14,
            textColor=colors.Color(50 / 255, 50 / 255, 50 / 255),
        ),
    }


def markdown_to_paragraph_markup(text: str) -> str:
    """Escape text for reportlab and turn **bold** into <b> tags."""
    return _BOLD.sub(r"<b>\1</b>", escape(text))


def _description_flowables(description: str, style: ParagraphStyle) -> list:
    flowables = []
    for block in re.split(r"\n\s*\n", description.strip()):
        lines = [line for line in block.splitlines() if line.strip()]
        if not lines:
            continue
        if all(_BULLET.match(line) for line in lines):
            flowables.append(_bullets([_BULLET.sub("", line) for line in lines], style))
            continue
        markup = "<br/>".join(markdown_to_paragraph_markup(line) for line in lines)
        flowables.append(Paragraph(markup, style))
    return flowables


def _bullets(items: Sequence[str], style: ParagraphStyle) -> ListFlowable:
    return ListFlowable(
        [ListItem(Paragraph(markdown_to_paragraph_markup(item), style), leftIndent=10) for item in items],
        bulletType="bullet",
        start="-",
        leftIndent=10,
    )


def subheader_text(activity: Activity) -> str:
    return (
        f"{activity.subject} | Turma: {activity.grade} | Nível: {activity.level.value} | "
        f"Duração: {activity.estimated_duration} min"
    )


def export_activities_to_pdf(activities: Sequence[Activity]) -> bytes:
    """
    Render activities into a PDF document.

    Args:
        activities: Activities in the order they should appear

    Returns:
        PDF file content

    Raises:
        ValueError: If there is nothing to export
    """
    if not activities:
        raise ValueError("Nenhuma atividade para exportar.")

    styles = _styles()
    buffer = io.BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=A4,
        leftMargin=MARGIN,
        rightMargin=MARGIN,
        topMargin=MARGIN,
        bottomMargin=MARGIN,
        title=DOCUMENT_TITLE,
    )

    story: list = [Paragraph(DOCUMENT_TITLE, styles["header"])]

    for index, activity in enumerate(activities):
        if index > 0:
            story.append(Spacer(1, 4 * mm))
            story.append(HRFlowable(width="100%", color=colors.lightgrey))
            story.append(Spacer(1, 4 * mm))

        story.append(Paragraph(escape(activity.title), styles["title"]))
        story.append(Paragraph(escape(subheader_text(activity)), styles["subheader"]))

        story.append(Paragraph("Descrição da Atividade", styles["section"]))
        story.extend(_description_flowables(activity.description, styles["body"]))

        story.append(Paragraph("Competência BNCC", styles["section"]))
        story.append(Paragraph(escape(activity.bncc_competency), styles["body"]))

        story.append(Paragraph("Competência BNCC Computação", styles["section"]))
        story.append(Paragraph(escape(activity.bncc_computing_competency), styles["body"]))

        story.append(Paragraph("Recursos Necessários", styles["section"]))
        if activity.required_resources:
            story.append(_bullets(activity.required_resources, styles["body"]))
        else:
            story.append(Paragraph("-", styles["body"]))

    doc.build(story)
    return buffer.getvalue()
