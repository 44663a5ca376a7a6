from __future__ import annotations

import csv
import io
from collections.abc import Sequence
from datetime import datetime

import pandas as pd
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.pdfgen import canvas
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from ..domain.levels import sustainability_band
from ..domain.schemas import AssessmentSummary, ResultRecord

HISTORY_COLUMNS = [
    "ID",
    "Fecha",
    "Estado",
    "Puntaje Obtenido",
    "Puntaje Máximo",
    "Porcentaje",
    "Nivel de Sostenibilidad",
]

CHAPTER_COLUMNS = ["Capítulo", "Puntaje", "Máximo", "Porcentaje", "Indicadores Completados"]

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
PDF_MEDIA_TYPE = "application/pdf"

BRAND_COLOR = colors.HexColor("#880D1E")
PDF_FOOTER = "COVIAR Autoevaluación de Sostenibilidad"


def format_date(value: str | None) -> str:
    """dd/mm/yyyy, or ``-`` when missing; unparseable values are returned as given."""
    if not value:
        return "-"
    parsed = pd.to_datetime(value, errors="coerce")
    if pd.isna(parsed):
        return value
    return parsed.strftime("%d/%m/%Y")


def _or_dash(value: object) -> str:
    return "-" if value is None else str(value)


def _band_name(pct: int | None) -> str:
    return sustainability_band(pct).nombre if pct is not None else "N/A"


def history_frame(evaluations: Sequence[AssessmentSummary]) -> pd.DataFrame:
    rows = []
    for ev in evaluations:
        rows.append(
            {
                "ID": str(ev.id_autoevaluacion),
                "Fecha": format_date(ev.fecha_inicio),
                "Estado": ev.estado.capitalize() if ev.estado else "-",
                "Puntaje Obtenido": _or_dash(ev.puntaje_final),
                "Puntaje Máximo": _or_dash(ev.puntaje_maximo),
                "Porcentaje": f"{ev.porcentaje}%" if ev.porcentaje is not None else "-",
                "Nivel de Sostenibilidad": _band_name(ev.porcentaje),
            }
        )
    return pd.DataFrame(rows, columns=HISTORY_COLUMNS)


def result_frames(result: ResultRecord) -> tuple[pd.DataFrame, pd.DataFrame]:
    """General-information block and per-chapter table of one evaluation."""
    ev = result.autoevaluacion
    general = pd.DataFrame(
        [
            ("ID", str(ev.id_autoevaluacion)),
            ("Fecha", format_date(ev.fecha_inicio)),
            ("Segmento", ev.nombre_segmento or "-"),
            ("Puntaje Total", f"{_or_dash(ev.puntaje_final)} / {_or_dash(ev.puntaje_maximo)}"),
            ("Porcentaje", f"{ev.porcentaje}%" if ev.porcentaje is not None else "-"),
            ("Nivel", _band_name(ev.porcentaje)),
        ],
        columns=["Campo", "Valor"],
    )
    chapters = pd.DataFrame(
        [
            (
                c.nombre,
                str(c.puntaje_obtenido),
                str(c.puntaje_maximo),
                f"{c.porcentaje}%",
                f"{c.indicadores_completados} / {c.indicadores_total}",
            )
            for c in result.capitulos
        ],
        columns=CHAPTER_COLUMNS,
    )
    return general, chapters


def _quoted_csv(df: pd.DataFrame, header: bool = True) -> str:
    return df.to_csv(index=False, header=header, quoting=csv.QUOTE_ALL, lineterminator="\n")


def make_history_csv(evaluations: Sequence[AssessmentSummary]) -> str:
    return _quoted_csv(history_frame(evaluations))


def make_history_xlsx_bytes(evaluations: Sequence[AssessmentSummary]) -> bytes:
    bio = io.BytesIO()
    with pd.ExcelWriter(bio, engine="xlsxwriter") as writer:
        history_frame(evaluations).to_excel(writer, index=False, sheet_name="Historial")
    return bio.getvalue()


def make_result_csv(result: ResultRecord) -> str:
    general, chapters = result_frames(result)
    lines = ['"Información de la Evaluación"']
    lines.extend(_quoted_csv(general, header=False).splitlines())
    lines.extend(["", '"Detalle por Capítulo"'])
    lines.extend(_quoted_csv(chapters).splitlines())
    return "\n".join(lines) + "\n"


def make_result_xlsx_bytes(result: ResultRecord) -> bytes:
    general, chapters = result_frames(result)
    bio = io.BytesIO()
    with pd.ExcelWriter(bio, engine="xlsxwriter") as writer:
        general.to_excel(writer, index=False, sheet_name="Evaluación")
        chapters.to_excel(writer, index=False, sheet_name="Capítulos")
    return bio.getvalue()


# ---------- PDF ----------


class NumberedCanvas(canvas.Canvas):
    """Canvas that defers page output until the page count is known."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._pages: list[dict] = []

    def showPage(self):
        self._pages.append(dict(self.__dict__))
        self._startPage()

    def save(self):
        total = len(self._pages)
        for state in self._pages:
            self.__dict__.update(state)
            self._draw_footer(total)
            super().showPage()
        super().save()

    def _draw_footer(self, total: int) -> None:
        width, _ = self._pagesize
        self.saveState()
        self.setFont("Helvetica", 8)
        self.setFillGray(0.6)
        self.drawCentredString(
            width / 2, 10 * mm, f"Página {self._pageNumber} de {total} - {PDF_FOOTER}"
        )
        self.restoreState()


def _pdf_styles() -> dict[str, ParagraphStyle]:
    base = getSampleStyleSheet()
    return {
        "title": ParagraphStyle(
            "ReportTitle", parent=base["Heading1"], fontSize=18, textColor=BRAND_COLOR, spaceAfter=6
        ),
        "heading": ParagraphStyle("ReportHeading", parent=base["Heading2"], fontSize=14),
        "body": ParagraphStyle(
            "ReportBody", parent=base["Normal"], fontSize=11, textColor=colors.HexColor("#3C3C3C")
        ),
        "muted": ParagraphStyle(
            "ReportMuted", parent=base["Normal"], fontSize=11, textColor=colors.HexColor("#646464")
        ),
    }


def _striped_table(head: list[str], rows: list[list[str]], col_widths=None) -> Table:
    table = Table([head, *rows], colWidths=col_widths, repeatRows=1)
    table.setStyle(
        TableStyle(
            [
                ("BACKGROUND", (0, 0), (-1, 0), BRAND_COLOR),
                ("TEXTCOLOR", (0, 0), (-1, 0), colors.white),
                ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
                ("FONTSIZE", (0, 0), (-1, -1), 10),
                ("ROWBACKGROUNDS", (0, 1), (-1, -1), [colors.white, colors.HexColor("#F5F5F5")]),
                ("TOPPADDING", (0, 0), (-1, -1), 4),
                ("BOTTOMPADDING", (0, 0), (-1, -1), 4),
                ("LEFTPADDING", (0, 0), (-1, -1), 4),
                ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
            ]
        )
    )
    return table


def _build_pdf(story: list) -> bytes:
    bio = io.BytesIO()
    doc = SimpleDocTemplate(
        bio,
        pagesize=A4,
        leftMargin=14 * mm,
        rightMargin=14 * mm,
        topMargin=14 * mm,
        bottomMargin=20 * mm,
    )
    doc.build(story, canvasmaker=NumberedCanvas)
    return bio.getvalue()


def _score(obtained: int | None, maximum: int | None) -> str:
    return f"{_or_dash(obtained)} / {_or_dash(maximum)}"


def _pct(value: int | None) -> str:
    return f"{value}%" if value is not None else "-"


def history_pdf_rows(evaluations: Sequence[AssessmentSummary]) -> list[list[str]]:
    """Rows numbered from the oldest, so the first of five evaluations reads ``#5``."""
    n = len(evaluations)
    return [
        [
            f"#{n - index}",
            format_date(ev.fecha_inicio),
            _score(ev.puntaje_final, ev.puntaje_maximo),
            _pct(ev.porcentaje),
            _band_name(ev.porcentaje),
        ]
        for index, ev in enumerate(evaluations)
    ]


def make_history_pdf_bytes(
    evaluations: Sequence[AssessmentSummary], generated: datetime | None = None
) -> bytes:
    """History report; ``evaluations`` come newest first."""
    styles = _pdf_styles()
    generated = generated or datetime.now()
    story = [
        Paragraph("Historia de Guía de Autoevaluación de Sostenibilidad", styles["title"]),
        Paragraph("Evaluaciones de sostenibilidad enoturística completadas", styles["muted"]),
        Paragraph(f"Generado: {generated.strftime('%d/%m/%Y')}", styles["muted"]),
        Spacer(1, 6 * mm),
        _striped_table(
            ["Evaluación", "Fecha", "Puntaje", "Porcentaje", "Nivel"],
            history_pdf_rows(evaluations),
            col_widths=[28 * mm, 38 * mm, 38 * mm, 33 * mm, 45 * mm],
        ),
    ]
    return _build_pdf(story)


def make_result_pdf_bytes(result: ResultRecord) -> bytes:
    styles = _pdf_styles()
    ev = result.autoevaluacion
    rows = [
        [
            c.nombre,
            _score(c.puntaje_obtenido, c.puntaje_maximo),
            f"{c.porcentaje}%",
            f"{c.indicadores_completados} / {c.indicadores_total}",
        ]
        for c in result.capitulos
    ]
    story = [
        Paragraph("Resultado de Autoevaluación de Sostenibilidad", styles["title"]),
        Spacer(1, 3 * mm),
        Paragraph(f"Evaluación #{ev.id_autoevaluacion}", styles["body"]),
        Paragraph(f"Fecha: {format_date(ev.fecha_inicio)}", styles["body"]),
        Spacer(1, 4 * mm),
        Paragraph("Resumen de Resultados", styles["heading"]),
        Paragraph(f"Puntaje Total: {_score(ev.puntaje_final, ev.puntaje_maximo)}", styles["body"]),
        Paragraph(f"Porcentaje: {_pct(ev.porcentaje)}", styles["body"]),
        Paragraph(f"Nivel de Sostenibilidad: {_band_name(ev.porcentaje)}", styles["body"]),
        Spacer(1, 6 * mm),
        _striped_table(["Capítulo", "Puntaje", "Porcentaje", "Indicadores"], rows),
    ]
    return _build_pdf(story)
