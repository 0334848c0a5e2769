"""
PDF progress reports for mentors
"""
from datetime import date
from io import BytesIO
from typing import Any, Dict, List, Optional
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from academics import risk_label

PRIMARY = colors.HexColor('#244855')
ACCENT = colors.HexColor('#874F41')
MUTED = colors.HexColor('#90AEAD')


def report_filename(student: Optional[Dict[str, Any]] = None) -> str:
    if student is None:
        return 'Lattice360_All.pdf'
    name = (student.get('full_name') or 'report').strip().replace(' ', '_')
    return f'Lattice360_{name}.pdf'


def _styles():
    styles = getSampleStyleSheet()
    return {
        'title': ParagraphStyle('ReportTitle', parent=styles['Heading1'], fontSize=22,
                                textColor=PRIMARY, spaceAfter=6),
        'meta': ParagraphStyle('ReportMeta', parent=styles['Normal'], fontSize=10,
                               textColor=ACCENT, spaceAfter=14),
        'student': ParagraphStyle('StudentName', parent=styles['Heading2'], fontSize=13,
                                  textColor=PRIMARY, spaceBefore=12, spaceAfter=4),
        'body': ParagraphStyle('Body', parent=styles['Normal'], fontSize=10, spaceAfter=4),
        'note': ParagraphStyle('Note', parent=styles['Normal'], fontSize=9,
                               textColor=colors.HexColor('#555555'), leftIndent=12, spaceAfter=3),
        'summary': ParagraphStyle('Summary', parent=styles['Normal'], fontSize=10, leading=14, spaceAfter=8),
    }


def _fmt_att(att) -> str:
    return '-' if att is None or att < 0 else f'{att}%'


def build_mentor_report_pdf(mentor_name: str,
                            roster: List[Dict[str, Any]],
                            notes: List[Dict[str, Any]],
                            generated_on: Optional[date] = None,
                            ai_summary: Optional[str] = None) -> bytes:
    """
    Render the roster report.

    `roster` entries come from academics.enrich_roster; only non-confidential
    notes are printed.
    """
    buffer = BytesIO()
    doc = SimpleDocTemplate(buffer, pagesize=A4, rightMargin=50, leftMargin=50,
                            topMargin=50, bottomMargin=50, title='Lattice360 Student Report')
    s = _styles()
    generated_on = generated_on or date.today()

    story = [
        Paragraph('Lattice360 - Student Report', s['title']),
        Paragraph(f'Mentor: {escape(mentor_name or "N/A")}  |  {generated_on.isoformat()}', s['meta']),
    ]

    if not roster:
        story.append(Paragraph('No students found.', s['body']))

    for student in roster:
        story.append(Paragraph(escape(student.get('full_name') or student.get('email') or 'Student'), s['student']))
        summary = Table([[
            f"CGPA: {student.get('cgpa', 0)}",
            f"SGPA: {student.get('sgpa', 0)}",
            f"Attendance: {_fmt_att(student.get('att'))}",
            f"Status: {risk_label(student.get('risk'))}",
        ]], colWidths=[1.3 * inch, 1.3 * inch, 1.6 * inch, 1.6 * inch])
        summary.setStyle(TableStyle([
            ('FONTSIZE', (0, 0), (-1, -1), 9),
            ('TEXTCOLOR', (0, 0), (-1, -1), PRIMARY),
            ('BACKGROUND', (0, 0), (-1, -1), colors.HexColor('#FBE9D0')),
            ('BOX', (0, 0), (-1, -1), 0.5, MUTED),
            ('TOPPADDING', (0, 0), (-1, -1), 4),
            ('BOTTOMPADDING', (0, 0), (-1, -1), 4),
        ]))
        story.append(summary)

        mid_terms = (student.get('rec') or {}).get('mid_term_scores') or []
        if mid_terms:
            text = '  |  '.join(f"{escape(m.get('subject', ''))}: {m.get('score', 0)}" for m in mid_terms)
            story.append(Spacer(1, 4))
            story.append(Paragraph(f'Mid-Terms: {text}', s['body']))

        for note in notes:
            if note.get('student_id') == student.get('id') and not note.get('is_confidential'):
                story.append(Paragraph(f"Note: {escape(note.get('note_content', ''))}", s['note']))
        story.append(Spacer(1, 8))

    if ai_summary:
        story.append(Paragraph('Progress Summary', s['student']))
        for para in ai_summary.split('\n\n'):
            story.append(Paragraph(escape(para).replace('\n', '<br/>'), s['summary']))

    doc.build(story)
    return buffer.getvalue()
