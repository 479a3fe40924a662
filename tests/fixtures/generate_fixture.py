"""
Generate a synthetic PDF fixture for testing.
This creates a realistic-looking lab report with vitals, labs and medications.
"""
from __future__ import annotations

import io
from pathlib import Path

from reportlab.lib.pagesizes import letter
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.platypus import PageBreak, Paragraph, SimpleDocTemplate, Spacer
from reportlab.lib.units import inch


def create_synthetic_pdf() -> bytes:
    """Create a two-page synthetic lab report PDF."""
    buf = io.BytesIO()
    doc = SimpleDocTemplate(buf, pagesize=letter)
    styles = getSampleStyleSheet()
    story = []

    # Page 1: Visit summary
    story.append(Paragraph("Lakeside Family Clinic", styles["Title"]))
    story.append(Paragraph("Visit Date: 2024-03-15", styles["Normal"]))
    story.append(Paragraph("Patient: Jane Doe", styles["Normal"]))
    story.append(Spacer(1, 0.2 * inch))
    story.append(Paragraph("<b>History of Present Illness:</b>", styles["Heading3"]))
    story.append(Paragraph(
        "Intermittent headaches for two weeks, worse in the mornings.",
        styles["Normal"],
    ))
    story.append(Spacer(1, 0.1 * inch))
    story.append(Paragraph("<b>Vital Signs:</b>", styles["Heading3"]))
    story.append(Paragraph("BP 142/91, HR 84, Temp 37C", styles["Normal"]))
    story.append(Spacer(1, 0.1 * inch))
    story.append(Paragraph("<b>Medications:</b>", styles["Heading3"]))
    story.append(Paragraph("Lisinopril 10 mg once daily", styles["Normal"]))
    story.append(Paragraph("<b>Assessment:</b>", styles["Heading3"]))
    story.append(Paragraph("Essential hypertension, uncontrolled", styles["Normal"]))

    story.append(PageBreak())

    # Page 2: Lab results
    story.append(Paragraph("Laboratory Results", styles["Heading2"]))
    story.append(Paragraph("Collected: 2024-03-14 08:30", styles["Normal"]))
    story.append(Spacer(1, 0.1 * inch))
    story.append(Paragraph("Hemoglobin A1c: 6.9 % (ref 4.0-5.6) H", styles["Normal"]))
    story.append(Paragraph("LDL Cholesterol: 162 mg/dL (ref 0-99) H", styles["Normal"]))
    story.append(Paragraph("Potassium: 4.2 mmol/L (ref 3.5-5.1)", styles["Normal"]))

    doc.build(story)
    return buf.getvalue()


def write_fixture(path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(create_synthetic_pdf())
    return path


if __name__ == "__main__":
    out = write_fixture(Path(__file__).parent / "sample_lab_report.pdf")
    print(f"Wrote {out}")
