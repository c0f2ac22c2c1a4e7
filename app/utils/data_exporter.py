import csv
import logging
import pandas as pd
from dataclasses import dataclass
from xml.sax.saxutils import escape
from io import StringIO, BytesIO
from typing import Any, Dict, List, Optional, Tuple
from app.core.config import settings
from app.core.exceptions import ValidationError
from app.models.shared.enums import ExportFormat
from app.schemas.audit.report import AuditReport, FinalAuditReport, PhysicalQuantityReport, VarianceReport

logger = logging.getLogger(__name__)

FILE_EXTENSIONS = {
    ExportFormat.PDF: "pdf",
    ExportFormat.EXCEL: "xlsx",
    ExportFormat.CSV: "csv",
}

MEDIA_TYPES = {
    ExportFormat.PDF: "application/pdf",
    ExportFormat.EXCEL: "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    ExportFormat.CSV: "text/csv",
}

HEADER_COLOR = "366092"

Section = Tuple[str, List[Dict[str, Any]]]


@dataclass
class ExportedReport:
    content: bytes
    filename: str
    media_type: str


def report_filename(report_type: str, audit_code: str, export_format: ExportFormat) -> str:
    return f"{report_type}-{audit_code}.{FILE_EXTENSIONS[export_format]}"


def _fmt_datetime(value) -> str:
    return value.strftime("%Y-%m-%d %H:%M") if value else ""


def _fmt_variance(value: Optional[int]) -> str:
    if value is None:
        return ""
    return f"+{value}" if value > 0 else str(value)


class AuditReportExporter:
    """Render audit report documents to pdf, excel or csv"""

    def export(self, report: AuditReport, export_format) -> ExportedReport:
        try:
            export_format = ExportFormat(export_format)
        except ValueError:
            raise ValidationError(f"Unsupported export format: {export_format}")
        if export_format.value not in settings.REPORT_FORMATS:
            raise ValidationError(f"Export format {export_format.value} is disabled")

        if export_format == ExportFormat.CSV:
            content = self.export_to_csv(report)
        elif export_format == ExportFormat.EXCEL:
            content = self.export_to_excel(report)
        else:
            content = self.export_to_pdf(report)

        filename = report_filename(report.header.report_type, report.header.audit_code, export_format)
        logger.info(f"Exported {filename} ({len(content)} bytes)")
        return ExportedReport(content=content, filename=filename, media_type=MEDIA_TYPES[export_format])

    # =================== CONTENT ===================

    def header_lines(self, report: AuditReport) -> List[Tuple[str, str]]:
        header = report.header
        return [
            ("Organization", header.organization_name),
            ("Report", header.title),
            ("Audit Code", header.audit_code),
            ("Audit", header.audit_title),
            ("Warehouse", f"{header.warehouse_name} ({header.warehouse_code})"),
            ("Period", f"{header.start_date.isoformat()} to {header.end_date.isoformat()}"),
            ("Status", header.status.replace("_", " ").title()),
            ("Generated", _fmt_datetime(header.generated_at)),
        ]

    def sections(self, report: AuditReport) -> List[Section]:
        """Flatten a report into titled tables with display column names"""
        if isinstance(report, PhysicalQuantityReport):
            rows = [
                {
                    "S.No": row.serial,
                    "Item Code": row.item_code,
                    "Item Name": row.item_name,
                    "Batch Number": row.batch_number or "",
                    "Physical Quantity": row.physical_quantity,
                    "Entered By": row.confirmer_name or "",
                    "Entry Date": _fmt_datetime(row.confirmed_at),
                    "Notes": row.notes or "",
                }
                for row in report.rows
            ]
            summary = [
                {"Metric": "Total Items", "Value": report.total_items},
                {"Metric": "Items with Physical Count", "Value": report.counted_items},
            ]
            return [("Physical Quantity Entries", rows), ("Summary", summary)]

        if isinstance(report, VarianceReport):
            def _rows(items, label):
                return [
                    {
                        "S.No": row.serial,
                        "Item Code": row.item_code,
                        "Item Name": row.item_name,
                        "Batch": row.batch_number or "",
                        "System Qty": row.system_quantity,
                        "Physical Qty": row.physical_quantity,
                        label: row.discrepancy,
                        "Reason/Notes": row.notes,
                    }
                    for row in items
                ]

            summary = [
                {"Metric": "Total Variance Items", "Value": report.summary.total_variances},
                {"Metric": "Short Items", "Value": report.summary.short_count},
                {"Metric": "Excess Items", "Value": report.summary.excess_count},
            ]
            return [
                ("Summary", summary),
                ("Short Items", _rows(report.short_items, "Shortage")),
                ("Excess Items", _rows(report.excess_items, "Excess")),
            ]

        if isinstance(report, FinalAuditReport):
            summary = report.summary
            summary_rows = [
                {"Metric": "Total Items", "Value": summary.total_items},
                {"Metric": "Matched", "Value": summary.complete_items},
                {"Metric": "Short", "Value": summary.short_items},
                {"Metric": "Excess", "Value": summary.excess_items},
                {"Metric": "Pending", "Value": summary.pending_items},
                {"Metric": "Completion", "Value": f"{summary.completion_percent}%"},
            ]
            rows = [
                {
                    "S.No": row.serial,
                    "Item Code": row.item_code,
                    "Item Name": row.item_name,
                    "Batch": row.batch_number or "",
                    "System Qty": row.system_quantity,
                    "Physical Qty": row.physical_quantity if row.physical_quantity is not None else "",
                    "Variance": _fmt_variance(row.variance),
                    "Status": row.status.title(),
                    "Verified By": row.verified_by or "",
                    "Notes": row.notes or "",
                }
                for row in report.rows
            ]
            return [("Summary", summary_rows), ("Audit Details", rows)]

        raise ValidationError(f"Cannot export report of type {type(report).__name__}")

    # =================== CSV ===================

    def export_to_csv(self, report: AuditReport) -> bytes:
        output = StringIO()
        writer = csv.writer(output)

        for label, value in self.header_lines(report):
            writer.writerow([label, value])

        for title, rows in self.sections(report):
            writer.writerow([])
            writer.writerow([title])
            if not rows:
                writer.writerow(["No items"])
                continue
            writer.writerow(list(rows[0].keys()))
            for row in rows:
                writer.writerow(list(row.values()))

        if isinstance(report, FinalAuditReport):
            writer.writerow([])
            for slot in report.signatures:
                writer.writerow([slot.role, slot.name or "", _fmt_datetime(slot.signed_at)])

        return output.getvalue().encode("utf-8")

    # =================== EXCEL ===================

    def export_to_excel(self, report: AuditReport) -> bytes:
        """One styled sheet per section, plus a header sheet"""
        from openpyxl.styles import Font, PatternFill, Border, Side
        from openpyxl.utils import get_column_letter

        header_font = Font(bold=True, color="FFFFFF")
        header_fill = PatternFill("solid", fgColor=HEADER_COLOR)
        thin_border = Border(
            left=Side(style='thin'),
            right=Side(style='thin'),
            top=Side(style='thin'),
            bottom=Side(style='thin')
        )

        output = BytesIO()
        with pd.ExcelWriter(output, engine='openpyxl') as writer:
            info = pd.DataFrame(self.header_lines(report), columns=["Field", "Value"])
            if isinstance(report, FinalAuditReport):
                signatures = pd.DataFrame(
                    [(f"{slot.role} Signature", slot.name or "") for slot in report.signatures],
                    columns=["Field", "Value"]
                )
                info = pd.concat([info, signatures], ignore_index=True)
            sheets = [("Report", info)]
            for title, rows in self.sections(report):
                sheets.append((title[:31], pd.DataFrame(rows)))

            for sheet_name, df in sheets:
                df.to_excel(writer, sheet_name=sheet_name, index=False)
                worksheet = writer.sheets[sheet_name]

                max_row = len(df) + 1
                max_col = max(len(df.columns), 1)
                for row in range(1, max_row + 1):
                    for col in range(1, max_col + 1):
                        cell = worksheet.cell(row=row, column=col)
                        cell.border = thin_border
                        if row == 1:
                            cell.font = header_font
                            cell.fill = header_fill

                # Auto-adjust column widths
                for col_idx, column in enumerate(worksheet.columns, 1):
                    max_length = max((len(str(cell.value)) for cell in column if cell.value is not None), default=0)
                    worksheet.column_dimensions[get_column_letter(col_idx)].width = min(max(max_length + 2, 10), 50)

        return output.getvalue()

    # =================== PDF ===================

    def export_to_pdf(self, report: AuditReport) -> bytes:
        from reportlab.lib import colors
        from reportlab.lib.pagesizes import landscape, letter
        from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
        from reportlab.lib.units import inch
        from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

        buf = BytesIO()
        doc = SimpleDocTemplate(
            buf,
            pagesize=landscape(letter),
            leftMargin=0.5 * inch,
            rightMargin=0.5 * inch,
            topMargin=0.5 * inch,
            bottomMargin=0.5 * inch,
            title=f"{report.header.title} {report.header.audit_code}",
        )

        styles = getSampleStyleSheet()
        title_style = ParagraphStyle(
            "AuditTitle",
            parent=styles["Title"],
            fontSize=18,
            textColor=colors.HexColor("#1E293B"),
            spaceAfter=12,
        )
        heading_style = ParagraphStyle(
            "AuditHeading",
            parent=styles["Heading2"],
            fontSize=14,
            textColor=colors.HexColor("#334155"),
            spaceAfter=8,
        )
        normal_style = styles["Normal"]

        story = [Paragraph(f"<b>{escape(report.header.organization_name)}</b>", title_style),
                 Paragraph(f"<b>{report.header.title}</b>", heading_style)]
        for label, value in self.header_lines(report)[2:]:
            story.append(Paragraph(f"<b>{label}:</b> {escape(str(value))}", normal_style))
        story.append(Spacer(1, 0.2 * inch))

        for title, rows in self.sections(report):
            story.append(Paragraph(f"<b>{title}</b>", heading_style))
            if not rows:
                story.append(Paragraph("No items", normal_style))
                story.append(Spacer(1, 0.2 * inch))
                continue

            fieldnames = list(rows[0].keys())
            table_data = [fieldnames] + [
                ["" if row.get(field) is None else str(row.get(field)) for field in fieldnames]
                for row in rows
            ]
            table = Table(table_data, repeatRows=1)
            table.setStyle(TableStyle([
                ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor(f"#{HEADER_COLOR}")),
                ("TEXTCOLOR", (0, 0), (-1, 0), colors.whitesmoke),
                ("ALIGN", (0, 0), (-1, -1), "LEFT"),
                ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
                ("FONTSIZE", (0, 0), (-1, 0), 10),
                ("BOTTOMPADDING", (0, 0), (-1, 0), 8),
                ("FONTNAME", (0, 1), (-1, -1), "Helvetica"),
                ("FONTSIZE", (0, 1), (-1, -1), 9),
                ("GRID", (0, 0), (-1, -1), 1, colors.grey),
                ("ROWBACKGROUNDS", (0, 1), (-1, -1), [colors.white, colors.HexColor("#F8FAFC")]),
            ]))
            story.append(table)
            story.append(Spacer(1, 0.2 * inch))

        if isinstance(report, FinalAuditReport):
            story.append(Spacer(1, 0.4 * inch))
            signature_row = [
                [f"{slot.role}: {slot.name or ''}" for slot in report.signatures],
                ["_" * 40 for _ in report.signatures],
                ["Signature / Date" for _ in report.signatures],
            ]
            signatures = Table(signature_row, colWidths=[4.5 * inch] * len(report.signatures))
            signatures.setStyle(TableStyle([
                ("FONTNAME", (0, 0), (-1, -1), "Helvetica"),
                ("FONTSIZE", (0, 0), (-1, -1), 10),
                ("ALIGN", (0, 0), (-1, -1), "CENTER"),
                ("TOPPADDING", (0, 1), (-1, 1), 24),
            ]))
            story.append(signatures)

        doc.build(story)
        return buf.getvalue()
