from collections import defaultdict
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Dict, List
from uuid import UUID
import io
import logging

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, NamedStyle, Side
from openpyxl.worksheet.worksheet import Worksheet
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from meterflow.config import settings
from meterflow.core.exceptions import InvalidStateError, ValidationError
from meterflow.directory import DirectoryPort
from meterflow.models.billing import Invoice, InvoiceBatch
from meterflow.models.cycle import CycleStatus, ExportStatus, ReadingCycle
from meterflow.models.meter import Meter
from meterflow.models.reading import MeterReading
from meterflow.monitoring.metrics import invoice_exports
from meterflow.schemas.cycle import InvoiceExportResult
from meterflow.services.billing_service import BillingService
from meterflow.services.common import load_cycle
from meterflow.services.pricing_service import PricingService
from meterflow.services.pricing_validator import compute_charge

logger = logging.getLogger(__name__)

THIN_BORDER = Border(
	left=Side(style='thin'),
	right=Side(style='thin'),
	top=Side(style='thin'),
	bottom=Side(style='thin')
)

INVOICE_COLUMNS = [
	("Building", 18),
	("Unit", 18),
	("Meter", 24),
	("Reading date", 14),
	("Previous index", 16),
	("Current index", 16),
	("Consumption", 14),
	("Amount", 14),
]


class InvoiceService:
	"""Turns the readings of a completed cycle into invoice batches"""

	def __init__(self, session: AsyncSession, directory: DirectoryPort):
		self.session = session
		self.directory = directory

	async def export_invoices(self, cycle_id: UUID) -> InvoiceExportResult:
		"""One batch per building. Re-running replaces the cycle's previous batches."""
		cycle = await load_cycle(self.session, cycle_id)
		if cycle.status != CycleStatus.COMPLETED:
			raise InvalidStateError(
				f"Cycle {cycle.name} is {cycle.status.value}; only completed cycles are exported"
			)

		service = await self.directory.get_service(cycle.service_id)
		tiers = await PricingService(self.session).active_tiers(service.code)
		if not tiers:
			raise ValidationError(f"No active pricing tiers for service {service.code}")

		result = await self.session.execute(
			select(MeterReading, Meter.building_id)
			.join(Meter, Meter.id == MeterReading.meter_id)
			.where(MeterReading.cycle_id == cycle.id)
			.order_by(Meter.building_id, MeterReading.unit_id)
		)
		rows = result.all()

		by_building: Dict[str, List[Invoice]] = defaultdict(list)
		for reading, building_id in rows:
			consumption = Decimal(reading.current_index) - Decimal(reading.prev_index)
			if consumption < 0:
				raise ValidationError(
					f"Negative consumption for unit {reading.unit_id}",
					details={
						"reading_id": str(reading.id),
						"prev_index": str(reading.prev_index),
						"current_index": str(reading.current_index),
					},
				)
			amount, lines = compute_charge(consumption, tiers)
			by_building[building_id or ""].append(Invoice(
				unit_id=reading.unit_id,
				meter_id=reading.meter_id,
				reading_id=reading.id,
				prev_index=reading.prev_index,
				current_index=reading.current_index,
				consumption=consumption,
				amount=amount,
				lines=lines,
			))

		billing = await BillingService(self.session).ensure_for_cycle(cycle)
		await self._drop_previous_batches(cycle.id)

		invoices_created = 0
		for building_id, invoices in sorted(by_building.items()):
			self.session.add(InvoiceBatch(
				cycle_id=cycle.id,
				billing_cycle_id=billing.id,
				building_id=building_id or None,
				service_code=service.code,
				invoice_count=len(invoices),
				total_amount=sum((i.amount for i in invoices), Decimal("0")),
				invoices=invoices,
			))
			invoices_created += len(invoices)

		cycle.export_status = ExportStatus.EXPORTED
		cycle.export_error = None
		cycle.exported_at = datetime.now(timezone.utc)
		await self.session.commit()

		invoice_exports.labels(outcome="exported").inc()
		logger.info(
			f"Exported {invoices_created} invoices in {len(by_building)} batches for cycle {cycle.name}"
		)
		return InvoiceExportResult(
			invoices_created=invoices_created,
			total_readings=len(rows),
			message=f"{invoices_created} invoices created for {len(by_building)} building(s)",
		)

	async def _drop_previous_batches(self, cycle_id: UUID) -> None:
		batch_ids = select(InvoiceBatch.id).where(InvoiceBatch.cycle_id == cycle_id)
		await self.session.execute(
			delete(Invoice)
			.where(Invoice.batch_id.in_(batch_ids))
			.execution_options(synchronize_session=False)
		)
		await self.session.execute(
			delete(InvoiceBatch)
			.where(InvoiceBatch.cycle_id == cycle_id)
			.execution_options(synchronize_session=False)
		)

	async def export_workbook(self, cycle_id: UUID) -> io.BytesIO:
		"""Excel rendering of the cycle's current invoices. Returns a BytesIO at position 0."""
		cycle = await load_cycle(self.session, cycle_id)
		if cycle.export_status != ExportStatus.EXPORTED:
			raise InvalidStateError(f"Cycle {cycle.name} has no exported invoices")

		result = await self.session.execute(
			select(Invoice, InvoiceBatch.building_id, Meter.meter_code, MeterReading.reading_date)
			.join(InvoiceBatch, InvoiceBatch.id == Invoice.batch_id)
			.join(Meter, Meter.id == Invoice.meter_id)
			.join(MeterReading, MeterReading.id == Invoice.reading_id)
			.where(InvoiceBatch.cycle_id == cycle_id)
			.order_by(InvoiceBatch.building_id, Invoice.unit_id)
		)
		rows = result.all()

		wb = Workbook()
		ws = wb.active
		ws.title = "Invoices"
		self._draw_header(ws)

		num_style = NamedStyle(name="num_style")
		num_style.number_format = "#,##0.000"
		money_style = NamedStyle(name="money_style")
		money_style.number_format = "#,##0.00"
		date_style = NamedStyle(name="date_style")
		date_style.number_format = "dd.mm.yyyy"
		for st in (num_style, money_style, date_style):
			if st.name not in wb.named_styles:
				wb.add_named_style(st)

		# Display only: a directory outage falls back to the building id
		building_names: Dict[str, str] = {}
		for building_id in sorted({r[1] for r in rows if r[1]}):
			building = await self.directory.find_building(building_id)
			building_names[building_id] = building.name if building else building_id

		for row_idx, (invoice, building_id, meter_code, reading_date) in enumerate(rows, start=2):
			ws.cell(row=row_idx, column=1, value=building_names.get(building_id, building_id))
			ws.cell(row=row_idx, column=2, value=invoice.unit_id)
			ws.cell(row=row_idx, column=3, value=meter_code)
			ws.cell(row=row_idx, column=4, value=reading_date).style = "date_style"
			ws.cell(row=row_idx, column=5, value=float(invoice.prev_index)).style = "num_style"
			ws.cell(row=row_idx, column=6, value=float(invoice.current_index)).style = "num_style"
			ws.cell(row=row_idx, column=7, value=float(invoice.consumption)).style = "num_style"
			ws.cell(row=row_idx, column=8, value=float(invoice.amount)).style = "money_style"

			for col in range(1, len(INVOICE_COLUMNS) + 1):
				ws.cell(row=row_idx, column=col).border = THIN_BORDER

		if rows:
			ws.auto_filter.ref = f"A1:H{len(rows) + 1}"
		ws.freeze_panes = "A2"

		self._add_summary_sheet(wb, cycle, [r[0] for r in rows])

		out = io.BytesIO()
		wb.save(out)
		out.seek(0)
		return out

	@staticmethod
	def _draw_header(ws: Worksheet) -> None:
		for col, (title, width) in enumerate(INVOICE_COLUMNS, start=1):
			cell = ws.cell(row=1, column=col, value=title)
			cell.font = Font(bold=True)
			cell.alignment = Alignment(horizontal="center", vertical="center", wrap_text=True)
			cell.border = THIN_BORDER
			ws.column_dimensions[cell.column_letter].width = width
		ws.row_dimensions[1].height = 30

	@staticmethod
	def _add_summary_sheet(wb: Workbook, cycle: ReadingCycle, invoices: List[Invoice]) -> None:
		ws = wb.create_sheet("Summary")
		ws.column_dimensions["A"].width = 30
		ws.column_dimensions["B"].width = 30

		ws.cell(row=1, column=1, value=f"Cycle {cycle.name}").font = Font(bold=True, size=14)

		period_end = cycle.period_to
		summary = [
			("Service", cycle.service_id),
			("Period", f"{cycle.period_from.strftime('%d.%m.%Y')} - {period_end.strftime('%d.%m.%Y')}"),
			("Invoices", len(invoices)),
			("Total consumption", float(sum((i.consumption for i in invoices), Decimal("0")))),
			(f"Total amount ({settings.INVOICE_CURRENCY})", float(sum((i.amount for i in invoices), Decimal("0")))),
			("Exported at", cycle.exported_at.strftime("%d.%m.%Y %H:%M") if cycle.exported_at else ""),
			("Generated on", date.today().strftime("%d.%m.%Y")),
		]
		for row, (label, value) in enumerate(summary, start=3):
			ws.cell(row=row, column=1, value=label).border = THIN_BORDER
			ws.cell(row=row, column=2, value=value).border = THIN_BORDER
