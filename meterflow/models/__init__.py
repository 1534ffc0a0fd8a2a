from meterflow.models.assignment import Assignment, AssignmentUnit
from meterflow.models.billing import BillingCycle, Invoice, InvoiceBatch
from meterflow.models.cycle import CycleStatus, ExportStatus, ReadingCycle
from meterflow.models.meter import Meter
from meterflow.models.pricing import PricingTier
from meterflow.models.reading import MeterReading
from meterflow.models.session import ReadingSession

__all__ = [
	"Assignment",
	"AssignmentUnit",
	"BillingCycle",
	"CycleStatus",
	"ExportStatus",
	"Invoice",
	"InvoiceBatch",
	"Meter",
	"MeterReading",
	"PricingTier",
	"ReadingCycle",
	"ReadingSession",
]
