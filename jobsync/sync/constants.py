"""Unit conversion constants for tonnage normalisation."""

from decimal import Decimal

# Ready-mix concrete density, t/m3 (typical mixes run 2.3-2.5)
CUBIC_METERS_TO_TONNES = Decimal("2.4")

# Average tandem dump truck payload in tonnes
TANDEM_TONNES_PER_LOAD = Decimal("14")

UNKNOWN_CREW_TYPE = "Unknown"
