"""
Shipping and import constants.

Used by the date/mode normalizer, the row resolver and the shipment matcher.
"""

# =============================================================================
# SHIPPING MODES & ETA
# =============================================================================

# Canonical shipping modes stored on shipments and allocation entries
SHIPPING_MODE_AIR = "Air"
SHIPPING_MODE_SEA = "Sea"
SHIPPING_MODE_GROUND = "Ground"

# Free-text aliases (uppercased) -> canonical mode
SHIPPING_MODE_ALIASES = {
    "AIR": SHIPPING_MODE_AIR,
    "SEA": SHIPPING_MODE_SEA,
    "BOAT": SHIPPING_MODE_SEA,
    "GROUND": SHIPPING_MODE_GROUND,
}

# Days from ship date to estimated arrival, keyed by uppercased mode
ETA_OFFSET_DAYS = {
    "AIR": 14,
    "SEA": 35,
    "BOAT": 35,
    "GROUND": 3,
}


# =============================================================================
# LINE ITEMS
# =============================================================================

# Line items in these statuses accept no further shipment allocation
BLOCKING_LINE_ITEM_STATUSES = ("Invoiced", "Delivered")


# =============================================================================
# IMPORT COLUMNS
# =============================================================================

# Fallback spreadsheet headers tried when the column mapping has no entry
COLUMN_NAME_VARIANTS = {
    "POName": ["PONumber", "PO", "Client Po", "poName"],
    "SKU": ["sku", "Sku"],
    "shippingNumber": ["Shipment", "ShipmentNo", "shippingNumber", "ShippingNumber"],
}

# Logical fields every import row must supply
REQUIRED_IMPORT_FIELDS = ("POName", "SKU", "shippingNumber", "quantity")
