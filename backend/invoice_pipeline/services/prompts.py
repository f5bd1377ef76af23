"""Extraction prompt selection."""

DEFAULT_EXTRACTION_PROMPT = """\
You are an invoice data extraction specialist. Extract the following information \
from the provided invoice and return it as a JSON object.

**Invoice Header Fields:**
- invoice_number (string, required)
- invoice_date (YYYY-MM-DD format)
- due_date (YYYY-MM-DD format)
- issue_date (YYYY-MM-DD format)
- service_period_start (YYYY-MM-DD format)
- service_period_end (YYYY-MM-DD format)
- currency (e.g., "USD", "CAD")
- amount_due (decimal number)
- total_amount (decimal number)
- subtotal (decimal number)
- total_taxes (decimal number)
- total_fees (decimal number)
- total_recurring (decimal number)
- total_one_time (decimal number)
- total_usage (decimal number)
- purchase_order_number (string)
- payment_terms (string)
- customer_name (string, required)
- customer_account_number (string)
- contact_email (string)
- contact_phone (string)

**Line Items Array:**
For each line item, extract:
- line_number (integer)
- description (string)
- category (string - use the vendor's original category name)
- charge_type (string - one of: Recurring, One-Time, Usage, Taxes, Fees, Credits)
- service_period_start (YYYY-MM-DD format)
- service_period_end (YYYY-MM-DD format)
- quantity (decimal number)
- unit_of_measure (string)
- unit_price (decimal number)
- subtotal (decimal number)
- tax_amount (decimal number)
- fee_amount (decimal number)
- total_amount (decimal number)
- sku (string)
- product_code (string)

**Instructions:**
1. Return ONLY valid JSON, no markdown formatting or code blocks
2. Use null for any fields that are not present in the invoice
3. Preserve the vendor's original category names; do not normalize or rename them
4. Always use YYYY-MM-DD for dates
5. Use up to 4 decimal places for quantities and prices, 2 for amounts
6. customer_name is the end customer, not the billing entity
7. Extract ALL line items, including taxes, fees, and credits

**Expected JSON Structure:**
{
  "invoice_header": {
    "invoice_number": "...",
    "invoice_date": "...",
    ...
  },
  "line_items": [
    {
      "line_number": 1,
      "description": "...",
      ...
    }
  ],
  "confidence_notes": "Optional: note any fields you're uncertain about"
}"""


def resolve_prompt(vendor_prompt: str | None) -> str:
    """Return the vendor's active prompt text, or the built-in default if it has none."""
    if vendor_prompt and vendor_prompt.strip():
        return vendor_prompt
    return DEFAULT_EXTRACTION_PROMPT
