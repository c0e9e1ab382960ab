"""Shared constants used across the application."""

# Customer numbers: phone, meter, policy or player ids
CUSTOMER_NUMBER_PATTERN = r"^[0-9A-Za-z]{4,32}$"

# Product codes as issued by the provider (e.g. PLN50, TSEL1)
PRODUCT_CODE_PATTERN = r"^[A-Za-z0-9_.-]{1,32}$"

# Transaction codes: TRX + yymmddHHMMSS + 6 hex chars
TRANSACTION_CODE_PREFIX = "TRX"
TRANSACTION_CODE_PATTERN = r"^TRX\d{12}[0-9A-F]{6}$"
