"""Protocol constants for x402 tool payments."""

from decimal import Decimal

x402_VERSION = 1
SCHEME_TOOLPAY = "x402-toolpay"

# Header names
PAYMENT_HEADER = "X-Payment"
PAYMENT_TX_HEADER = "X-Payment-Tx"
RESULT_ID_HEADER = "X-Result-Id"
PAYMENT_RECEIPT_HEADER = "X-Payment-Receipt"
PAYMENT_CHAIN_HEADER = "X-Payment-Chain"

# Settlement modes
MODE_ESCROW = "escrow"
MODE_PAY_TO_CLAIM = "pay-to-claim"

# Chain defaults
DEFAULT_NETWORK = "eip155:10001"
DEFAULT_UNIT = "BCH"
DEFAULT_EXPLORER_TX_URL = "https://smartscan.cash/transaction/{tx_hash}"
NATIVE_TRANSFER_GAS = 21000

# Worker pool defaults
DEFAULT_POOL_SIZE = 4
DEFAULT_MIN_FOR_TOOLS = Decimal("0.0002")
DEFAULT_MIN_FOR_GAS = Decimal("0.0001")
DEFAULT_TOPUP_AMOUNT = Decimal("0.001")
DEFAULT_MAINTENANCE_INTERVAL = 300.0
DEFAULT_FUNDING_SETTLE_DELAY = 2.0

# Treasury defaults
DEFAULT_RESERVE_FLOOR = Decimal("0.001")
DEFAULT_FEE_BUFFER = Decimal("0.00002")
DEFAULT_FUNDING_WAIT = 10.0

# Confirmation polling
CONFIRMATION_MAX_ATTEMPTS = 8
CONFIRMATION_RETRY_DELAY = 1.5

# Gateway verification polling
TX_LOOKUP_MAX_RETRIES = 5
TX_LOOKUP_RETRY_DELAY = 1.0

# Gateway state lifetimes
RESULT_TTL_SECONDS = 300
RESULT_SWEEP_INTERVAL = 60.0
REPLAY_WINDOW_SECONDS = 86400
DEFAULT_PRICE_TOLERANCE = Decimal("0")

TOOL_PROXY_TIMEOUT = 15.0

# Price oracle
COINGECKO_PRICE_URL = "https://api.coingecko.com/api/v3/simple/price"
DEFAULT_ASSET_ID = "bitcoin-cash"
PRICE_CACHE_TTL = 300.0
PRICE_FALLBACK_RATE = 330.0
PRICE_FALLBACK_RETRY = 30.0
PRICE_FETCH_TIMEOUT = 4.0

# Error reasons
ERR_MISSING_TX_HASH = "missing_tx_hash"
ERR_MISSING_RESULT_ID = "missing_result_id"
ERR_TX_NOT_FOUND = "transaction_not_found"
ERR_TX_FAILED = "transaction_failed"
ERR_DESTINATION_MISMATCH = "destination_mismatch"
ERR_INSUFFICIENT_AMOUNT = "insufficient_amount"
ERR_REPLAYED_TX = "transaction_already_used"
ERR_UNKNOWN_TOOL = "unknown_tool"
ERR_TX_UNCONFIRMED = "transaction_unconfirmed"
ERR_TX_LOOKUP_FAILED = "transaction_lookup_failed"
ERR_MANDATE_MISMATCH = "mandate_mismatch"
ERR_TOOL_MISMATCH = "tool_mismatch"
ERR_INVALID_BODY = "invalid_body"
