"""
Whisper Market Client Constants

This module consolidates the global constants and environment configuration
used throughout the client. Constants are organized by category for easy
reference and maintenance.
"""
import ast
from decimal import Decimal
from dotenv import dotenv_values

# =============================================================================
# ENVIRONMENT CONFIGURATION
# =============================================================================
# Load environment variables once at module import
_config = dotenv_values(".env")

CLIENT_DEFAULTS = {
    'WHISPER_MAPPING_API_URL':         'https://api.explorer.provable.com/v1/testnet',
    'WHISPER_RPC_URL':                 'https://testnet.aleorpc.com',
    'WHISPER_NETWORK':                 'testnet',
    'WHISPER_PROGRAM_ID':              'prediction_market_testing.aleo',
}

LOGGER_DEFAULTS = {
    'LOG_LEVEL':                       'INFO',
    'LOG_FORMAT':                      '%(asctime)s - %(levelname)s - %(name)s - %(message)s',
    'LOG_DATE_FORMAT':                 '%Y-%m-%dT%H:%M:%S',
    'LOG_CONSOLE_HIGHLIGHTING':        'True',
    'LOG_FILE':                        '',
}

LOG_MAX_FILE_SIZE = 10 * 1024 * 1024 # 10MB
LOG_BACKUP_COUNT = 5
LOG_REDACT_PREVIEW_CHARS = 30


# ==================================================================================
# PROGRAM IDENTIFIERS
# ==================================================================================
CREDITS_PROGRAM_ID = 'credits.aleo'
DEFAULT_PROGRAM_ID = CLIENT_DEFAULTS['WHISPER_PROGRAM_ID']
# Position records may have been minted under an earlier deployment name
LEGACY_POSITION_PROGRAM_ALIASES = ('whisper_market',)
CREDITS_RECORD_TYPE = 'credits.aleo/credits.record'


# ==================================================================================
# CHAIN LITERALS
# ==================================================================================
MICROCREDITS_PER_CREDIT = 1_000_000
U64_MAX = 2**64 - 1
U128_MAX = 2**128 - 1
BPS_SCALE = 10_000
# Scalar field order of the chain's curve; field literals must be below it
FIELD_MODULUS = 8444461749428370424248824938781546531375899335154063827935233455917409239041
TRANSACTION_ID_PREFIX = 'at1'


# ==================================================================================
# MAPPING NAMES
# ==================================================================================
MAPPING_TOTAL_MARKETS = 'total_markets'
MAPPING_MARKET_INDEX = 'market_index'
MAPPING_MARKET_STATUS = 'market_status'
MAPPING_MARKET_METADATA_HASH = 'market_metadata_hash'
MAPPING_MARKET_CREATOR = 'market_creator'
MAPPING_LAST_PRICE_UPDATE = 'last_price_update'
MAPPING_YES_RESERVE = 'market_yes_reserve'
MAPPING_NO_RESERVE = 'market_no_reserve'
MAPPING_COLLATERAL_POOL = 'market_collateral_pool'
MAPPING_FEE_BPS = 'market_fee_bps'
MAPPING_OUTCOME = 'market_outcome'

TOTAL_MARKETS_KEY = '0u64'


# ==================================================================================
# FEES (credits)
# ==================================================================================
TRANSFER_FEE_CREDITS = Decimal('0.04406')
PROGRAM_FEE_CREDITS = Decimal('0.05')


# ==================================================================================
# MAPPING CLIENT / CACHE DEFAULTS
# ==================================================================================
MAPPING_MAX_CONCURRENT = 4
MAPPING_TICK_INTERVAL = 0.25  # seconds between dispatches
MAPPING_TIMEOUT = 10.0
REGISTRY_CACHE_TTL = 5 * 60
MARKET_STATE_CACHE_TTL = 45


# ==================================================================================
# DISCOVERY DEFAULTS
# ==================================================================================
DISCOVERY_MAX_PAGES = 5
DISCOVERY_PAGE_SIZE = 100
DISCOVERY_RETRIES = 3
DISCOVERY_RETRY_DELAY = 2.0
DISCOVERY_PROBE_LIMIT = 50
FINALIZE_POLL_ATTEMPTS = 30
FINALIZE_POLL_INTERVAL = 1.0
DEFAULT_SLIPPAGE_BPS = 100  # 1%
MAX_MARKET_FEE_BPS = 1000  # 10%


class ConfigString(str):
    """
    String subclass that stores a default value.
    """
    def __new__(cls, value, default):
        obj = str.__new__(cls, value)
        obj._default = default
        return obj

    def default(self):
        return self._default

class ConfigBool(int):
    """
    Int subclass acting as a boolean that stores a default value.
    """
    def __new__(cls, value, default):
        obj = int.__new__(cls, bool(value))
        obj._default = default
        return obj

    def default(self):
        return self._default

    def __repr__(self):
        return str(bool(self))

    def __str__(self):
        return str(bool(self))

    def __eq__(self, other):
        return bool(self) == other

    __hash__ = int.__hash__


# ==================================================================================
# DYNAMIC CONFIGURATION LOADING
# ==================================================================================
DEFAULTS = CLIENT_DEFAULTS | LOGGER_DEFAULTS
namespace = globals()

def parse_bool(v):
    """
    Convert "True"/"False" (any casing, surrounding whitespace allowed) into bool.
    Non-literal strings are returned untouched.
    """
    if not isinstance(v, str):
        return v
    s = v.strip()
    if not s:
        return v
    if s.casefold() in {"true", "false"}:
        return ast.literal_eval(s.title())
    return v

for key, default_raw in DEFAULTS.items():
    # dotenv_values returns strings or None. None is treated as missing.
    raw = _config.get(key)
    value_raw = default_raw if raw is None else raw

    value = parse_bool(value_raw)
    default_val = parse_bool(default_raw)

    if isinstance(value, bool):
        namespace[key] = ConfigBool(value, default_val)
    else:
        namespace[key] = ConfigString(value_raw, default_val)
