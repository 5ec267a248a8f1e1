"""
Local secrets template (DO NOT COMMIT REAL KEYS).

- Copy to `config_private.py` (gitignored) and fill in your own credentials.
- Every value can also be provided via an environment variable of the same name.
"""

# ---- Deployment ----
TRADING_MODE = "testnet"  # "production" or "testnet"

# ---- Binance USD-M futures ----
BINANCE_API_KEY = ""
BINANCE_SECRET_KEY = ""

# ---- Bybit (unified trading account) ----
BYBIT_API_KEY = ""
BYBIT_SECRET_KEY = ""

# ---- Bitget (passphrase required) ----
BITGET_API_KEY = ""
BITGET_SECRET_KEY = ""
BITGET_PASSPHRASE = ""

# ---- KuCoin Futures (passphrase required) ----
KUCOIN_API_KEY = ""
KUCOIN_SECRET_KEY = ""
KUCOIN_PASSPHRASE = ""

# ---- Gate.io / HTX / WhiteBIT / MEXC ----
GATEIO_API_KEY = ""
GATEIO_SECRET_KEY = ""
HTX_API_KEY = ""
HTX_SECRET_KEY = ""
WHITEBIT_API_KEY = ""  # production only; private calls are refused in testnet mode
WHITEBIT_SECRET_KEY = ""
MEXC_API_KEY = ""
MEXC_SECRET_KEY = ""
