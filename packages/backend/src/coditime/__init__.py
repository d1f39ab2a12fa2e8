"""coditime — self-hosted coding time tracker backend.

This package holds the account and authentication core: cookie sessions,
API tokens, the pluggable session store and the CLI pairing exchange
that editor plugins and the command-line client use to obtain a token.
"""

__version__ = "0.1.0"
