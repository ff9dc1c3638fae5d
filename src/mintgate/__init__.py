"""mintgate — signature-gated, credit-metered minting of document artifacts."""

__version__ = "0.1.0"
