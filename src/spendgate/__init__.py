"""SpendGate: purchase authorization and card funding for shopping agents."""

__version__ = "0.1.0"
