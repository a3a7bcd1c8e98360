"""
Claims Kernel - medical reimbursement review workflow

A storage-agnostic claim review core with:
- A status state machine gated by recorded review decisions
- Eligibility, document and comment review records
- An append-only audit trail written inside every mutation
- Interchangeable persistence adapters behind one gateway
"""

__version__ = "0.1.0"
