"""
Peer Lending Core

Private peer-to-peer loan tracking between lenders (Loaners) and borrowers
(Loanees): invite-gated lending networks, an attested loan lifecycle and
hash-chained audit trails.
"""

__version__ = "1.0.0"
