"""
Stock Kernel

Multi-tenant inventory core with:
- Multi-branch stock ledgers with FIFO lot costing
- Stock transfers with a guarded state machine
- Multi-level approval rules (sequential, parallel, hybrid)
- Role-based access control per tenant and branch
- Full auditability via hash chain
"""

__version__ = "0.1.0"
