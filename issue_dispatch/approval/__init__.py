"""Approval gate for supervised execution."""

from .commands import ApprovalCommand, parse_approval_command
from .gate import ApprovalGate

__all__ = ['ApprovalCommand', 'parse_approval_command', 'ApprovalGate']
