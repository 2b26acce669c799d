"""Parsing of reviewer reply commands.

Reviewers answer approval requests with one of::

    /approve <job-id>
    /reject <job-id> [reason]
    /modify <job-id> [instructions]

The verb is case-insensitive and the first matching line of a comment wins.
"""

import re
from dataclasses import dataclass
from typing import Optional

from issue_dispatch.models.common import ApprovalDecision


COMMAND_PATTERN = re.compile(
    r'^\s*/(?P<verb>approve|reject|modify)\s+(?P<job_id>[A-Za-z0-9_-]+)(?:\s+(?P<text>.*\S))?\s*$',
    re.IGNORECASE,
)


@dataclass(frozen=True)
class ApprovalCommand:
    """A parsed reviewer command."""
    decision: ApprovalDecision
    job_id: str
    text: str = ''


def parse_approval_command(comment: str) -> Optional[ApprovalCommand]:
    """Find the first approval command in a comment.

    Args:
        comment: Free-form comment text

    Returns:
        The parsed command, or None if no line holds one
    """
    if not comment:
        return None

    for line in comment.splitlines():
        match = COMMAND_PATTERN.match(line)
        if match:
            return ApprovalCommand(
                decision=ApprovalDecision(match.group('verb').lower()),
                job_id=match.group('job_id'),
                text=(match.group('text') or '').strip(),
            )
    return None
