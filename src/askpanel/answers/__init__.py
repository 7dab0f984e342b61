"""Answer requests: submission lifecycle, backend client and rendering helpers."""

from .client import AnswerClient
from .models import AnswerSet, Attachment, PendingSubmission, Source
from .orchestrator import SubmissionOrchestrator

__all__ = [
    "AnswerClient",
    "AnswerSet",
    "Attachment",
    "PendingSubmission",
    "Source",
    "SubmissionOrchestrator",
]
