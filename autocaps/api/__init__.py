"""Render API client package: async HTTP interface to the autocaps server.

WHY: Callers that submit renders need to follow them to completion. This
package wraps submission, status polling, and the event stream behind one
async client class.

RULES:
- All HTTP calls to the render API go through RenderClient
"""

from autocaps.api.client import JobWatchTimeoutError, RenderAPIError, RenderClient
from autocaps.api.models import JobSnapshot

__all__ = ["JobSnapshot", "JobWatchTimeoutError", "RenderAPIError", "RenderClient"]
