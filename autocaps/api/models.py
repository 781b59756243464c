"""Render API response dataclasses.

WHY: The render API returns flat JSON job snapshots from both the status
endpoint and the event stream. A typed dataclass makes the shape explicit
for callers of RenderClient and keeps parsing in one place.

HOW: JobSnapshot maps 1:1 to the JobResponse JSON object. from_dict()
tolerates missing optional fields so older servers still parse.

RULES:
- status is one of queued, processing, done, failed
- progress is a float 0.0–1.0
- download_url is None unless status is done; error is None unless failed
"""

from __future__ import annotations

from dataclasses import dataclass

TERMINAL_STATUSES = ("done", "failed")


@dataclass
class JobSnapshot:
    """The state of a render job at one point in time."""

    id: str
    status: str
    progress: float = 0.0
    upload_id: str | None = None
    style: str | None = None
    download_url: str | None = None
    error: str | None = None
    updated_at: float | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @classmethod
    def from_dict(cls, data: dict) -> JobSnapshot:
        return cls(
            id=str(data["id"]),
            status=str(data["status"]),
            progress=float(data.get("progress") or 0.0),
            upload_id=data.get("upload_id"),
            style=data.get("style"),
            download_url=data.get("download_url"),
            error=data.get("error"),
            updated_at=data.get("updated_at"),
        )
