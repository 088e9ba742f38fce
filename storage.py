"""Maps stored report locations to something the API can hand to a client."""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from errors import ReportServiceError, ValidationError
from settings import settings


@dataclass(frozen=True)
class DownloadTarget:
    """Either a URL to redirect to or a local file to stream."""

    url: Optional[str] = None
    path: Optional[Path] = None


class ReportFileMissingError(ReportServiceError):
    status_code = 404
    error_code = "REPORT_FILE_NOT_FOUND"


class UnsupportedLocationError(ReportServiceError):
    status_code = 501
    error_code = "UNSUPPORTED_LOCATION"


class ReportStorage:
    """Resolves result locations written by report workers.

    HTTP(S) locations (for example presigned object-store URLs) are passed
    through for a redirect, other schemes are rejected, and plain values are
    paths relative to the data directory.
    """

    def __init__(self, data_dir: Optional[str] = None):
        self.data_dir = Path(data_dir or settings.data_dir).resolve()

    def download_target(self, result_location: str) -> DownloadTarget:
        if result_location.startswith(("http://", "https://")):
            return DownloadTarget(url=result_location)
        if "://" in result_location:
            scheme = result_location.split("://", 1)[0]
            raise UnsupportedLocationError(f"No download handler for {scheme} locations")

        path = (self.data_dir / result_location).resolve()
        if self.data_dir not in path.parents:
            raise ValidationError("Report location is outside the data directory")
        if not path.is_file():
            raise ReportFileMissingError("Report file not found")
        return DownloadTarget(path=path)
