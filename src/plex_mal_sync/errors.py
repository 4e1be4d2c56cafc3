"""Exceptions raised while turning a webhook into a MAL update."""

from typing import Optional


class SyncError(Exception):
    """Base exception for a single event that could not be synced."""

    error_kind = "UNKNOWN_ERROR"

    def __init__(self, message: str, context: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        if not self.context:
            return self.message
        return f"{self.message} | context={self.context}"


class UnsupportedAgent(SyncError):
    """The GUID comes from a metadata agent we cannot read."""

    error_kind = "UNSUPPORTED_AGENT"


class MalformedIdentifier(SyncError):
    """The GUID belongs to a known agent but does not parse."""

    error_kind = "MALFORMED_IDENTIFIER"


class MappingNotFound(SyncError):
    """No mapping table entry covers the event."""

    error_kind = "MAPPING_NOT_FOUND"


class IncorrectEpisodeCalculation(SyncError):
    """A mapping entry produced a non-positive MAL episode number."""

    error_kind = "INCORRECT_EPISODE_CALCULATION"


class EpisodeExceedsTotal(SyncError):
    """The episode is past the total MAL reports for the title."""

    error_kind = "EPISODE_EXCEEDS_TOTAL"


class AnimeNotInDatabase(SyncError):
    """The anime metadata table has no usable MAL id for the source id."""

    error_kind = "ANIME_NOT_IN_DB"


class MappingTableError(SyncError):
    """A mapping document could not be loaded or has malformed rows."""

    error_kind = "MAPPING_TABLE_ERROR"


class PayloadError(SyncError):
    """A webhook body could not be parsed into an envelope."""

    error_kind = "PAYLOAD_ERROR"


class EnvelopeRejected(SyncError):
    """The webhook is valid but not something we should act on."""

    error_kind = "EVENT_REJECTED"


class MALRequestError(SyncError):
    """MyAnimeList could not be reached or refused the request."""

    error_kind = "MAL_API_ERROR"

    def __init__(self, message: str, status_code: Optional[int] = None, context: Optional[dict] = None):
        super().__init__(message, context)
        self.status_code = status_code


class MALFetchFailed(MALRequestError):
    """Reading the list entry failed."""

    error_kind = "MAL_API_FETCH_FAILED"


class MALUpdateFailed(MALRequestError):
    """Writing the list entry failed."""

    error_kind = "MAL_API_UPDATE_FAILED"
