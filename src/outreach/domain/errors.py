from __future__ import annotations


class OutreachError(RuntimeError):
    pass


class ValidationError(OutreachError, ValueError):
    pass


class EmptySequence(ValidationError):
    pass


class NoTargets(ValidationError):
    pass


class InvalidEntityRef(ValidationError):
    pass


class NotFoundError(OutreachError, LookupError):
    pass


class ExternalPlatformError(OutreachError):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class InconsistentStateError(OutreachError):
    """Touchpoints and entity reassignment disagree for one campaign.

    The caller should re-run campaign creation or repair the entities
    listed in ``missing_ids``; the store was rolled back.
    """

    def __init__(
        self,
        message: str,
        *,
        campaign_id: str,
        expected: int,
        actual: int,
        missing_ids: list[str] | None = None,
    ) -> None:
        super().__init__(message)
        self.campaign_id = campaign_id
        self.expected = expected
        self.actual = actual
        self.missing_ids = list(missing_ids or [])


class PartialSyncFailure(OutreachError):
    def __init__(self, message: str, failures: list) -> None:
        super().__init__(message)
        self.failures = failures
