from __future__ import annotations


class ApiError(Exception):
    def __init__(
        self,
        *,
        code: str,
        message: str,
        error_class: str,
        retryable: bool,
        http_status: int,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.error_class = error_class
        self.retryable = retryable
        self.http_status = http_status


class InvalidIdentifier(ApiError):
    def __init__(self, value: object) -> None:
        super().__init__(
            code="REPORT_ID_INVALID",
            message=f"invalid internal identifier: {value!r}",
            error_class="validation",
            retryable=False,
            http_status=400,
        )
        self.value = value


class InvalidStatus(ApiError):
    def __init__(self, status: object) -> None:
        super().__init__(
            code="REPORT_STATUS_INVALID",
            message=f"invalid report status: {status!r}",
            error_class="validation",
            retryable=False,
            http_status=400,
        )
        self.status = status


class ReportHasNoAssets(ApiError):
    def __init__(self, report: object) -> None:
        super().__init__(
            code="REPORT_ASSETS_MISSING",
            message=f"report {report} has no assets",
            error_class="validation",
            retryable=False,
            http_status=400,
        )


class ProviderFailure(ApiError):
    """A provider call failed or timed out; multi-provider writes may be partial."""

    def __init__(self, *, provider: str, operation: str, cause: BaseException | None = None) -> None:
        if cause is None:
            reason = "unknown error"
        elif isinstance(cause, TimeoutError):
            reason = "timed out"
        else:
            reason = str(cause) or type(cause).__name__
        super().__init__(
            code="PROVIDER_FAILURE",
            message=f"{operation} failed on provider {provider}: {reason}; retry is safe",
            error_class="availability",
            retryable=True,
            http_status=503,
        )
        self.provider = provider
        self.operation = operation
        self.cause = cause


class AssetNotFound(ApiError):
    def __init__(self, asset_id: object) -> None:
        super().__init__(
            code="ASSET_NOT_FOUND",
            message=f"asset {asset_id} does not exist on this report",
            error_class="validation",
            retryable=False,
            http_status=404,
        )
        self.asset_id = asset_id
