from __future__ import annotations


class ErrorCode:
    NO_RELATIONSHIP = "NO_RELATIONSHIP"
    INVALID_COUNT_BY = "INVALID_COUNT_BY"
    INVALID_FILTERS = "INVALID_FILTERS"
    INVALID_FILTER = "INVALID_FILTER"
    MISSING_PARAMETER = "MISSING_PARAMETER"
    INVALID_COLUMN = "INVALID_COLUMN"
    TABLE_NOT_FOUND = "TABLE_NOT_FOUND"
    STORE_ERROR = "STORE_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class AnalyticsError(Exception):
    """Base error class for aggregation requests."""
    status_code = 500
    code = ErrorCode.INTERNAL_ERROR


class NoRelationshipPathError(AnalyticsError):
    """Raised when a countBy target is not an ancestor of the base table."""
    status_code = 400
    code = ErrorCode.NO_RELATIONSHIP


class InvalidCountByError(AnalyticsError):
    """Raised when the countBy query parameter cannot be parsed."""
    status_code = 400
    code = ErrorCode.INVALID_COUNT_BY


class InvalidFilterError(AnalyticsError):
    """Raised when the filters query parameter is not valid JSON."""
    status_code = 400
    code = ErrorCode.INVALID_FILTERS


class FilterCompilationError(AnalyticsError):
    """Raised when a single filter condition cannot be rendered to SQL."""
    status_code = 400
    code = ErrorCode.INVALID_FILTER


class InvalidColumnError(AnalyticsError):
    """Raised when a requested column name is not a plain identifier."""
    status_code = 400
    code = ErrorCode.INVALID_COLUMN


class TableNotFoundError(AnalyticsError):
    """Raised when a dataset table is not registered in the catalog."""
    status_code = 404
    code = ErrorCode.TABLE_NOT_FOUND


class StoreQueryError(AnalyticsError):
    """Raised when the analytical store rejects or fails a query."""
    status_code = 502
    code = ErrorCode.STORE_ERROR
