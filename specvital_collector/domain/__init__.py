"""Domain types, collaborator interfaces and the error taxonomy."""

from specvital_collector.domain.errors import (
    AnalysisError,
    AnalysisNotRunningError,
    CloneFailedError,
    InvalidInputError,
    InvalidParamsError,
    PayloadDecodeError,
    SaveFailedError,
    ScanFailedError,
    StoreError,
    TokenLookupFailedError,
    TokenNotFoundError,
)
from specvital_collector.domain.models import (
    DEFAULT_HOST,
    AnalysisResult,
    AnalyzeRequest,
    CreateAnalysisRecordParams,
    DueCodebase,
    Inventory,
    Location,
    SaveAnalysisInventoryParams,
    Test,
    TestFile,
    TestStatus,
    TestSuite,
)

__all__ = [
    # Errors
    "AnalysisError",
    "AnalysisNotRunningError",
    "CloneFailedError",
    "InvalidInputError",
    "InvalidParamsError",
    "PayloadDecodeError",
    "SaveFailedError",
    "ScanFailedError",
    "StoreError",
    "TokenLookupFailedError",
    "TokenNotFoundError",
    # Values
    "DEFAULT_HOST",
    "AnalysisResult",
    "AnalyzeRequest",
    "CreateAnalysisRecordParams",
    "DueCodebase",
    "Inventory",
    "Location",
    "SaveAnalysisInventoryParams",
    "Test",
    "TestFile",
    "TestStatus",
    "TestSuite",
]
