# std libs
import math
from typing import Annotated, Optional

# pypdantic libs
from pydantic import BaseModel, ConfigDict, Field, field_validator

NonNegativeFloat = Annotated[float, Field(ge=0.0)]

STATUS_OK = 'OK'


class BenchmarkResult(BaseModel):
    """
    One row of the batch comparison table. Metrics are None when the model
    never produced a benchmark output (status is then a failure tag).
    """
    model_config = ConfigDict(frozen=True)

    model: str
    model_short: str
    nodes: int
    tp: int
    output_throughput: Optional[NonNegativeFloat] = None
    total_throughput: Optional[NonNegativeFloat] = None
    ttft_ms: Optional[NonNegativeFloat] = None
    itl_ms: Optional[NonNegativeFloat] = None
    e2e_ms: Optional[NonNegativeFloat] = None
    status: str = STATUS_OK

    @field_validator('output_throughput', 'total_throughput', 'ttft_ms', 'itl_ms', 'e2e_ms', mode='before')
    @classmethod
    def normalize_missing(cls, v):
        """Treat 'N/A', empty strings and NaN as a missing metric."""
        if v is None:
            return None
        if isinstance(v, str):
            v = v.strip()
            if v.upper() in ['N/A', 'NA', 'NONE', '']:
                return None
            return float(v)
        if isinstance(v, float) and (math.isnan(v) or math.isinf(v)):
            return None
        return v

    @property
    def ok(self) -> bool:
        return self.status == STATUS_OK
