from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional, Any, Dict, Literal

ColumnType = Literal["numeric", "categorical", "temporal"]
ChartType = Literal["bar", "line", "area", "scatter", "pie", "histogram"]
Aggregation = Literal["none", "count", "sum", "avg"]
SeriesStatus = Literal["ok", "invalid_config", "no_data", "processing_error"]

CHART_TYPES = ("bar", "line", "area", "scatter", "pie", "histogram")
AGGREGATIONS = ("none", "count", "sum", "avg")


class CamelModel(BaseModel):
    """Snake_case attributes, camelCase JSON."""
    model_config = ConfigDict(populate_by_name=True)


class NumericStats(CamelModel):
    min: float
    p25: float
    p50: float
    p75: float
    max: float
    mean: float


class DateRange(CamelModel):
    start: str  # ISO-8601
    end: str


class TopValue(CamelModel):
    value: str
    count: int


class ColumnProfile(CamelModel):
    name: str
    type: ColumnType
    missing_count: int = Field(alias="missingCount")
    distinct_count: int = Field(alias="distinctCount")
    stats: Optional[NumericStats] = None  # numeric only
    date_range: Optional[DateRange] = Field(default=None, alias="range")  # temporal only
    top_values: Optional[List[TopValue]] = Field(default=None, alias="topValues")  # categorical only


class DatasetProfile(CamelModel):
    row_count: int = Field(alias="rowCount")
    columns: List[ColumnProfile]

    def column(self, name: str) -> Optional[ColumnProfile]:
        return next((c for c in self.columns if c.name == name), None)


class ChartSpec(CamelModel):
    x_key: Optional[str] = Field(default=None, alias="xKey")
    y_key: Optional[str] = Field(default=None, alias="yKey")
    aggregation: Aggregation = "none"
    data_type: Optional[ColumnType] = Field(default=None, alias="dataType")


class ChartSpecification(CamelModel):
    type: ChartType
    spec: ChartSpec
    explanation: str = ""


class PlotGroup(CamelModel):
    group_title: str = Field(alias="groupTitle")
    group_narrative: str = Field(default="", alias="groupNarrative")
    plots: List[ChartSpecification]


class Insight(CamelModel):
    title: str
    content: str
    score: Optional[float] = None


class InsightPayload(CamelModel):
    insights: List[Insight]
    plot_groups: List[PlotGroup] = Field(alias="plotGroups")
    charts: List[ChartSpecification]
    summary_markdown: str = Field(alias="summaryMarkdown")


class HistogramBin(CamelModel):
    lower_bound: float = Field(alias="lowerBound")
    upper_bound: float = Field(alias="upperBound")
    count: int


class ChartDataResult(CamelModel):
    status: SeriesStatus
    chart_type: Optional[str] = Field(default=None, alias="chartType")
    x_key: Optional[str] = Field(default=None, alias="xKey")
    value_key: Optional[str] = Field(default=None, alias="valueKey")
    data: List[Dict[str, Any]] = []
    force_scatter: bool = Field(default=False, alias="forceScatter")
    message: Optional[str] = None


class UploadResponse(CamelModel):
    dataset_id: str = Field(alias="datasetId")
    columns: List[str]
    row_count: int = Field(alias="rowCount")


class GenerateInsightsRequest(CamelModel):
    dataset_id: Optional[str] = Field(default=None, alias="datasetId")
    regenerate: bool = False
    use_sampling: bool = Field(default=True, alias="useSampling")
