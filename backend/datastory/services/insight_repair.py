"""
Validation and repair of the LLM insight response.

The model is asked for JSON with insights, 4-5 plot groups of 2-5 plots and
a long-form summary. What comes back is treated as untrusted:

- JSON is extracted defensively (strict parse, then outermost braces).
- A response with nothing usable is a hard error (InsightResponseError).
- Plots referencing unknown columns are dropped; thin groups are dropped.
- Missing groups are asked for once, then synthesized from the profile.
- A short summary is asked for once, then replaced with a default.
"""
import json
import logging
import re
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from datastory.core.errors import InsightResponseError
from datastory.core.schemas import (
    AGGREGATIONS, CHART_TYPES, ChartSpec, ChartSpecification, DatasetProfile,
    Insight, InsightPayload, PlotGroup,
)

logger = logging.getLogger(__name__)

MIN_PLOT_GROUPS = 4
MAX_PLOT_GROUPS = 5
MIN_PLOTS = 2
MAX_PLOTS = 5
COLUMNS_PER_KIND = 3
OVERVIEW_COLUMNS = 4
MIN_SUMMARY_LENGTH = 900

RESPONSE_KEYS = ("plotGroups", "charts", "summaryMarkdown", "summary")

CHART_TYPE_ALIASES = {"donut": "pie", "column": "bar", "scatterplot": "scatter", "hist": "histogram"}
AGGREGATION_ALIASES = {"mean": "avg", "average": "avg", "total": "sum", "frequency": "count"}

DEFAULT_SUMMARY = """# Summary

We profiled every column of this dataset and grouped the most useful charts
above. Start with the distributions to see typical values and outliers, then
use the category breakdowns to spot which groups dominate.

## Further exploration ideas
- Compare the largest categories against the rest of the data.
- Look for trends over time where a date column is available.
- Check columns with many missing values before drawing conclusions.
- Investigate outliers in the numeric distributions.
"""

Expander = Callable[[Dict[str, Any]], Optional[str]]

_FENCE = re.compile(r'^\s*```(?:json)?\s*(.*?)\s*```\s*$', re.DOTALL | re.IGNORECASE)
_EMPHASIS_PATTERNS = (
    (re.compile(r'\*\*(.+?)\*\*'), r'\1'),
    (re.compile(r'__(.+?)__'), r'\1'),
    (re.compile(r'(?<![\*\w])\*(?!\s)([^*\n]+?)(?<!\s)\*(?!\*)'), r'\1'),
    (re.compile(r'`([^`\n]+)`'), r'\1'),
)
_HEADING = re.compile(r'^#+\s*', re.MULTILINE)
# A title line on its own, or "Summary:" leading the first sentence
_SUMMARY_TITLE = re.compile(
    r'^\s*(?:executive\s+summary|data\s+summary|summary)(?:[ \t]*:[ \t]*|[ \t]*(?:\n|$)\s*)',
    re.IGNORECASE
)
_LIST_ITEM = re.compile(r'^(?:[-*•]|\d+[.)])\s+')
_IDEAS_MARKER = "further exploration ideas"


# -- parsing ---------------------------------------------------------------

def _loads_object(text: str) -> Optional[Dict[str, Any]]:
    try:
        value = json.loads(text)
    except (ValueError, TypeError):
        return None
    return value if isinstance(value, dict) else None


def extract_json(text: Optional[str]) -> Optional[Dict[str, Any]]:
    """
    Pull a JSON object out of model output.

    Tries the text as-is (minus a ``` fence), then the span between the
    first "{" and the last "}". Returns None if neither parses.
    """
    if not text:
        return None

    fenced = _FENCE.match(text)
    candidate = fenced.group(1) if fenced else text

    parsed = _loads_object(candidate.strip())
    if parsed is not None:
        return parsed

    start, end = candidate.find("{"), candidate.rfind("}")
    if start == -1 or end <= start:
        return None
    return _loads_object(candidate[start:end + 1])


def parse_insight_response(text: Optional[str]) -> Dict[str, Any]:
    """Parse model output or raise InsightResponseError with a snippet of it."""
    parsed = extract_json(text)
    if parsed is None:
        raise InsightResponseError("AI response did not contain valid JSON", text or "")
    if not any(key in parsed for key in RESPONSE_KEYS):
        raise InsightResponseError("AI response is missing plotGroups, charts and summary", text)
    return parsed


def strip_markdown_emphasis(text: str) -> str:
    """Remove **bold**, __underline__, *italic* and `code` markers."""
    for pattern, replacement in _EMPHASIS_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


def split_summary(markdown: str) -> Tuple[str, List[str]]:
    """
    Split a report into its prose and its "Further exploration ideas" list.

    Heading markers and a leading "Executive Summary"-style title are removed
    from the prose.
    """
    text = markdown or ""
    marker = text.lower().find(_IDEAS_MARKER)
    body = text[:marker] if marker >= 0 else text
    tail = text[marker:] if marker >= 0 else ""

    body = _HEADING.sub("", body).strip()
    body = _SUMMARY_TITLE.sub("", body, count=1)

    ideas = []
    for line in tail.splitlines():
        cleaned = _HEADING.sub("", line).strip()
        if _LIST_ITEM.match(cleaned):
            ideas.append(_LIST_ITEM.sub("", cleaned))
    return body, ideas


# -- normalization ---------------------------------------------------------

def _column_type(profile: Optional[DatasetProfile], name: str) -> Optional[str]:
    if profile is None:
        return None
    column = profile.column(name)
    return column.type if column else None


def _text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def normalize_plot(
    raw: Any,
    columns: Sequence[str],
    profile: Optional[DatasetProfile] = None,
) -> Optional[ChartSpecification]:
    """
    Turn one model-proposed plot into a ChartSpecification, or None.

    Unknown chart types and x columns drop the plot; an unknown y column is
    dropped from the plot; sum/avg without a y column fall back to count.
    """
    if not isinstance(raw, dict):
        return None

    chart_type = _text(raw.get("type")).lower()
    chart_type = CHART_TYPE_ALIASES.get(chart_type, chart_type)
    if chart_type not in CHART_TYPES:
        return None

    spec = raw.get("spec") if isinstance(raw.get("spec"), dict) else {}
    x_key = _text(spec.get("xKey") or raw.get("xKey"))
    if x_key not in columns:
        return None

    y_key = _text(spec.get("yKey") or raw.get("yKey")) or None
    if y_key is not None and y_key not in columns:
        logger.debug(f"Dropping unknown yKey '{y_key}' from {chart_type} plot")
        y_key = None

    aggregation = _text(spec.get("aggregation") or raw.get("aggregation")).lower()
    aggregation = AGGREGATION_ALIASES.get(aggregation, aggregation)
    if aggregation not in AGGREGATIONS:
        aggregation = "none" if (y_key or chart_type == "scatter") else "count"
    if aggregation in ("sum", "avg") and not y_key:
        aggregation = "count"

    data_type = _text(spec.get("dataType")).lower()
    if data_type not in ("numeric", "categorical", "temporal"):
        data_type = _column_type(profile, x_key)

    explanation = _text(raw.get("explanation")) or _text(spec.get("explanation"))

    return ChartSpecification(
        type=chart_type,
        spec=ChartSpec(x_key=x_key, y_key=y_key, aggregation=aggregation, data_type=data_type),
        explanation=strip_markdown_emphasis(explanation),
    )


def normalize_plot_groups(
    raw_groups: Any,
    columns: Sequence[str],
    profile: Optional[DatasetProfile] = None,
) -> List[PlotGroup]:
    """Valid groups only: each keeps at most 5 usable plots and needs 2."""
    if not isinstance(raw_groups, list):
        return []

    groups = []
    for index, raw in enumerate(raw_groups):
        if not isinstance(raw, dict):
            continue
        plots = [p for p in (normalize_plot(r, columns, profile) for r in raw.get("plots") or []) if p]
        if len(plots) < MIN_PLOTS:
            logger.debug(f"Dropping plot group {index}: only {len(plots)} usable plots")
            continue
        groups.append(PlotGroup(
            group_title=strip_markdown_emphasis(_text(raw.get("groupTitle")) or f"Analysis {index + 1}"),
            group_narrative=strip_markdown_emphasis(_text(raw.get("groupNarrative"))),
            plots=plots[:MAX_PLOTS],
        ))
    return groups


def normalize_insights(raw_insights: Any) -> List[Insight]:
    if not isinstance(raw_insights, list):
        return []
    insights = []
    for raw in raw_insights:
        if isinstance(raw, str) and raw.strip():
            insights.append(Insight(title="Insight", content=strip_markdown_emphasis(raw.strip())))
            continue
        if not isinstance(raw, dict):
            continue
        content = _text(raw.get("content")) or _text(raw.get("text")) or _text(raw.get("description"))
        if not content:
            continue
        score = raw.get("score")
        insights.append(Insight(
            title=strip_markdown_emphasis(_text(raw.get("title")) or "Insight"),
            content=strip_markdown_emphasis(content),
            score=float(score) if isinstance(score, (int, float)) and not isinstance(score, bool) else None,
        ))
    return insights


# -- synthesis -------------------------------------------------------------

def _plot(chart_type: str, x_key: str, data_type: Optional[str], explanation: str,
          y_key: str = None, aggregation: str = "none") -> ChartSpecification:
    return ChartSpecification(
        type=chart_type,
        spec=ChartSpec(x_key=x_key, y_key=y_key, aggregation=aggregation, data_type=data_type),
        explanation=explanation,
    )


def _spotlight_plots(name: str, column_type: Optional[str]) -> List[ChartSpecification]:
    """Two single-column views of `name`, chosen by its type."""
    if column_type == "numeric":
        return [
            _plot("histogram", name, "numeric", f"How values of {name} are distributed."),
            _plot("line", name, "numeric", f"How often each value of {name} occurs.", aggregation="count"),
        ]
    if column_type == "temporal":
        return [
            _plot("area", name, "temporal", f"Number of records over {name}.", aggregation="count"),
            _plot("bar", name, "temporal", f"Records per {name} value.", aggregation="count"),
        ]
    return [
        _plot("bar", name, "categorical", f"Number of records for each {name}.", aggregation="count"),
        _plot("pie", name, "categorical", f"Share of records by {name}.", aggregation="count"),
    ]


def _group(title: str, narrative: str, plots: List[ChartSpecification],
           padding: Iterable[ChartSpecification] = ()) -> Optional[PlotGroup]:
    plots = list(plots)
    for extra in padding:
        if len(plots) >= MIN_PLOTS:
            break
        plots.append(extra)
    if len(plots) < MIN_PLOTS:
        return None
    return PlotGroup(group_title=title, group_narrative=narrative, plots=plots[:MAX_PLOTS])


def groups_from_profile(profile: DatasetProfile, columns: Sequence[str]) -> List[PlotGroup]:
    """Plot groups derived from column types, up to 3 columns per kind."""
    by_type: Dict[str, List[str]] = {"numeric": [], "categorical": [], "temporal": []}
    for column in profile.columns:
        if column.name in columns:
            by_type[column.type].append(column.name)
    numeric = by_type["numeric"][:COLUMNS_PER_KIND]
    categorical = by_type["categorical"][:COLUMNS_PER_KIND]
    temporal = by_type["temporal"][:COLUMNS_PER_KIND]

    candidates = []
    if numeric:
        candidates.append(_group(
            "Distributions",
            "How the main numeric measures are spread, including typical values and outliers.",
            [_plot("histogram", n, "numeric", f"Distribution of {n}.") for n in numeric],
            _spotlight_plots(numeric[0], "numeric")[1:],
        ))
    if categorical:
        candidates.append(_group(
            "Category breakdown",
            "Which categories appear most often.",
            [_plot("bar", c, "categorical", f"Count of records by {c}.", aggregation="count") for c in categorical],
            _spotlight_plots(categorical[0], "categorical")[1:],
        ))
    if temporal and numeric:
        time_column = temporal[0]
        candidates.append(_group(
            "Trends over time",
            f"How numeric measures move across {time_column}.",
            [_plot("line", time_column, "temporal", f"{n} over {time_column}.", y_key=n) for n in numeric],
            _spotlight_plots(time_column, "temporal"),
        ))
    if len(numeric) >= 2:
        pairs = [(a, b) for i, a in enumerate(numeric) for b in numeric[i + 1:]]
        padding = []
        if categorical:
            padding.append(_plot("bar", categorical[0], "categorical",
                                 f"Average {numeric[0]} for each {categorical[0]}.",
                                 y_key=numeric[0], aggregation="avg"))
        padding.append(_plot("line", numeric[0], "numeric", f"{numeric[1]} along {numeric[0]}.", y_key=numeric[1]))
        candidates.append(_group(
            "Relationships",
            "Whether the numeric measures move together.",
            [_plot("scatter", a, "numeric", f"{a} against {b}.", y_key=b) for a, b in pairs[:COLUMNS_PER_KIND]],
            padding,
        ))
    if categorical and numeric:
        category = categorical[0]
        candidates.append(_group(
            f"Comparisons by {category}",
            f"How the numeric measures differ across {category}.",
            [_plot("bar", category, "categorical", f"Average {n} by {category}.", y_key=n, aggregation="avg")
             for n in numeric]
            + [_plot("bar", category, "categorical", f"Total {numeric[0]} by {category}.",
                     y_key=numeric[0], aggregation="sum")],
        ))

    return [g for g in candidates if g is not None][:MAX_PLOT_GROUPS]


def overview_group(profile: Optional[DatasetProfile], columns: Sequence[str]) -> List[PlotGroup]:
    """One group covering the first few columns, one plot each."""
    first = list(columns[:OVERVIEW_COLUMNS])
    if not first:
        return []
    plots = []
    for name in first:
        if _column_type(profile, name) == "numeric":
            plots.append(_plot("histogram", name, "numeric", f"Distribution of {name}."))
        else:
            plots.append(_plot("bar", name, _column_type(profile, name) or "categorical",
                               f"Count of records by {name}.", aggregation="count"))
    group = _group(
        "Overview",
        "A first look at the leading columns of the dataset.",
        plots,
        _spotlight_plots(first[0], _column_type(profile, first[0]))[1:],
    )
    return [group] if group else []


GROUP_STRATEGIES = (groups_from_profile, overview_group)


def synthesize_plot_groups(profile: DatasetProfile, columns: Sequence[str]) -> List[PlotGroup]:
    """Result of the first strategy that produces any group."""
    for strategy in GROUP_STRATEGIES:
        groups = strategy(profile, columns)
        if groups:
            logger.info(f"Synthesized {len(groups)} plot groups via {strategy.__name__}")
            return groups
    return []


def fill_plot_groups(
    groups: List[PlotGroup],
    profile: DatasetProfile,
    columns: Sequence[str],
) -> List[PlotGroup]:
    """
    Top up `groups` to at least MIN_PLOT_GROUPS, at most MAX_PLOT_GROUPS.

    Existing groups come first, then synthesized ones, then single-column
    spotlight groups cycling through the columns.
    """
    filled = list(groups[:MAX_PLOT_GROUPS])
    titles = {g.group_title.lower() for g in filled}

    for group in synthesize_plot_groups(profile, columns):
        if len(filled) >= MAX_PLOT_GROUPS:
            break
        if group.group_title.lower() not in titles:
            filled.append(group)
            titles.add(group.group_title.lower())

    for i in range(MIN_PLOT_GROUPS):
        if len(filled) >= MIN_PLOT_GROUPS or not columns:
            break
        name = columns[i % len(columns)]
        title = f"Spotlight: {name}"
        if title.lower() in titles:
            title = f"Spotlight: {name} ({i + 1})"
        filled.append(PlotGroup(
            group_title=title,
            group_narrative=f"A closer look at {name}.",
            plots=_spotlight_plots(name, _column_type(profile, name)),
        ))
        titles.add(title.lower())

    return filled


def default_insights(profile: DatasetProfile) -> List[Insight]:
    counts = {"numeric": 0, "categorical": 0, "temporal": 0}
    for column in profile.columns:
        counts[column.type] += 1
    sparse = [c.name for c in profile.columns if profile.row_count and c.missing_count / profile.row_count > 0.2]
    content = (
        f"The dataset has {profile.row_count} rows and {len(profile.columns)} columns: "
        f"{counts['numeric']} numeric, {counts['categorical']} categorical and "
        f"{counts['temporal']} date columns."
    )
    if sparse:
        content += f" Columns with more than 20% missing values: {', '.join(sparse[:5])}."
    return [Insight(title="Dataset overview", content=content)]


# -- repair ----------------------------------------------------------------

def _expand(expander: Optional[Expander], parsed: Dict[str, Any], what: str) -> Optional[Dict[str, Any]]:
    """Run one repair call; None if there is no expander or it fails."""
    if expander is None:
        return None
    try:
        text = expander(parsed)
    except Exception as e:
        logger.warning(f"{what} repair call failed: {e}")
        return None
    expanded = extract_json(text)
    if expanded is None and text:
        # Summary repairs may come back as bare markdown.
        expanded = {"summaryMarkdown": text}
    return expanded


def _summary_text(obj: Optional[Dict[str, Any]]) -> str:
    if not obj:
        return ""
    summary = obj.get("summaryMarkdown") or obj.get("summary") or ""
    return strip_markdown_emphasis(summary.strip()) if isinstance(summary, str) else ""


def repair_insight_payload(
    parsed: Dict[str, Any],
    profile: DatasetProfile,
    columns: Sequence[str],
    expand_groups: Optional[Expander] = None,
    expand_summary: Optional[Expander] = None,
    min_summary_length: int = MIN_SUMMARY_LENGTH,
) -> InsightPayload:
    """
    Build a structurally valid payload from a parsed model response.

    Guarantees at least one insight, 4-5 plot groups (when the dataset has
    columns) of 2-5 plots on existing columns, and a non-empty summary.
    Each expander is called at most once.
    """
    columns = list(columns)

    groups = normalize_plot_groups(parsed.get("plotGroups"), columns, profile)
    if not groups:
        legacy = normalize_plot_groups(
            [{"groupTitle": "Key charts", "plots": parsed.get("charts") or []}], columns, profile
        )
        groups = legacy

    if len(groups) < MIN_PLOT_GROUPS:
        expanded = _expand(expand_groups, parsed, "Plot group")
        if expanded:
            candidate = normalize_plot_groups(expanded.get("plotGroups"), columns, profile)
            if len(candidate) > len(groups):
                logger.info(f"Plot group repair raised group count from {len(groups)} to {len(candidate)}")
                groups = candidate

    if len(groups) < MIN_PLOT_GROUPS:
        groups = fill_plot_groups(groups, profile, columns)
    groups = groups[:MAX_PLOT_GROUPS]

    summary = _summary_text(parsed)
    if len(summary) < min_summary_length:
        repaired = _summary_text(_expand(expand_summary, parsed, "Summary"))
        if len(repaired) >= min_summary_length:
            summary = repaired
        else:
            logger.info(f"Summary too short ({len(summary)} chars), using default summary")
            summary = DEFAULT_SUMMARY

    insights = normalize_insights(parsed.get("insights")) or default_insights(profile)

    return InsightPayload(
        insights=insights,
        plot_groups=groups,
        charts=[plot for group in groups for plot in group.plots],
        summary_markdown=summary,
    )
