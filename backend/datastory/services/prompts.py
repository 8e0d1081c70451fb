"""
Prompt construction for insight generation and its repair calls.

Column names and cell values are user data and go through
sanitize_for_prompt before they reach the model.
"""
import json
from typing import Any, Dict, List, Sequence

from datastory.core.sanitization import sanitize_for_prompt
from datastory.core.schemas import DatasetProfile

SYSTEM_PROMPT = "You are a data storytelling assistant. You output strictly valid JSON only."

MAX_PROMPT_COLUMNS = 60
CELL_MAX_LENGTH = 60

RESPONSE_SHAPE = """{
  "insights": [{"title": string, "content": string, "score": number}],
  "plotGroups": [
    {
      "groupTitle": string,
      "groupNarrative": string,
      "plots": [
        {
          "type": "bar" | "line" | "area" | "scatter" | "pie" | "histogram",
          "spec": {"xKey": string, "yKey": string | null, "aggregation": "none" | "count" | "sum" | "avg"},
          "explanation": string
        }
      ]
    }
  ],
  "summaryMarkdown": string
}"""


def describe_column(column) -> str:
    name = sanitize_for_prompt(column.name, 50)
    parts = [f"- {name} ({column.type}): {column.distinct_count} distinct, {column.missing_count} missing"]
    if column.stats:
        s = column.stats
        parts.append(f"min {s.min:g}, median {s.p50:g}, max {s.max:g}, mean {s.mean:.4g}")
    if column.date_range:
        parts.append(f"from {column.date_range.start[:10]} to {column.date_range.end[:10]}")
    if column.top_values:
        top = ", ".join(f"{sanitize_for_prompt(t.value, 30)} ({t.count})" for t in column.top_values[:5])
        parts.append(f"top: {top}")
    return "; ".join(parts)


def format_rows(rows: Sequence[Dict[str, Any]], columns: Sequence[str]) -> str:
    cleaned = [
        {sanitize_for_prompt(c, 50): sanitize_for_prompt(str(row.get(c, "")), CELL_MAX_LENGTH) for c in columns}
        for row in rows
    ]
    return json.dumps(cleaned, ensure_ascii=False)


def build_insight_prompt(
    profile: DatasetProfile,
    prompt_rows: Sequence[Dict[str, Any]],
    columns: Sequence[str],
    min_summary_length: int = 900,
) -> str:
    shown = list(columns[:MAX_PROMPT_COLUMNS])
    column_lines = "\n".join(describe_column(c) for c in profile.columns if c.name in shown)
    column_names = ", ".join(sanitize_for_prompt(c, 50) for c in shown)

    return f"""Analyze this dataset and plan a dashboard for it.

Dataset: {profile.row_count} rows, {len(columns)} columns.
Columns: {column_names}

Column profile:
{column_lines}

Sample rows ({len(prompt_rows)} evenly spaced):
{format_rows(prompt_rows, shown)}

Produce:
- 5 concise insights, each with a title and a 2-3 sentence explanation citing actual values.
- 4 or 5 plot groups. Each group has a short title, a one-paragraph narrative and 2 to 5 plots.
- Every xKey and yKey must be one of the column names above, spelled exactly.
- Use "sum" or "avg" only with a numeric yKey. Use "count" to count records per xKey value.
- A summaryMarkdown of at least {min_summary_length} characters, ending with a
  "## Further exploration ideas" section listing 3-5 bullet points.
- Use plain text for emphasis. Do NOT use bolding or italics.

Return JSON with exactly this shape:
{RESPONSE_SHAPE}
"""


def _existing_titles(parsed: Dict[str, Any]) -> List[str]:
    groups = parsed.get("plotGroups")
    if not isinstance(groups, list):
        return []
    return [str(g.get("groupTitle")) for g in groups if isinstance(g, dict) and g.get("groupTitle")]


def build_plot_group_repair_prompt(parsed: Dict[str, Any], profile: DatasetProfile, columns: Sequence[str]) -> str:
    column_lines = "\n".join(describe_column(c) for c in profile.columns[:MAX_PROMPT_COLUMNS])
    titles = ", ".join(sanitize_for_prompt(t, 60) for t in _existing_titles(parsed)) or "none"
    return f"""Your previous dashboard plan had too few usable plot groups.
Existing group titles: {titles}

Columns:
{column_lines}

Return JSON {{"plotGroups": [...]}} with 4 or 5 groups of 2 to 5 plots each, in this shape:
{RESPONSE_SHAPE}
Every xKey and yKey must be one of these exact column names: {", ".join(sanitize_for_prompt(c, 50) for c in columns)}.
"""


def build_summary_repair_prompt(parsed: Dict[str, Any], profile: DatasetProfile, min_summary_length: int = 900) -> str:
    column_lines = "\n".join(describe_column(c) for c in profile.columns[:MAX_PROMPT_COLUMNS])
    insights = parsed.get("insights") if isinstance(parsed.get("insights"), list) else []
    insight_lines = "\n".join(
        f"- {sanitize_for_prompt(i.get('title', ''), 80)}: {sanitize_for_prompt(i.get('content', ''), 300)}"
        for i in insights if isinstance(i, dict)
    ) or "- none"
    return f"""Write a markdown report of at least {min_summary_length} characters about this dataset.

Dataset: {profile.row_count} rows.
Columns:
{column_lines}

Insights found so far:
{insight_lines}

End with a "## Further exploration ideas" section listing 3-5 bullet points.
Use plain text for emphasis. Do NOT use bolding or italics.
Return JSON {{"summaryMarkdown": string}}.
"""
