"""
Insight generation: profile the rows, ask the LLM, repair its answer and
persist the result as insight, chart and report records.
"""
import logging
from typing import Any, Dict, List, Optional, Tuple

from datastory.core.config import Settings, get_settings
from datastory.core.errors import AIServiceError
from datastory.core.performance import track_performance
from datastory.core.schemas import ChartSpec, ChartSpecification, InsightPayload
from datastory.core.storage import CHARTS, INSIGHTS, REPORTS, RecordStore
from datastory.services.ai_client import call_ai_with_fallback
from datastory.services.insight_repair import parse_insight_response, repair_insight_payload, split_summary
from datastory.services.parser import parse_csv
from datastory.services.profiler import build_profile
from datastory.services.prompts import (
    SYSTEM_PROMPT, build_insight_prompt, build_plot_group_repair_prompt, build_summary_repair_prompt
)
from datastory.services.sampling import downsample_evenly

logger = logging.getLogger(__name__)

FAST_MODE = "fast"
DEEP_MODE = "deep"


def rows_for_generation(dataset: Dict[str, Any], use_sampling: bool) -> Tuple[List[Dict[str, Any]], str]:
    """The stored sample (fast), or every row re-parsed from the stored CSV (deep)."""
    if use_sampling or not dataset.get("full_data"):
        return list(dataset.get("sample_rows") or []), FAST_MODE
    _, rows = parse_csv(dataset["full_data"])
    return rows, DEEP_MODE


@track_performance("generate_insights")
def generate_insight_payload(
    dataset: Dict[str, Any],
    use_sampling: bool = True,
    settings: Optional[Settings] = None,
) -> Tuple[InsightPayload, str]:
    """
    Produce a repaired insight payload for a dataset record.

    Raises AIServiceError when no provider answers and InsightResponseError
    when the answer holds no usable JSON.
    """
    settings = settings or get_settings()
    columns = list(dataset["columns"])
    rows, mode = rows_for_generation(dataset, use_sampling)

    profile = build_profile(rows, columns)
    prompt_rows = downsample_evenly(rows, settings.prompt_rows_limit)
    logger.info(f"Generating insights ({mode}) from {len(rows)} rows, {len(prompt_rows)} in prompt")

    prompt = build_insight_prompt(profile, prompt_rows, columns, settings.min_summary_length)
    text = call_ai_with_fallback(prompt, SYSTEM_PROMPT)
    if not text:
        raise AIServiceError("No AI provider returned a response. Set GROQ_API_KEY or GEMINI_API_KEY.")

    parsed = parse_insight_response(text)

    def expand_groups(current: Dict[str, Any]) -> Optional[str]:
        return call_ai_with_fallback(build_plot_group_repair_prompt(current, profile, columns), SYSTEM_PROMPT)

    def expand_summary(current: Dict[str, Any]) -> Optional[str]:
        return call_ai_with_fallback(
            build_summary_repair_prompt(current, profile, settings.min_summary_length), SYSTEM_PROMPT
        )

    payload = repair_insight_payload(
        parsed,
        profile,
        columns,
        expand_groups=expand_groups,
        expand_summary=expand_summary,
        min_summary_length=settings.min_summary_length,
    )
    return payload, mode


def has_generated_content(store: RecordStore, dataset_id: str) -> bool:
    return bool(store.find(CHARTS, dataset_id=dataset_id) or store.find(REPORTS, dataset_id=dataset_id))


def persist_payload(store: RecordStore, dataset_id: str, payload: InsightPayload) -> int:
    """Write insight, chart and report records. Returns the number created."""
    created = 0
    for insight in payload.insights:
        store.create(INSIGHTS, {
            "dataset_id": dataset_id,
            "title": insight.title,
            "content": insight.content,
            "score": insight.score,
        })
        created += 1

    for group_index, group in enumerate(payload.plot_groups):
        for plot in group.plots:
            store.create(CHARTS, {
                "dataset_id": dataset_id,
                "group_index": group_index,
                "group_title": group.group_title,
                "group_narrative": group.group_narrative,
                "type": plot.type,
                "spec": plot.spec.model_dump(by_alias=True),
                "explanation": plot.explanation,
            })
            created += 1

    store.create(REPORTS, {"dataset_id": dataset_id, "markdown": payload.summary_markdown})
    created += 1
    return created


def chart_from_record(record: Dict[str, Any]) -> ChartSpecification:
    return ChartSpecification(
        type=record["type"],
        spec=ChartSpec.model_validate(record.get("spec") or {}),
        explanation=record.get("explanation") or "",
    )


def chart_view(record: Dict[str, Any]) -> Dict[str, Any]:
    chart = chart_from_record(record)
    return {
        "id": record["id"],
        "groupIndex": record.get("group_index", 0),
        **chart.model_dump(by_alias=True),
    }


def plot_groups_from_records(records: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Rebuild plot groups from chart records, in group order."""
    groups: Dict[int, Dict[str, Any]] = {}
    for record in records:
        index = record.get("group_index", 0)
        group = groups.setdefault(index, {
            "groupTitle": record.get("group_title") or f"Analysis {index + 1}",
            "groupNarrative": record.get("group_narrative") or "",
            "plots": [],
        })
        group["plots"].append(chart_view(record))
    return [groups[i] for i in sorted(groups)]


def load_insights(store: RecordStore, dataset: Dict[str, Any]) -> Dict[str, Any]:
    """Everything generated for a dataset, shaped for the dashboard."""
    dataset_id = dataset["id"]
    insights = store.find(INSIGHTS, dataset_id=dataset_id)
    charts = store.find(CHARTS, dataset_id=dataset_id)
    reports = store.find(REPORTS, dataset_id=dataset_id)
    report = reports[-1] if reports else None

    summary, ideas = split_summary(report["markdown"]) if report else ("", [])
    return {
        "dataset": {
            "id": dataset_id,
            "name": dataset["name"],
            "rowCount": dataset["row_count"],
            "columns": dataset["columns"],
        },
        "insights": [
            {"id": i["id"], "title": i["title"], "content": i["content"], "score": i.get("score")}
            for i in insights
        ],
        "charts": [chart_view(c) for c in charts],
        "plotGroups": plot_groups_from_records(charts),
        "report": {"id": report["id"], "markdown": report["markdown"]} if report else None,
        "summary": summary,
        "ideas": ideas,
    }
