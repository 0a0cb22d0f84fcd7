from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, Mapping, Optional

from models import canonical_decimal

CHART_COLOURS = [
    (53, 124, 165),
    (0, 141, 76),
    (219, 139, 11),
    (202, 25, 90),
    (85, 82, 153),
    (66, 133, 244),
    (219, 68, 55),
    (244, 180, 0),
    (15, 157, 88),
    (171, 71, 188),
    (0, 172, 193),
    (255, 112, 67),
    (158, 157, 36),
    (92, 107, 192),
    (240, 98, 146),
    (0, 121, 107),
    (194, 24, 91),
]


def chart_colour(index: int) -> str:
    r, g, b = CHART_COLOURS[index % len(CHART_COLOURS)]
    return f"rgba({r},{g},{b},0.7)"


@dataclass
class ChartSeries:
    label: str
    type: str = "line"  # "bar" | "line"
    entries: dict[str, Decimal] = field(default_factory=dict)
    y_axis_id: Optional[str] = None
    fill: Optional[bool] = None


class ChartGenerator:
    """Turns aggregated series into the JSON consumed by the front-end charts.

    Amounts are emitted as decimal strings, never as floats.
    """

    def multi_set(self, series: Iterable[ChartSeries]) -> dict[str, object]:
        series = list(series)
        labels = list(series[0].entries.keys()) if series else []
        datasets = []
        for current in series:
            dataset: dict[str, object] = {
                "label": current.label,
                "type": current.type,
                "data": [canonical_decimal(v) for v in current.entries.values()],
            }
            if current.y_axis_id is not None:
                dataset["yAxisID"] = current.y_axis_id
            if current.fill is not None:
                dataset["fill"] = current.fill
            datasets.append(dataset)
        return {"count": len(datasets), "labels": labels, "datasets": datasets}

    def single_set(
        self, label: str, entries: Mapping[str, Decimal]
    ) -> dict[str, object]:
        return {
            "count": 1,
            "labels": list(entries.keys()),
            "datasets": [
                {
                    "label": label,
                    "data": [canonical_decimal(v) for v in entries.values()],
                }
            ],
        }

    def pie_chart(self, entries: Mapping[str, Decimal]) -> dict[str, object]:
        slices = sorted(
            ((label, abs(amount)) for label, amount in entries.items()),
            key=lambda item: item[1],
            reverse=True,
        )
        return {
            "labels": [label for label, _ in slices],
            "datasets": [
                {
                    "data": [canonical_decimal(amount) for _, amount in slices],
                    "backgroundColor": [
                        chart_colour(index) for index in range(len(slices))
                    ],
                }
            ],
        }
