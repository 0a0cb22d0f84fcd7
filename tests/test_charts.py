from decimal import Decimal

from charts import ChartGenerator, ChartSeries, chart_colour


def test_multi_set_emits_decimal_strings_and_axis_options() -> None:
    chart = ChartGenerator().multi_set(
        [
            ChartSeries(
                "food (expenses)",
                type="bar",
                entries={"January 2017": Decimal("-10.00"), "February 2017": Decimal("-5.5")},
                y_axis_id="y-axis-0",
            ),
            ChartSeries(
                "food (sum of expenses)",
                entries={"January 2017": Decimal("-10"), "February 2017": Decimal("-15.5")},
                fill=False,
            ),
        ]
    )
    assert chart["count"] == 2
    assert chart["labels"] == ["January 2017", "February 2017"]
    first, second = chart["datasets"]
    assert first == {
        "label": "food (expenses)",
        "type": "bar",
        "data": ["-10", "-5.5"],
        "yAxisID": "y-axis-0",
    }
    assert second["fill"] is False
    assert "yAxisID" not in second


def test_empty_multi_set() -> None:
    assert ChartGenerator().multi_set([]) == {"count": 0, "labels": [], "datasets": []}


def test_pie_chart_sorts_by_absolute_amount() -> None:
    chart = ChartGenerator().pie_chart(
        {"Shop": Decimal("-3"), "Rent": Decimal("-700"), "Bar": Decimal("12.5")}
    )
    assert chart["labels"] == ["Rent", "Bar", "Shop"]
    assert chart["datasets"][0]["data"] == ["700", "12.5", "3"]
    assert chart["datasets"][0]["backgroundColor"][0] == chart_colour(0)


def test_single_set() -> None:
    chart = ChartGenerator().single_set("Spent", {"2017": Decimal("1E+2")})
    assert chart["datasets"][0]["data"] == ["100"]
