import dataclasses
from datetime import UTC, datetime

from src.crawler.tasks import CrawlTask, Priority, ScheduleConfig, Source, TaskSpec
from src.utils.serialization import to_jsonable


def test_to_jsonable_with_task_dataclass():
    created = datetime(2024, 1, 1, tzinfo=UTC)
    task = CrawlTask.from_spec(
        TaskSpec(source=Source.EBAY, category="Motors", keywords=("car",), priority=Priority.HIGH),
        task_id="task_1_abc",
        created_at=created,
    )

    out = to_jsonable(task)

    assert out["id"] == "task_1_abc"
    assert out["source"] == "ebay"
    assert out["priority"] == 0
    assert out["status"] == "pending"
    assert out["keywords"] == ["car"]
    assert out["created_at"] == "2024-01-01T00:00:00+00:00"
    assert out["started_at"] is None


def test_to_jsonable_with_pydantic_model():
    out = to_jsonable(ScheduleConfig(source=Source.AMAZON, categories=["Electronics"], interval=30))

    assert out == {"source": "amazon", "categories": ["Electronics"], "interval": 30, "enabled": True}


def test_to_jsonable_nested_collections_and_dict():
    @dataclasses.dataclass
    class Row:
        when: datetime

    data = {
        Source.AMAZON: [1, 2, {"b": {"c": 3}}],
        "rows": (Row(when=datetime(2024, 5, 1, 12, 0)),),
        "tags": frozenset({"x"}),
    }
    out = to_jsonable(data)

    assert out["amazon"][2]["b"]["c"] == 3
    assert out["rows"] == [{"when": "2024-05-01T12:00:00"}]
    assert out["tags"] == ["x"]
