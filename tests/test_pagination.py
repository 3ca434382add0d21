import pytest

from redmine_timesheet.models import RedmineResponse, StatusResponse
from redmine_timesheet.pagination import fetch_all, fetch_all_pages

OK = StatusResponse(status_code=200, status_text="OK")
FAILED = StatusResponse(
    status_code=503, status_text="Service Unavailable", error_text="down", has_error=True
)


class PagedSource:
    """Serves pages of the given sizes, one per call."""

    def __init__(self, sizes, statuses=None):
        self.sizes = sizes
        self.statuses = statuses or [OK] * len(sizes)
        self.calls = []

    async def __call__(self, params):
        index = len(self.calls)
        self.calls.append(params)
        status = self.statuses[index]
        if status.has_error:
            return RedmineResponse(data=[], status=status)
        start = params["offset"]
        return RedmineResponse(
            data=list(range(start, start + self.sizes[index])), status=status
        )


async def test_concatenates_pages_until_an_empty_one():
    source = PagedSource([100, 100, 37, 0])
    items = await fetch_all(source, limit=100)

    assert len(items) == 237
    assert items == list(range(237))
    assert [call["offset"] for call in source.calls] == [0, 100, 200, 300]
    assert len(source.calls) == 4


async def test_empty_first_page():
    source = PagedSource([0])
    assert await fetch_all(source) == []
    assert len(source.calls) == 1


async def test_filters_are_sent_with_every_page():
    source = PagedSource([2, 0])
    await fetch_all(source, limit=2, params={"from": "2024-01-01", "user_id": 5})

    assert source.calls == [
        {"from": "2024-01-01", "user_id": 5, "offset": 0, "limit": 2},
        {"from": "2024-01-01", "user_id": 5, "offset": 2, "limit": 2},
    ]


async def test_stops_on_error_and_reports_it():
    source = PagedSource([100, 100, 100], statuses=[OK, FAILED, OK])
    result = await fetch_all_pages(source, limit=100)

    assert len(result.data) == 100
    assert result.status == FAILED
    assert len(source.calls) == 2


async def test_successful_run_reports_last_status():
    result = await fetch_all_pages(PagedSource([3, 0]), limit=3)
    assert result.ok
    assert result.data == [0, 1, 2]


@pytest.mark.parametrize("limit", [0, -1])
async def test_non_positive_limit_is_rejected(limit):
    source = PagedSource([5])
    with pytest.raises(ValueError):
        await fetch_all_pages(source, limit=limit)
    assert source.calls == []
