from leetcode import LeetCodeAPIError, LeetCodeRateLimitError
from tracker.solutions import (
    MESSAGE_NO_CODE,
    MESSAGE_NO_DETAILS,
    MESSAGE_NOT_FOUND,
    MESSAGE_RATE_LIMITED,
    solution_fields_from_detail,
)

from conftest import make_detail


async def test_fetch_then_serve_from_cache(viewer, fake_client):
    fake_client.details["101"] = make_detail("101")

    first = await viewer.fetch_solution("101", "acct-1", username="alice")
    second = await viewer.fetch_solution("101", "acct-1")

    assert first["success"] and second["success"]
    assert second["solution"]["code"] == "print(1)"
    assert second["solution"]["id"] == first["solution"]["id"]
    assert len(fake_client.detail_calls) == 1


async def test_new_row_is_populated_from_detail(viewer, fake_client):
    fake_client.details["102"] = make_detail("102", username="Alice")

    result = await viewer.fetch_solution("102", "acct-1")

    solution = result["solution"]
    assert solution["username"] == "Alice"
    assert solution["normalized_username"] == "alice"
    assert solution["problem_name"] == "Problem 102"
    assert solution["problem_url"] == "https://leetcode.com/problems/problem-102/"
    assert solution["difficulty"] == "Easy"
    assert solution["language"] == "Python3"
    assert solution["runtime"] == "40 ms"
    assert solution["status"] == "Accepted"
    assert solution["tags"] == ["Array"]
    assert solution["submitted_at"] == "2023-11-14T22:13:20+00:00"


async def test_cache_is_scoped_per_account(viewer, fake_client, storage):
    fake_client.details["103"] = make_detail("103")

    await viewer.fetch_solution("103", "acct-1")
    await viewer.fetch_solution("103", "acct-2")

    assert len(fake_client.detail_calls) == 2
    assert await storage.get_solution("103", "acct-1") is not None
    assert await storage.get_solution("103", "acct-2") is not None


async def test_backfill_keeps_row_identity(viewer, fake_client, storage):
    await storage.insert_solution_metadata(
        "104",
        "acct-1",
        {
            "username": "alice",
            "problem_name": "Two Sum",
            "problem_slug": "two-sum",
            "difficulty": "Hard",
            "timestamp": 1600000000,
            "submitted_at": "2020-09-13T12:26:40+00:00",
            "tags": ["Hash Table"],
        },
    )
    before = await storage.get_solution("104", "acct-1")
    fake_client.details["104"] = make_detail("104", question=None, topicTags=[], timestamp=None)

    result = await viewer.fetch_solution("104", "acct-1")

    after = result["solution"]
    assert after["id"] == before["id"]
    assert after["code"] == "print(1)"
    # Metadata missing from the detail payload is left alone
    assert after["problem_name"] == "Two Sum"
    assert after["difficulty"] == "Hard"
    assert after["tags"] == ["Hash Table"]
    assert after["timestamp"] == 1600000000


async def test_stored_username_picks_tracked_session(viewer, fake_client, storage):
    await storage.add_tracked_user("acct-1", "alice")
    await storage.set_leetcode_session("acct-1", "alice", "alice-session", "alice-csrf")
    await storage.insert_solution_metadata(
        "105", "acct-1", {"username": "alice", "problem_name": "P", "timestamp": 1, "submitted_at": "x"}
    )
    fake_client.details["105"] = make_detail("105")

    await viewer.fetch_solution("105", "acct-1")

    assert fake_client.detail_calls[0]["session"] == "alice-session"
    assert fake_client.detail_calls[0]["csrf_token"] == "alice-csrf"


async def test_no_details(viewer, fake_client, storage):
    result = await viewer.fetch_solution("106", "acct-1")

    assert result == {"success": False, "message": MESSAGE_NO_DETAILS}
    assert await storage.get_solution("106", "acct-1") is None


async def test_details_without_code(viewer, fake_client, storage):
    fake_client.details["107"] = make_detail("107", code="")

    result = await viewer.fetch_solution("107", "acct-1")

    assert result == {"success": False, "message": MESSAGE_NO_CODE}
    assert await storage.get_solution("107", "acct-1") is None


async def test_not_found_maps_message(viewer, fake_client):
    fake_client.details["108"] = LeetCodeAPIError("gone", status=404)

    result = await viewer.fetch_solution("108", "acct-1")

    assert result == {"success": False, "message": MESSAGE_NOT_FOUND}


async def test_rate_limit_maps_message(viewer, fake_client):
    fake_client.details["109"] = LeetCodeRateLimitError()

    result = await viewer.fetch_solution("109", "acct-1")

    assert result == {"success": False, "message": MESSAGE_RATE_LIMITED}


async def test_other_api_errors_pass_message_through(viewer, fake_client):
    fake_client.details["110"] = LeetCodeAPIError("HTTP 500: boom", status=500)

    result = await viewer.fetch_solution("110", "acct-1")

    assert result == {"success": False, "message": "HTTP 500: boom"}


def test_fields_use_upstream_owner_over_hint():
    fields = solution_fields_from_detail(make_detail("1", username="Carol"), "alice")

    assert fields["username"] == "Carol"
    assert fields["normalized_username"] == "carol"


def test_fields_fall_back_to_hint():
    fields = solution_fields_from_detail(make_detail("1", user=None), "alice")

    assert fields["username"] == "alice"


async def test_backfill_keeps_tracked_owner(viewer, fake_client, storage):
    await storage.insert_solution_metadata(
        "111", "acct-1", {"username": "alice", "problem_name": "P", "timestamp": 1, "submitted_at": "t"}
    )
    fake_client.details["111"] = make_detail("111", username="Carol")

    result = await viewer.fetch_solution("111", "acct-1")

    assert result["solution"]["username"] == "alice"
    assert result["solution"]["normalized_username"] == "alice"
    assert result["solution"]["code"] == "print(1)"


async def test_update_solution_touches_only_given_columns(storage):
    await storage.insert_solution_metadata(
        "112", "acct-1", {"username": "alice", "problem_name": "Two Sum", "timestamp": 5, "submitted_at": "t"}
    )

    updated = await storage.update_solution("112", "acct-1", {"code": "x = 1", "language": "Python3"})

    assert updated["code"] == "x = 1"
    assert updated["problem_name"] == "Two Sum"
    assert updated["timestamp"] == 5
    assert await storage.update_solution("missing", "acct-1", {"code": "y"}) is None
