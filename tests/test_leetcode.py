import asyncio
import logging

import pytest

from leetcode import (
    LeetCodeAPIError,
    LeetCodeGraphQLError,
    LeetCodeNetworkError,
    LeetCodeRateLimitError,
    LeetCodeResponseError,
    build_cookie,
    format_timestamp,
)


def install_responses(monkeypatch, client, responses):
    """Make ``client._post`` replay ``responses``; exceptions are raised in place."""
    calls = []

    async def fake_post(payload, headers):
        calls.append({"payload": payload, "headers": headers})
        response = responses[min(len(calls), len(responses)) - 1]
        if isinstance(response, BaseException):
            raise response
        return response

    monkeypatch.setattr(client, "_post", fake_post)
    return calls


async def test_query_returns_data(monkeypatch, client):
    calls = install_responses(monkeypatch, client, [(200, {"data": {"matchedUser": {"username": "a"}}})])

    data = await client.query("query { x }", {"username": "a"}, operation_name="testConnection")

    assert data == {"matchedUser": {"username": "a"}}
    assert calls[0]["payload"]["operationName"] == "testConnection"
    assert calls[0]["payload"]["variables"] == {"username": "a"}


async def test_retries_transport_failures_then_succeeds(monkeypatch, client):
    calls = install_responses(
        monkeypatch,
        client,
        [ConnectionResetError("reset"), asyncio.TimeoutError(), (200, {"data": {"ok": True}})],
    )

    assert await client.query("query { ok }") == {"ok": True}
    assert len(calls) == 3


async def test_retries_exhausted_raise_network_error(monkeypatch, client):
    calls = install_responses(monkeypatch, client, [asyncio.TimeoutError()])

    with pytest.raises(LeetCodeNetworkError):
        await client.query("query { ok }")
    # max_retries=2 means three attempts in total
    assert len(calls) == 3


async def test_rate_limit_is_retried(monkeypatch, client):
    calls = install_responses(monkeypatch, client, [(429, "slow down"), (200, {"data": {"ok": 1}})])

    assert await client.query("query { ok }") == {"ok": 1}
    assert len(calls) == 2


async def test_rate_limit_after_retries(monkeypatch, client):
    install_responses(monkeypatch, client, [(429, "slow down")])

    with pytest.raises(LeetCodeRateLimitError) as excinfo:
        await client.query("query { ok }")
    assert excinfo.value.status == 429


async def test_graphql_errors_are_not_retried(monkeypatch, client):
    calls = install_responses(
        monkeypatch, client, [(200, {"errors": [{"message": "Submission not found"}], "data": None})]
    )

    with pytest.raises(LeetCodeGraphQLError) as excinfo:
        await client.query("query { ok }")
    assert str(excinfo.value) == "Submission not found"
    assert len(calls) == 1


async def test_http_error_carries_status(monkeypatch, client):
    calls = install_responses(monkeypatch, client, [(403, "forbidden")])

    with pytest.raises(LeetCodeAPIError) as excinfo:
        await client.query("query { ok }")
    assert excinfo.value.status == 403
    assert len(calls) == 1


async def test_non_json_body(monkeypatch, client):
    install_responses(monkeypatch, client, [(200, "<html>blocked</html>")])

    with pytest.raises(LeetCodeResponseError):
        await client.query("query { ok }")


async def test_failure_log_redacts_credentials(monkeypatch, client, caplog):
    install_responses(monkeypatch, client, [(500, "boom")])

    with caplog.at_level(logging.ERROR, logger="leetcode"):
        with pytest.raises(LeetCodeAPIError):
            await client.query("query { ok }", session="secret-session", csrf_token="secret-csrf")

    assert "secret-session" not in caplog.text
    assert "secret-csrf" not in caplog.text
    assert "***" in caplog.text


async def test_credentials_are_sent_as_cookie(monkeypatch, client):
    calls = install_responses(monkeypatch, client, [(200, {"data": {"submissionDetails": None}})])

    assert await client.fetch_submission_detail("123", session="s", csrf_token="c") is None
    headers = calls[0]["headers"]
    assert headers["Cookie"] == "LEETCODE_SESSION=s; csrftoken=c"
    assert headers["x-csrftoken"] == "c"
    assert calls[0]["payload"]["variables"] == {"submissionId": 123}


async def test_invalid_submission_id_is_not_found(client):
    with pytest.raises(LeetCodeAPIError) as excinfo:
        await client.fetch_submission_detail("abc")
    assert excinfo.value.status == 404


async def test_fetch_recent_ac_submissions(monkeypatch, client):
    install_responses(
        monkeypatch,
        client,
        [
            (
                200,
                {
                    "data": {
                        "recentAcSubmissionList": [
                            {
                                "id": 987,
                                "title": "Two Sum",
                                "titleSlug": "two-sum",
                                "timestamp": "1700000000",
                                "statusDisplay": "Accepted",
                                "lang": "python3",
                                "runtime": "40 ms",
                                "memory": "16 MB",
                            }
                        ]
                    }
                },
            )
        ],
    )

    submissions = await client.fetch_recent_ac_submissions("alice", 5)

    assert submissions == [
        {
            "submission_id": "987",
            "title": "Two Sum",
            "slug": "two-sum",
            "timestamp": 1700000000,
            "status": "Accepted",
            "language": "python3",
            "runtime": "40 ms",
            "memory": "16 MB",
            "submission_time": "2023-11-14T22:13:20+00:00",
        }
    ]


async def test_fetch_problem_detail_missing_question(monkeypatch, client):
    install_responses(monkeypatch, client, [(200, {"data": {"question": None}})])

    assert await client.fetch_problem_detail("nope") is None


async def test_fetch_user_profile_stats(monkeypatch, client):
    install_responses(
        monkeypatch,
        client,
        [
            (
                200,
                {
                    "data": {
                        "matchedUser": {
                            "username": "Alice",
                            "profile": {"realName": "A", "userAvatar": None, "ranking": 10, "reputation": 2},
                            "submitStats": {
                                "acSubmissionNum": [
                                    {"difficulty": "All", "count": 6, "submissions": 8},
                                    {"difficulty": "Easy", "count": 3, "submissions": 4},
                                    {"difficulty": "Medium", "count": 2, "submissions": 3},
                                    {"difficulty": "Hard", "count": 1, "submissions": 1},
                                ],
                                "totalSubmissionNum": [{"difficulty": "All", "count": 7, "submissions": 16}],
                            },
                        }
                    }
                },
            )
        ],
    )

    profile = await client.fetch_user_profile("alice")

    assert profile["username"] == "Alice"
    assert profile["stats"] == {
        "total_solved": 6,
        "easy_solved": 3,
        "medium_solved": 2,
        "hard_solved": 1,
        "total_submissions": 16,
        "acceptance_rate": 50.0,
    }


def test_build_cookie():
    assert build_cookie(None, None) is None
    assert build_cookie("s", None) == "LEETCODE_SESSION=s"


def test_format_timestamp():
    assert format_timestamp(0) == "1970-01-01T00:00:00+00:00"
