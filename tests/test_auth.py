from tracker.auth import (
    SOURCE_NONE,
    SOURCE_PROCESS_DEFAULT,
    SOURCE_TRACKED_OVERRIDE,
    AuthResolver,
    DefaultCredentialProvider,
    TrackedUserCredentialProvider,
    sanitize_token,
)
from utils.config import LeetCodeConfig


async def test_tracked_session_wins_over_default(storage, leetcode_config):
    await storage.add_tracked_user("acct-1", "Alice")
    await storage.set_leetcode_session("acct-1", "alice", "alice-session", None)
    resolver = AuthResolver.from_config(storage, leetcode_config)

    credentials = await resolver.resolve("ALICE")

    assert credentials.source == SOURCE_TRACKED_OVERRIDE
    assert credentials.session == "alice-session"
    # Falls back to the process csrf token when none was stored
    assert credentials.csrf_token == "default-csrf"


async def test_latest_session_across_accounts(storage, leetcode_config, db):
    await storage.add_tracked_user("acct-1", "alice")
    await storage.add_tracked_user("acct-2", "alice")
    await storage.set_leetcode_session("acct-1", "alice", "old", "old-csrf")
    await storage.set_leetcode_session("acct-2", "alice", "new", "new-csrf")
    db.execute(
        "UPDATE tracked_users SET leetcode_session_updated_at = ? WHERE auth_user_id = ?",
        ("2020-01-01T00:00:00+00:00", "acct-1"),
        commit=True,
    )

    credentials = await AuthResolver.from_config(storage, leetcode_config).resolve("alice")

    assert credentials.session == "new"
    assert credentials.csrf_token == "new-csrf"


async def test_untracked_user_uses_process_default(storage, leetcode_config):
    credentials = await AuthResolver.from_config(storage, leetcode_config).resolve("bob")

    assert credentials.source == SOURCE_PROCESS_DEFAULT
    assert credentials.session == "default-session"


async def test_blank_stored_session_is_ignored(storage, leetcode_config):
    await storage.add_tracked_user("acct-1", "alice")
    await storage.set_leetcode_session("acct-1", "alice", "   ", None)

    credentials = await AuthResolver.from_config(storage, leetcode_config).resolve("alice")

    assert credentials.source == SOURCE_PROCESS_DEFAULT


async def test_no_credentials_anywhere(storage):
    resolver = AuthResolver.from_config(storage, LeetCodeConfig(session=None, csrf_token=None))

    credentials = await resolver.resolve(None)

    assert credentials.source == SOURCE_NONE
    assert not credentials.is_authenticated


async def test_providers_are_evaluated_in_order(storage):
    resolver = AuthResolver(
        [
            DefaultCredentialProvider("first", None),
            TrackedUserCredentialProvider(storage),
        ]
    )

    credentials = await resolver.resolve("alice")

    assert credentials.session == "first"


def test_sanitize_token():
    assert sanitize_token("  abc \n") == "abc"
    assert sanitize_token("   ") is None
    assert sanitize_token(None) is None
