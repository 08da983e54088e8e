import asyncio
from dataclasses import replace

import pytest

from linkguard.moderation.controller import (
    NOT_ADMIN_NOTICE,
    MessageState,
    ModerationController,
    RemovalResult,
    parse_command,
)
from linkguard.moderation.models import DecisionAction, MediaKind, MentionedUser, ModerationConfig


LINK = "check https://evil.com/x"


# ============================================================================
# parse_command
# ============================================================================

@pytest.mark.parametrize(
    "text, expected",
    [
        ("!linkguard status", ("status", "")),
        ("  !LinkGuard  Reset @bob ", ("reset", "@bob")),
        ("!linkguard", ("", "")),
        ("!linkguardian status", None),
        ("hello !linkguard status", None),
        ("", None),
        (None, None),
    ],
)
def test_parse_command(text, expected):
    command = parse_command(text, "!linkguard")

    if expected is None:
        assert command is None
    else:
        assert (command.name, command.args) == expected


# ============================================================================
# Moderation flow
# ============================================================================

@pytest.mark.asyncio
async def test_three_strikes_then_removal(controller, gateway, store, message_factory):
    first = await controller.on_message(message_factory("alice", LINK))
    second = await controller.on_message(message_factory("alice", LINK))

    assert first.state == MessageState.WARNED
    assert first.decision.warning_count == 1
    assert second.decision.warning_count == 2
    assert gateway.texts == [
        "⚠️ Alice, links are not allowed. Warning 1/3",
        "⚠️ Alice, links are not allowed. Warning 2/3",
    ]
    assert gateway.removed == []

    third = await controller.on_message(message_factory("alice", LINK))

    assert third.state == MessageState.ESCALATION_ATTEMPTED
    assert third.decision.action == DecisionAction.ESCALATE
    assert third.removal == RemovalResult.REMOVED
    assert gateway.removed == [("G1", "alice")]
    assert gateway.texts[-2:] == [
        "🚨 Alice exceeded 3 warnings. Removing from group…",
        "🔴 Removed Alice 🔴",
    ]
    assert len(gateway.deleted) == 3
    # Amnesty after a successful removal
    assert store.get("G1", "alice").count == 0


@pytest.mark.asyncio
async def test_mod_log_records_actions(controller, store, message_factory):
    for _ in range(3):
        await controller.on_message(message_factory("alice", LINK))

    actions = [a.action_type for a in store.load_mod_log("G1")]

    assert actions == ["remove", "kick", "warn", "warn"]
    assert all(a.auto for a in store.load_mod_log("G1"))


@pytest.mark.asyncio
async def test_voice_message_counts_as_violation(controller, gateway, message_factory):
    result = await controller.on_message(message_factory("alice", media_kind=MediaKind.VOICE))

    assert result.state == MessageState.WARNED
    assert result.reason == "voice"
    assert gateway.deleted


@pytest.mark.asyncio
async def test_clean_message_is_ignored(controller, gateway, store, message_factory):
    result = await controller.on_message(message_factory("alice", "hello everyone"))

    assert result.state == MessageState.FILTERED
    assert result.reason == "no_violation"
    assert gateway.sent == []
    assert gateway.deleted == []
    assert store.get("G1", "alice").count == 0


@pytest.mark.asyncio
async def test_admin_is_exempt(controller, gateway, store, message_factory):
    gateway.admins.add("alice")

    result = await controller.on_message(message_factory("alice", LINK))

    assert result.state == MessageState.FILTERED
    assert result.reason == "sender_is_admin"
    assert gateway.sent == []
    assert gateway.deleted == []
    assert store.get("G1", "alice").count == 0


@pytest.mark.asyncio
async def test_non_group_chat_is_ignored(controller, gateway, message_factory):
    gateway.is_group = False

    result = await controller.on_message(message_factory("alice", LINK))

    assert result.state == MessageState.FILTERED
    assert result.reason == "not_group"
    assert gateway.deleted == []


@pytest.mark.asyncio
async def test_scoped_enforcement(gateway, store, message_factory):
    cfg = ModerationConfig(enforced_group_ids=frozenset({"G1"}))
    controller = ModerationController(gateway, store, cfg)

    skipped = await controller.on_message(message_factory("alice", LINK, group_id="G2"))
    enforced = await controller.on_message(message_factory("alice", LINK, group_id="G1"))

    assert skipped.state == MessageState.FILTERED
    assert skipped.reason == "group_not_enforced"
    assert enforced.state == MessageState.WARNED
    assert store.get("G2", "alice").count == 0
    assert store.get("G1", "alice").count == 1


@pytest.mark.asyncio
async def test_counts_are_per_group(controller, store, message_factory):
    await controller.on_message(message_factory("alice", LINK, group_id="G1"))
    await controller.on_message(message_factory("alice", LINK, group_id="G2"))

    assert store.get("G1", "alice").count == 1
    assert store.get("G2", "alice").count == 1


@pytest.mark.asyncio
async def test_redelivered_message_counted_once(controller, gateway, store, message_factory):
    message = message_factory("alice", LINK, message_id="redelivered-42")

    await controller.on_message(message)
    sent_before = list(gateway.sent)
    again = await controller.on_message(message)

    assert again.state == MessageState.FILTERED
    assert again.reason == "duplicate"
    assert gateway.sent == sent_before
    assert len(gateway.deleted) == 1
    assert store.get("G1", "alice").count == 1


@pytest.mark.asyncio
async def test_redelivery_after_removal_has_no_side_effects(controller, gateway, store, message_factory):
    await controller.on_message(message_factory("alice", LINK))
    await controller.on_message(message_factory("alice", LINK))
    last = message_factory("alice", LINK, message_id="redelivered-41")
    await controller.on_message(last)
    assert gateway.removed == [("G1", "alice")]
    sent_before = list(gateway.sent)

    again = await controller.on_message(last)

    assert again.reason == "duplicate"
    assert gateway.sent == sent_before
    assert gateway.removed == [("G1", "alice")]
    assert store.get("G1", "alice").count == 0


# ============================================================================
# Failures
# ============================================================================

@pytest.mark.asyncio
async def test_delete_failure_is_not_fatal(controller, gateway, store, message_factory):
    gateway.delete_error = RuntimeError("message too old")

    result = await controller.on_message(message_factory("alice", LINK))

    assert result.state == MessageState.WARNED
    assert any("message too old" in err for err in result.errors)
    assert gateway.texts == ["⚠️ Alice, links are not allowed. Warning 1/3"]
    assert store.get("G1", "alice").count == 1


@pytest.mark.asyncio
async def test_send_failure_is_not_fatal(controller, gateway, store, message_factory):
    gateway.send_error = RuntimeError("flood control")

    result = await controller.on_message(message_factory("alice", LINK))

    assert result.state == MessageState.WARNED
    assert result.errors == ["flood control"]
    assert len(gateway.deleted) == 1


@pytest.mark.asyncio
async def test_store_unavailable_aborts_without_side_effects(controller, gateway, fake_redis, message_factory):
    fake_redis.fail = True

    result = await controller.on_message(message_factory("alice", LINK))

    assert result.state == MessageState.ABORTED
    assert result.reason == "store_unavailable"
    assert gateway.sent == []
    assert gateway.deleted == []
    assert gateway.removed == []


@pytest.mark.asyncio
async def test_removal_failure_keeps_record_and_retries(controller, gateway, store, message_factory):
    gateway.remove_error = RuntimeError("user is an administrator of the chat")
    for _ in range(3):
        result = await controller.on_message(message_factory("alice", LINK))

    assert result.state == MessageState.ESCALATION_ATTEMPTED
    assert result.removal == RemovalResult.FAILED
    assert gateway.texts[-1] == "❌ Tried to remove Alice but failed: user is an administrator of the chat"
    assert store.get("G1", "alice").count == 3

    gateway.remove_error = None
    retry = await controller.on_message(message_factory("alice", LINK))

    assert retry.removal == RemovalResult.REMOVED
    assert retry.decision.warning_count == 4
    assert gateway.removed == [("G1", "alice")]
    assert store.get("G1", "alice").count == 0


@pytest.mark.asyncio
async def test_bot_not_admin_cannot_remove(controller, gateway, store, message_factory):
    gateway.bot_is_admin = False
    for _ in range(3):
        result = await controller.on_message(message_factory("alice", LINK))

    assert result.removal == RemovalResult.FORBIDDEN
    assert gateway.removed == []
    assert gateway.texts[-1] == NOT_ADMIN_NOTICE
    assert store.get("G1", "alice").count == 3
    assert store.load_mod_log("G1", limit=1)[0].action_type == "remove_forbidden"


@pytest.mark.asyncio
async def test_removal_timeout(gateway, store, message_factory):
    cfg = ModerationConfig(warn_threshold=1, action_timeout_sec=0.05)
    controller = ModerationController(gateway, store, cfg)
    gateway.remove_delay = 1.0

    result = await controller.on_message(message_factory("alice", LINK))

    assert result.removal == RemovalResult.FAILED
    assert any("timed out" in err for err in result.errors)
    assert gateway.removed == []
    assert store.get("G1", "alice").count == 1


@pytest.mark.asyncio
async def test_no_reset_on_removal(gateway, store, message_factory):
    cfg = ModerationConfig(warn_threshold=2, reset_on_removal=False)
    controller = ModerationController(gateway, store, cfg)

    await controller.on_message(message_factory("alice", LINK))
    result = await controller.on_message(message_factory("alice", LINK))

    assert result.removal == RemovalResult.REMOVED
    assert store.get("G1", "alice").count == 2


@pytest.mark.asyncio
async def test_custom_templates(gateway, store, message_factory):
    cfg = ModerationConfig(warn_threshold=2, warn_template="{name}: {count} of {limit}")
    controller = ModerationController(gateway, store, cfg)
    gateway.names["bob"] = "Bobby"

    await controller.on_message(message_factory("bob", LINK))

    assert gateway.texts == ["Bobby: 1 of 2"]


# ============================================================================
# Admin commands
# ============================================================================

@pytest.mark.asyncio
async def test_status_command(controller, gateway, message_factory):
    gateway.admins.add("boss")

    result = await controller.on_message(message_factory("boss", "!linkguard status"))

    assert result.state == MessageState.COMMAND
    assert gateway.texts == ["LinkGuard active. Threshold: 3. Group: Test Group"]


@pytest.mark.asyncio
async def test_status_allowed_when_bot_is_admin(controller, gateway, message_factory):
    result = await controller.on_message(message_factory("alice", "!linkguard status"))

    assert result.state == MessageState.COMMAND
    assert gateway.texts == ["LinkGuard active. Threshold: 3. Group: Test Group"]


@pytest.mark.asyncio
async def test_unauthorized_command_is_moderated(controller, gateway, store, message_factory):
    gateway.bot_is_admin = False

    plain = await controller.on_message(message_factory("alice", "!linkguard status"))
    with_link = await controller.on_message(message_factory("alice", "!linkguard status evil.com"))

    assert plain.state == MessageState.FILTERED
    assert plain.reason == "no_violation"
    assert with_link.state == MessageState.WARNED
    assert store.get("G1", "alice").count == 1


@pytest.mark.asyncio
async def test_member_cannot_reset_own_warnings(controller, gateway, store, message_factory):
    await controller.on_message(message_factory("alice", LINK))
    await controller.on_message(message_factory("alice", LINK))
    sent_before = list(gateway.sent)

    result = await controller.on_message(message_factory(
        "alice", "!linkguard reset", mentions=[MentionedUser(user_id="alice", display_name="Alice")],
    ))

    assert gateway.bot_is_admin
    assert result.state == MessageState.FILTERED
    assert result.reason == "no_violation"
    assert gateway.sent == sent_before
    assert store.get("G1", "alice").count == 2


@pytest.mark.asyncio
async def test_member_unknown_command_with_link_is_moderated(controller, gateway, store, message_factory):
    message = message_factory("alice", "!linkguard x https://evil.com/x")

    result = await controller.on_message(message)

    assert result.state == MessageState.WARNED
    assert gateway.deleted == [message.message_id]
    assert store.get("G1", "alice").count == 1


@pytest.mark.asyncio
async def test_member_status_with_link_is_moderated(controller, gateway, store, message_factory):
    result = await controller.on_message(message_factory("alice", "!linkguard status https://evil.com/x"))

    assert result.state == MessageState.WARNED
    assert gateway.texts == ["⚠️ Alice, links are not allowed. Warning 1/3"]
    assert store.get("G1", "alice").count == 1


@pytest.mark.asyncio
async def test_admin_status_with_link_is_a_command(controller, gateway, store, message_factory):
    gateway.admins.add("boss")

    result = await controller.on_message(message_factory("boss", "!linkguard status https://evil.com/x"))

    assert result.state == MessageState.COMMAND
    assert gateway.deleted == []


@pytest.mark.asyncio
async def test_help_for_bare_prefix(controller, gateway, message_factory):
    gateway.admins.add("boss")

    for text in ("!linkguard", "!linkguard help"):
        result = await controller.on_message(message_factory("boss", text))
        assert result.state == MessageState.COMMAND

    assert len(gateway.texts) == 2
    assert all(text.startswith("LinkGuard commands:") for text in gateway.texts)


@pytest.mark.asyncio
async def test_unknown_command_is_silent(controller, gateway, message_factory):
    gateway.admins.add("boss")

    result = await controller.on_message(message_factory("boss", "!linkguard selfdestruct"))

    assert result.state == MessageState.FILTERED
    assert result.reason == "unknown_command"
    assert gateway.sent == []


@pytest.mark.asyncio
async def test_reset_command(controller, gateway, store, message_factory):
    gateway.admins.add("boss")
    await controller.on_message(message_factory("alice", LINK))
    await controller.on_message(message_factory("alice", LINK))

    result = await controller.on_message(message_factory(
        "boss", "!linkguard reset", mentions=[MentionedUser(user_id="alice", display_name="Alice")],
    ))

    assert result.state == MessageState.COMMAND
    assert gateway.texts[-1] == "✅ Reset warnings for Alice"
    assert store.get("G1", "alice").count == 0
    last = store.load_mod_log("G1", limit=1)[0]
    assert last.action_type == "reset"
    assert last.admin_id == "boss"
    assert not last.auto


@pytest.mark.asyncio
async def test_reset_without_mention_shows_usage(controller, gateway, message_factory):
    gateway.admins.add("boss")

    await controller.on_message(message_factory("boss", "!linkguard reset"))

    assert gateway.texts == ["Usage: !linkguard reset @user"]


@pytest.mark.asyncio
async def test_warns_command(controller, gateway, message_factory):
    gateway.admins.add("boss")
    await controller.on_message(message_factory("alice", LINK))

    await controller.on_message(message_factory(
        "boss",
        "!linkguard warns",
        mentions=[
            MentionedUser(user_id="alice", display_name="Alice"),
            MentionedUser(user_id="carol", display_name="Carol"),
        ],
    ))

    assert gateway.texts[-1] == "Alice: 1/3 warnings\nCarol: 0/3 warnings"


@pytest.mark.asyncio
async def test_custom_command_prefix(gateway, store, message_factory):
    cfg = replace(ModerationConfig(), command_prefix="/guard")
    controller = ModerationController(gateway, store, cfg)
    gateway.admins.add("boss")

    result = await controller.on_message(message_factory("boss", "/guard status"))

    assert result.state == MessageState.COMMAND


# ============================================================================
# dispatch / shutdown
# ============================================================================

@pytest.mark.asyncio
async def test_dispatch_isolates_failures(controller, gateway, store, message_factory, monkeypatch):
    async def broken_context(message):
        raise RuntimeError("telegram is down")

    monkeypatch.setattr(gateway, "get_chat_context", broken_context)
    assert await controller.dispatch(message_factory("alice", LINK)) is None

    monkeypatch.undo()
    result = await controller.dispatch(message_factory("alice", LINK))

    assert result.state == MessageState.WARNED
    assert store.get("G1", "alice").count == 1


@pytest.mark.asyncio
async def test_concurrent_dispatch_counts_every_violation(gateway, store, message_factory):
    controller = ModerationController(gateway, store, ModerationConfig(warn_threshold=100))

    results = await asyncio.gather(*(
        controller.dispatch(message_factory("alice", LINK)) for _ in range(20)
    ))

    assert sorted(r.decision.warning_count for r in results) == list(range(1, 21))
    assert store.get("G1", "alice").count == 20


@pytest.mark.asyncio
async def test_shutdown_waits_for_inflight_and_closes_store(controller, gateway, fake_redis, message_factory):
    gateway.remove_delay = 0.05
    for _ in range(2):
        await controller.on_message(message_factory("alice", LINK))

    task = asyncio.create_task(controller.dispatch(message_factory("alice", LINK)))
    await asyncio.sleep(0)
    await controller.shutdown()

    assert task.done()
    assert gateway.removed == [("G1", "alice")]
    assert fake_redis.closed
