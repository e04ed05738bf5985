"""
Tests for the Confirmation Gate state machine and its classifiers.
"""

import pytest

from killer.confirmation import (
    ConfirmationGate,
    KeywordOutputClassifier,
    KeywordReplyClassifier,
    authorization_message,
)
from killer.invoker import DESTRUCTIVE_NOT_CONFIRMED
from killer.session import ConfirmationState
from killer.types import InvocationResult, Role


def refusal(command: str = "rm -rf /tmp/x") -> InvocationResult:
    return InvocationResult(
        success=False,
        exit_status=1,
        result={
            "success": False,
            "command": command,
            "cancelled": True,
            "reason": DESTRUCTIVE_NOT_CONFIRMED,
        },
    )


class TestClassifiers:
    """Test the default keyword classifiers."""

    @pytest.mark.parametrize("content", [
        "This will delete /tmp/x. Do you want me to proceed?",
        "Are you sure you want to remove these files?",
        "Shall I continue with the cleanup?",
        "需要确认吗？",
    ])
    def test_solicits_confirmation(self, content: str) -> None:
        assert KeywordOutputClassifier().solicits_confirmation(content)

    @pytest.mark.parametrize("content", [
        "Done.",
        "I removed the directory. Please confirm the result in your file manager.",
        "What is the capital of France? It is Paris.",
        "",
    ])
    def test_not_soliciting(self, content: str) -> None:
        assert not KeywordOutputClassifier().solicits_confirmation(content)

    @pytest.mark.parametrize("reply", ["yes", "Y", "ok", "Confirm", "proceed.", "yes, go ahead", "好的", "确认"])
    def test_affirmative(self, reply: str) -> None:
        assert KeywordReplyClassifier().is_affirmative(reply)

    @pytest.mark.parametrize("reply", ["no", "no, don't proceed", "wait", "", "not ok"])
    def test_not_affirmative(self, reply: str) -> None:
        assert not KeywordReplyClassifier().is_affirmative(reply)


class TestConfirmationGate:
    """Test the two-flag state machine."""

    def test_refusal_sets_needs_user_input(self) -> None:
        gate = ConfirmationGate()

        gate.observe(refusal(), "rm -rf /tmp/x")

        assert gate.state.needs_user_input is True
        assert gate.blocked_command == "rm -rf /tmp/x"

    def test_other_failures_do_not_set_flag(self) -> None:
        gate = ConfirmationGate()

        gate.observe(InvocationResult(success=False, exit_status=1, result={"error": "boom"}))
        gate.observe(InvocationResult(success=False, exit_status=124, result={"timeout": True}))

        assert gate.state.needs_user_input is False

    def test_affirmative_reply_authorizes_one_retry(self) -> None:
        gate = ConfirmationGate()
        gate.observe(refusal())

        message = gate.handle_reply("yes")

        assert message is not None
        assert message.role == Role.SYSTEM
        assert "rm -rf /tmp/x" in message.content
        assert "ONE time" in message.content
        assert gate.state.user_just_confirmed is True

    def test_negative_reply_does_not_authorize(self) -> None:
        gate = ConfirmationGate()
        gate.observe(refusal())

        assert gate.handle_reply("no") is None
        assert gate.state.user_just_confirmed is False
        assert gate.state.needs_user_input is False
        assert gate.blocked_command is None

    def test_reply_without_pending_block_is_ignored(self) -> None:
        gate = ConfirmationGate()

        assert gate.handle_reply("yes") is None
        assert gate.state.user_just_confirmed is False

    def test_new_tool_cycle_resets_flags(self) -> None:
        gate = ConfirmationGate()
        gate.observe(refusal())
        gate.handle_reply("yes")

        gate.begin_tool_cycle()

        assert gate.state.needs_user_input is False
        assert gate.state.user_just_confirmed is False

    def test_grant_is_single_use(self) -> None:
        gate = ConfirmationGate()
        gate.observe(refusal())
        gate.handle_reply("yes")
        gate.begin_tool_cycle()

        first = gate.authorize({"command": "rm -rf /tmp/x", "user_confirmed": True}, destructive=True)
        second = gate.authorize({"command": "rm -rf /tmp/y", "user_confirmed": True}, destructive=True)

        assert first["user_confirmed"] is True
        assert second["user_confirmed"] is False

    def test_unauthorized_flag_stripped(self) -> None:
        gate = ConfirmationGate()
        gate.begin_tool_cycle()
        arguments = {"command": "rm -rf /", "user_confirmed": True}

        authorized = gate.authorize(arguments, destructive=True)

        assert authorized["user_confirmed"] is False
        assert arguments["user_confirmed"] is True

    def test_grant_expires_after_cycle(self) -> None:
        gate = ConfirmationGate()
        gate.observe(refusal())
        gate.handle_reply("yes")
        gate.begin_tool_cycle()
        gate.begin_tool_cycle()

        authorized = gate.authorize({"command": "rm x", "user_confirmed": True}, destructive=True)

        assert authorized["user_confirmed"] is False

    def test_non_destructive_call_does_not_consume_grant(self) -> None:
        gate = ConfirmationGate()
        gate.observe(refusal())
        gate.handle_reply("yes")
        gate.begin_tool_cycle()

        gate.authorize({"command": "ls", "user_confirmed": True}, destructive=False)
        authorized = gate.authorize({"command": "rm -rf /tmp/x", "user_confirmed": True}, destructive=True)

        assert authorized["user_confirmed"] is True

    def test_should_pause(self) -> None:
        gate = ConfirmationGate()

        assert not gate.should_pause("Done.", interactive=False)
        assert gate.should_pause("Done.", interactive=True)
        assert gate.should_pause("Do you want me to proceed?", interactive=False)

        gate.observe(refusal())
        assert gate.should_pause("Done.", interactive=False)

    def test_pluggable_classifiers(self) -> None:
        class AlwaysAsks:
            def solicits_confirmation(self, content: str) -> bool:
                return True

        class AlwaysYes:
            def is_affirmative(self, reply: str) -> bool:
                return True

        gate = ConfirmationGate(
            ConfirmationState(),
            output_classifier=AlwaysAsks(),
            reply_classifier=AlwaysYes(),
        )
        gate.observe(refusal())

        assert gate.should_pause("anything", interactive=False)
        assert gate.handle_reply("whatever") is not None

    def test_authorization_message_without_command(self) -> None:
        message = authorization_message(None)
        assert "previously blocked operation" in message.content
